"""Tests for the statement lifecycle manager."""

from unittest.mock import MagicMock

import pytest
from conftest import SAMPLE_CSV, SAMPLE_CSV_DE, SAMPLE_CSV_HEADERLESS, make_record

from statement_importer.errors import (
    ParseError,
    ProviderError,
    ProviderErrorCategory,
    StatementStateError,
    ValidationError,
)
from statement_importer.extractors import (
    CSVStatementExtractor,
    ExtractorRouter,
    PageImage,
    PDFStatementExtractor,
)
from statement_importer.schemas.csv_format import CSVColumnMapping
from statement_importer.schemas.dedupe import compute_transaction_hash
from statement_importer.services import (
    ImportOptions,
    StatementLifecycleManager,
    UploadedFile,
    validate_upload,
)
from statement_importer.state_store import StatementStatus


def _csv(content: str = SAMPLE_CSV, filename: str = "statement.csv") -> UploadedFile:
    return UploadedFile(filename=filename, content=content.encode("utf-8"), mimetype="text/csv")


def _pdf() -> UploadedFile:
    return UploadedFile(filename="statement.pdf", content=b"%PDF-1.4", mimetype="application/pdf")


def _router_with_failing_pdf(error: Exception) -> ExtractorRouter:
    renderer = MagicMock()
    renderer.render.return_value = [PageImage(page_number=1, content=b"png")]
    chain = MagicMock()
    chain.extract.side_effect = error
    return ExtractorRouter(
        [CSVStatementExtractor(), PDFStatementExtractor(renderer=renderer, provider_chain=chain)]
    )


@pytest.fixture
def manager(config, store, file_store):
    manager = StatementLifecycleManager(config, store, file_store)
    yield manager
    manager.shutdown()


def _by_description(extracted, description: str):
    return next(tx for tx in extracted.transactions if tx.description == description)


class TestValidateUpload:
    """Tests for upload validation."""

    def test_empty_file(self) -> None:
        """Empty uploads are rejected."""
        with pytest.raises(ValidationError, match="No file provided"):
            validate_upload(UploadedFile("s.csv", b""), max_size=100)

    def test_too_large(self) -> None:
        """Files above the limit are rejected."""
        with pytest.raises(ValidationError, match="File too large"):
            validate_upload(UploadedFile("s.csv", b"x" * 101), max_size=100)

    def test_unsupported_type(self) -> None:
        """Only PDF and CSV files are accepted."""
        with pytest.raises(ValidationError, match="Invalid file type"):
            validate_upload(UploadedFile("s.docx", b"PK", "application/msword"), max_size=100)

    def test_accepted_by_extension(self) -> None:
        """A known extension is enough when the MIME type is generic."""
        validate_upload(UploadedFile("s.PDF", b"%PDF", "application/octet-stream"), max_size=100)


class TestUploadAndProcessing:
    """Tests for upload and extraction."""

    def test_csv_upload_ready(self, manager, store) -> None:
        """A valid CSV ends up ready with its working set stored."""
        statement = manager.upload("user-1", _csv(), background=False)

        assert statement.status == StatementStatus.READY
        loaded = store.get_statement(statement.id)
        assert loaded.status == StatementStatus.READY
        assert loaded.transaction_count == 3
        assert loaded.file_hash is not None
        assert loaded.processed_at is not None
        assert len(loaded.extracted_data.transactions) == 3

    def test_upload_validation(self, manager, store) -> None:
        """Rejected uploads create no statement."""
        with pytest.raises(ValidationError):
            manager.upload("user-1", UploadedFile("s.csv", b""), background=False)
        assert store.list_statements("user-1") == []

    def test_invalid_currency(self, manager) -> None:
        """Currency overrides must be 3-letter codes."""
        with pytest.raises(ValidationError, match="Invalid currency code"):
            manager.upload("user-1", _csv(), currency="EURO", background=False)

    def test_currency_override(self, manager) -> None:
        """The statement currency overrides the configured default."""
        statement = manager.upload("user-1", _csv(), currency="usd", background=False)

        assert statement.currency == "USD"
        currencies = {tx.currency for tx in manager.get_extracted("user-1", statement.id).transactions}
        assert currencies == {"USD"}

    def test_unmappable_csv_fails(self, manager) -> None:
        """A CSV whose columns cannot be detected ends up failed with a message."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)

        assert statement.status == StatementStatus.FAILED
        status = manager.get_status("user-1", statement.id)
        assert status.status == StatementStatus.FAILED
        assert "Unable to auto-detect column mapping" in status.error_message

    def test_provider_failure_recorded(self, config, store, file_store) -> None:
        """Provider errors fail the statement with the provider message."""
        error = ProviderError(
            "All LLM providers failed. Errors: quota", ProviderErrorCategory.QUOTA
        )
        manager = StatementLifecycleManager(
            config, store, file_store, router=_router_with_failing_pdf(error)
        )
        try:
            statement = manager.upload("user-1", _pdf(), background=False)
        finally:
            manager.shutdown()

        assert statement.status == StatementStatus.FAILED
        assert statement.error_message == "All LLM providers failed. Errors: quota"

    def test_unexpected_error_fails_and_raises(self, config, store, file_store) -> None:
        """Unexpected errors are logged, stored generically and re-raised."""
        router = MagicMock()
        router.extract.side_effect = RuntimeError("boom")
        manager = StatementLifecycleManager(config, store, file_store, router=router)
        try:
            with pytest.raises(RuntimeError):
                manager.upload("user-1", _csv(), background=False)
        finally:
            manager.shutdown()

        statement = store.list_statements("user-1")[0]
        assert statement.status == StatementStatus.FAILED
        assert statement.error_message == "Failed to process bank statement"

    def test_background_processing(self, manager) -> None:
        """Background uploads return processing and finish on the pool."""
        statement = manager.upload("user-1", _csv())

        manager.wait_for(statement.id, timeout=10)

        status = manager.get_status("user-1", statement.id)
        assert status.status == StatementStatus.READY
        assert status.transaction_count == 3

    def test_other_user_cannot_see_statement(self, manager) -> None:
        """Statements are scoped to their owner."""
        statement = manager.upload("user-1", _csv(), background=False)

        with pytest.raises(ValidationError, match="not found"):
            manager.get_status("user-2", statement.id)

    def test_get_extracted_without_data(self, manager) -> None:
        """A failed statement has no working set."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)

        with pytest.raises(ValidationError, match="no extracted transactions"):
            manager.get_extracted("user-1", statement.id)

    def test_reprocess_discards_edits(self, manager) -> None:
        """Re-running extraction replaces the working set."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")
        manager.update_extracted("user-1", statement.id, coffee.id, {"description": "Edited"})

        result = manager.reprocess("user-1", statement.id, background=False)

        assert result.status == StatementStatus.READY
        descriptions = {t.description for t in manager.get_extracted("user-1", statement.id).transactions}
        assert "Coffee Shop" in descriptions
        assert "Edited" not in descriptions


class TestReviewEdits:
    """Tests for editing extracted transactions."""

    def test_edit_amount_recomputes_summary(self, manager) -> None:
        """Amount edits update the stored summary and the hash."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")
        old_hash = coffee.hash

        updated = manager.update_extracted("user-1", statement.id, coffee.id, {"amount": 1000})

        assert updated.amount == 1000
        assert updated.edited is True
        assert updated.hash != old_hash
        assert updated.hash == compute_transaction_hash("2024-01-15", 1000, "Coffee Shop")
        summary = manager.get_extracted("user-1", statement.id).summary
        assert summary.total_debits == 1000 + 6230
        assert summary.total_credits == 250000

    def test_edit_type_and_amount_string(self, manager) -> None:
        """Types and printed amounts are normalized."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")

        updated = manager.update_extracted(
            "user-1", statement.id, coffee.id, {"type": "CREDIT", "amount": "12,50"}
        )

        assert updated.type.value == "credit"
        assert updated.amount == 1250

    def test_deselect(self, manager) -> None:
        """Deselecting does not touch the hash."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")

        updated = manager.update_extracted("user-1", statement.id, coffee.id, {"selected": False})

        assert updated.selected is False
        assert updated.hash == coffee.hash
        stored = manager.get_extracted("user-1", statement.id).get_transaction(coffee.id)
        assert stored.selected is False

    def test_edit_creates_duplicate(self, manager, store) -> None:
        """Editing into an existing hash flags the transaction as duplicate."""
        existing_hash = compute_transaction_hash("2024-01-15", 999, "Coffee Shop")
        store.create_transaction(make_record(id="existing", transaction_hash=existing_hash))
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")
        assert coffee.is_duplicate is False

        updated = manager.update_extracted("user-1", statement.id, coffee.id, {"amount": 999})

        assert updated.is_duplicate is True
        assert updated.duplicate_of == "existing"

    @pytest.mark.parametrize(
        "fields",
        [
            {"hash": "abc"},
            {"amount": -5},
            {"amount": True},
            {"amount": "lots"},
            {"date": "not a date"},
            {"type": "transfer"},
            {"currency": "EURO"},
            {"selected": "yes"},
        ],
    )
    def test_invalid_edits(self, manager, fields) -> None:
        """Unknown fields and bad values are rejected."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")

        with pytest.raises(ValidationError):
            manager.update_extracted("user-1", statement.id, coffee.id, fields)

    def test_unknown_transaction(self, manager) -> None:
        """Editing an unknown transaction ID fails."""
        statement = manager.upload("user-1", _csv(), background=False)

        with pytest.raises(ValidationError, match="not found"):
            manager.update_extracted("user-1", statement.id, "missing", {"amount": 1})

    def test_edit_after_import_rejected(self, manager) -> None:
        """Imported statements are read-only."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")
        manager.import_transactions("user-1", statement.id)

        with pytest.raises(StatementStateError):
            manager.update_extracted("user-1", statement.id, coffee.id, {"amount": 1})


class TestColumnRemapping:
    """Tests for manual CSV column mapping."""

    def test_analyze_headerless(self, manager) -> None:
        """Headerless files get generic column names and no suggestion."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)

        info = manager.analyze_csv("user-1", statement.id)

        assert info.has_headers is False
        assert info.columns == ["Column 1", "Column 2", "Column 3"]
        assert info.row_count == 2
        assert info.suggested_mapping is None

    def test_remap_failed_statement(self, manager) -> None:
        """A failed CSV becomes ready after a manual mapping."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)
        mapping = CSVColumnMapping(date_column=0, description_column=1, amount_column=2)

        extracted = manager.remap_columns("user-1", statement.id, mapping)

        assert len(extracted.transactions) == 2
        status = manager.get_status("user-1", statement.id)
        assert status.status == StatementStatus.READY
        assert status.transaction_count == 2
        assert status.error_message is None

    def test_bad_remap_leaves_statement_unchanged(self, manager) -> None:
        """A mapping that yields nothing raises and keeps the stored state."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)
        mapping = CSVColumnMapping(date_column=0, description_column=2, amount_column=1)

        with pytest.raises(ParseError):
            manager.remap_columns("user-1", statement.id, mapping)

        status = manager.get_status("user-1", statement.id)
        assert status.status == StatementStatus.FAILED
        assert "Unable to auto-detect column mapping" in status.error_message

    def test_remap_pdf_rejected(self, config, store, file_store) -> None:
        """Column mapping only applies to CSV statements."""
        error = ProviderError("down", ProviderErrorCategory.CONNECTION)
        manager = StatementLifecycleManager(
            config, store, file_store, router=_router_with_failing_pdf(error)
        )
        try:
            statement = manager.upload("user-1", _pdf(), background=False)
            mapping = CSVColumnMapping(date_column=0, description_column=1, amount_column=2)

            with pytest.raises(ValidationError, match="only available for CSV"):
                manager.remap_columns("user-1", statement.id, mapping)
        finally:
            manager.shutdown()

    def test_remap_after_import_rejected(self, manager) -> None:
        """Imported statements cannot be remapped."""
        statement = manager.upload("user-1", _csv(), background=False)
        manager.import_transactions("user-1", statement.id)
        mapping = CSVColumnMapping(date_column=0, description_column=1, amount_column=2)

        with pytest.raises(StatementStateError):
            manager.remap_columns("user-1", statement.id, mapping)


class TestReconciliation:
    """Tests for match suggestions."""

    def test_suggest_matches(self, manager, store) -> None:
        """Bank transactions are matched to open invoices."""
        store.create_transaction(make_record(id="inv-1", name="Cafe invoice", merchant="Coffee"))
        statement = manager.upload("user-1", _csv(), background=False)
        extracted = manager.get_extracted("user-1", statement.id)
        coffee = _by_description(extracted, "Coffee Shop")

        suggestions = manager.suggest_matches("user-1", statement.id)

        assert set(suggestions) == {tx.id for tx in extracted.transactions}
        assert [s.transaction_id for s in suggestions[coffee.id]] == ["inv-1"]

    def test_suggest_subset(self, manager) -> None:
        """Suggestions can be requested for selected transactions only."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")

        suggestions = manager.suggest_matches("user-1", statement.id, [coffee.id])
        assert list(suggestions) == [coffee.id]


class TestImport:
    """Tests for importing statements."""

    def test_import_marks_imported(self, manager, store) -> None:
        """Importing persists transactions and marks the statement imported."""
        statement = manager.upload("user-1", _csv(), background=False)

        result = manager.import_transactions("user-1", statement.id)

        assert result.imported_count == 3
        loaded = store.get_statement(statement.id)
        assert loaded.status == StatementStatus.IMPORTED
        assert loaded.imported_at is not None
        assert len(store.list_transactions("user-1", source_id=statement.id)) == 3

    def test_import_twice_rejected(self, manager) -> None:
        """An imported statement cannot be imported again."""
        statement = manager.upload("user-1", _csv(), background=False)
        manager.import_transactions("user-1", statement.id)

        with pytest.raises(StatementStateError):
            manager.import_transactions("user-1", statement.id)

    def test_import_failed_rejected(self, manager) -> None:
        """Failed statements cannot be imported."""
        statement = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)

        with pytest.raises(StatementStateError):
            manager.import_transactions("user-1", statement.id)

    def test_reupload_is_all_duplicates(self, manager, store) -> None:
        """Uploading an imported statement again creates nothing and stays ready."""
        first = manager.upload("user-1", _csv(), background=False)
        manager.import_transactions("user-1", first.id)

        second = manager.upload("user-1", _csv(), background=False)
        extracted = manager.get_extracted("user-1", second.id)
        assert all(tx.is_duplicate for tx in extracted.transactions)

        result = manager.import_transactions("user-1", second.id)

        assert result.imported_count == 0
        assert result.skipped_duplicates == 3
        assert len(store.list_transactions("user-1")) == 3
        assert manager.get_status("user-1", second.id).status == StatementStatus.READY

    def test_import_nothing_selected_stays_ready(self, manager, store) -> None:
        """An empty import leaves the statement editable and importable."""
        statement = manager.upload("user-1", _csv(), background=False)
        for tx in manager.get_extracted("user-1", statement.id).transactions:
            manager.update_extracted("user-1", statement.id, tx.id, {"selected": False})

        result = manager.import_transactions("user-1", statement.id)

        assert result.imported_count == 0
        assert manager.get_status("user-1", statement.id).status == StatementStatus.READY
        assert store.list_transactions("user-1") == []

        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")
        manager.update_extracted("user-1", statement.id, coffee.id, {"selected": True})
        again = manager.import_transactions("user-1", statement.id)

        assert again.imported_count == 1
        assert manager.get_status("user-1", statement.id).status == StatementStatus.IMPORTED

    def test_import_with_options(self, manager, store) -> None:
        """Defaults and subsets are passed through to the records."""
        statement = manager.upload("user-1", _csv(), background=False)
        coffee = _by_description(manager.get_extracted("user-1", statement.id), "Coffee Shop")

        manager.import_transactions(
            "user-1",
            statement.id,
            transaction_ids=[coffee.id],
            options=ImportOptions(default_category="food"),
        )

        records = store.list_transactions("user-1")
        assert [(r.name, r.category_code, r.total) for r in records] == [
            ("Coffee Shop", "food", -450)
        ]

    def test_import_all(self, manager, store) -> None:
        """Every ready statement is imported; others are left alone."""
        first = manager.upload("user-1", _csv(), background=False)
        second = manager.upload("user-1", _csv(SAMPLE_CSV_DE, "umsaetze.csv"), background=False)
        failed = manager.upload("user-1", _csv(SAMPLE_CSV_HEADERLESS), background=False)

        outcome = manager.import_all("user-1")

        assert outcome.imported_count == 5
        assert outcome.errors == {}
        assert set(outcome.results) == {first.id, second.id}
        assert manager.get_status("user-1", failed.id).status == StatementStatus.FAILED


class TestDelete:
    """Tests for deleting statements."""

    def test_delete_removes_record_and_file(self, manager, store, tmp_path) -> None:
        """Deleting removes the statement and its stored file."""
        statement = manager.upload("user-1", _csv(), background=False)
        stored_file = tmp_path / "uploads" / statement.path
        assert stored_file.exists()

        manager.delete("user-1", statement.id)

        assert store.get_statement(statement.id) is None
        assert not stored_file.exists()

    def test_delete_keeps_imported_transactions(self, manager, store) -> None:
        """Imported transactions outlive their statement."""
        statement = manager.upload("user-1", _csv(), background=False)
        manager.import_transactions("user-1", statement.id)

        manager.delete("user-1", statement.id)
        assert len(store.list_transactions("user-1")) == 3

    def test_delete_while_processing(self, manager, store) -> None:
        """Statements cannot be deleted while they are processing."""
        statement = store.create_statement(
            user_id="user-1",
            filename="s.csv",
            path="user-1/s.csv",
            mimetype="text/csv",
            file_size=10,
        )
        store.update_status(statement.id, StatementStatus.PROCESSING)

        with pytest.raises(StatementStateError):
            manager.delete("user-1", statement.id)
