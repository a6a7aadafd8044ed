"""Statement lifecycle manager.

Drives a bank statement through its states and is the ONLY writer of the
statement status:

    pending -> processing -> ready | failed -> imported
    ready | failed -> processing (re-run)

Deletion removes the record and is not a state. Processing runs on a
thread pool and has no cancellation hook once dispatched; clients poll the
status (see services.polling).
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import (
    ParseError,
    ProviderError,
    StatementError,
    StatementStateError,
    ValidationError,
)
from ..extractors.base import ExtractionContext
from ..extractors.format_detector import analyze_csv_format
from ..extractors.csv_extractor import CSVStatementExtractor, decode_csv_bytes
from ..extractors.normalizer import parse_amount, parse_date
from ..extractors.router import ExtractorRouter
from ..matching.engine import ReconciliationMatcher
from ..schemas.dedupe import compute_file_hash, compute_transaction_hash
from ..schemas.extraction import StatementFormat, TransactionType
from ..state_store.sqlite_store import StatementStatus
from .duplicates import DuplicateDetector
from .importer import ImportCommitter, ImportOptions, ImportResult

if TYPE_CHECKING:
    from ..config import Config
    from ..schemas.csv_format import CSVColumnMapping, CSVFormatInfo
    from ..schemas.extraction import ExtractedData, ExtractedTransaction, MatchSuggestion
    from ..state_store import StatementRecord, StateStore
    from ..storage import FileStore

logger = logging.getLogger(__name__)

ALLOWED_MIMETYPES = ("application/pdf", "text/csv", "text/plain")
ALLOWED_EXTENSIONS = (".csv", ".pdf")

# Legal status transitions
ALLOWED_TRANSITIONS: dict[StatementStatus, frozenset[StatementStatus]] = {
    StatementStatus.PENDING: frozenset({StatementStatus.PROCESSING}),
    StatementStatus.PROCESSING: frozenset({StatementStatus.READY, StatementStatus.FAILED}),
    StatementStatus.READY: frozenset({StatementStatus.PROCESSING, StatementStatus.IMPORTED}),
    StatementStatus.FAILED: frozenset({StatementStatus.PROCESSING}),
    StatementStatus.IMPORTED: frozenset(),
}

# Fields a reviewer may edit on an extracted transaction
EDITABLE_FIELDS = ("date", "description", "amount", "type", "currency", "selected")
# Edits to these change the content hash
IDENTITY_FIELDS = ("date", "description", "amount")


@dataclass
class UploadedFile:
    """A file received from the client."""

    filename: str
    content: bytes
    mimetype: str = ""

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class StatusInfo:
    """Status view for polling clients."""

    statement_id: str
    status: StatementStatus
    transaction_count: int = 0
    error_message: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "statement_id": self.statement_id,
            "status": self.status.value,
            "transaction_count": self.transaction_count,
            "error_message": self.error_message,
        }


@dataclass
class ImportAllResult:
    """Outcome of importing every ready statement of a user."""

    results: dict[str, ImportResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def imported_count(self) -> int:
        return sum(r.imported_count for r in self.results.values())

    @property
    def skipped_duplicates(self) -> int:
        return sum(r.skipped_duplicates for r in self.results.values())

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "imported_count": self.imported_count,
            "skipped_duplicates": self.skipped_duplicates,
            "statements": {sid: r.to_dict() for sid, r in self.results.items()},
            "errors": self.errors,
        }


def validate_upload(file: UploadedFile, max_size: int) -> None:
    """Reject files the pipelines cannot handle.

    Raises:
        ValidationError: On empty, oversized or unsupported files
    """
    if not file.content:
        raise ValidationError("No file provided")

    if file.size > max_size:
        raise ValidationError(
            f"File too large ({file.size} bytes). Maximum size is {max_size // (1024 * 1024)}MB"
        )

    by_type = file.mimetype in ALLOWED_MIMETYPES
    by_name = file.filename.lower().endswith(ALLOWED_EXTENSIONS)
    if not (by_type or by_name):
        raise ValidationError("Invalid file type. Please upload a PDF or CSV file.")


class StatementLifecycleManager:
    """Upload, process, review and import bank statements."""

    def __init__(
        self,
        config: Config,
        store: StateStore,
        file_store: FileStore,
        router: ExtractorRouter | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Application configuration.
            store: Statement and transaction store.
            file_store: Storage for uploaded files.
            router: Extraction pipelines; built from config if omitted.
            executor: Pool for background processing; created if omitted.
        """
        self.config = config
        self.store = store
        self.file_store = file_store
        self.router = router or ExtractorRouter.from_config(config)
        self.detector = DuplicateDetector(store)
        self.matcher = ReconciliationMatcher(store, config.reconciliation)
        self.committer = ImportCommitter(store, self.detector)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.processing.max_workers,
            thread_name_prefix="statement-processing",
        )
        self._futures: dict[str, Future] = {}

    # State machine

    def _load(self, user_id: str, statement_id: str) -> StatementRecord:
        statement = self.store.get_statement(statement_id, user_id=user_id)
        if statement is None:
            raise ValidationError(f"Statement {statement_id} not found")
        return statement

    def _check_transition(self, statement: StatementRecord, target: StatementStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[statement.status]:
            raise StatementStateError(statement.id, statement.status.value, target.value)

    def _transition(
        self,
        statement: StatementRecord,
        target: StatementStatus,
        error_message: str | None = None,
    ) -> None:
        self._check_transition(statement, target)
        self.store.update_status(statement.id, target, error_message)
        logger.info("Statement %s: %s -> %s", statement.id, statement.status.value, target.value)
        statement.status = target
        statement.error_message = error_message

    def _context(self, statement: StatementRecord, mapping: CSVColumnMapping | None = None):
        parsing = self.config.parsing
        return ExtractionContext(
            default_currency=statement.currency or parsing.default_currency,
            prefer_european_dates=parsing.prefer_european_dates,
            positive_amount_type=TransactionType(parsing.positive_amount_type),
            column_mapping=mapping,
        )

    # Upload and processing

    def upload(
        self,
        user_id: str,
        file: UploadedFile,
        currency: str | None = None,
        background: bool = True,
    ) -> StatementRecord:
        """Store a statement and start processing it.

        Args:
            user_id: Owner
            file: Uploaded file
            currency: Default currency for this statement (config default if None)
            background: Dispatch processing to the pool; run inline if False

        Returns:
            The statement record (processing, or final state if inline)

        Raises:
            ValidationError: If the file is rejected
        """
        validate_upload(file, self.config.uploads.max_file_size)
        if currency is not None and (len(currency.strip()) != 3 or not currency.strip().isalpha()):
            raise ValidationError(f"Invalid currency code: {currency}")

        path = self.file_store.save(user_id, file.filename, file.content)
        statement = self.store.create_statement(
            user_id=user_id,
            filename=file.filename,
            path=path,
            mimetype=file.mimetype,
            file_size=file.size,
            file_hash=compute_file_hash(file.content),
            currency=currency.strip().upper() if currency else None,
        )
        logger.info("Stored statement %s (%d bytes)", statement.id, file.size)

        self._transition(statement, StatementStatus.PROCESSING)
        return self._dispatch(user_id, statement, background)

    def reprocess(self, user_id: str, statement_id: str, background: bool = True) -> StatementRecord:
        """Re-run extraction for a ready or failed statement."""
        statement = self._load(user_id, statement_id)
        self._transition(statement, StatementStatus.PROCESSING)
        return self._dispatch(user_id, statement, background)

    def _dispatch(
        self, user_id: str, statement: StatementRecord, background: bool
    ) -> StatementRecord:
        if not background:
            return self.process_statement(user_id, statement.id)

        future = self._executor.submit(self._run_in_background, user_id, statement.id)
        self._futures[statement.id] = future
        future.add_done_callback(lambda _: self._futures.pop(statement.id, None))
        return statement

    def _run_in_background(self, user_id: str, statement_id: str) -> None:
        try:
            self.process_statement(user_id, statement_id)
        except Exception:
            logger.exception("Background processing of statement %s crashed", statement_id)
            raise

    def wait_for(self, statement_id: str, timeout: float | None = None) -> None:
        """Block until a dispatched run finishes (no-op if none is pending)."""
        future = self._futures.get(statement_id)
        if future is not None:
            future.exception(timeout=timeout)

    def process_statement(self, user_id: str, statement_id: str) -> StatementRecord:
        """Run the extraction pipeline for a processing statement.

        Parse and provider failures are stored on the statement (failed)
        and never raised.

        Returns:
            The statement in its final state
        """
        statement = self._load(user_id, statement_id)
        if statement.status != StatementStatus.PROCESSING:
            raise StatementStateError(
                statement.id, statement.status.value, StatementStatus.PROCESSING.value
            )

        try:
            file_bytes = self.file_store.read(statement.path)
            extracted = self.router.extract(
                statement.filename, statement.mimetype, file_bytes, self._context(statement)
            )
        except (ParseError, ProviderError) as e:
            logger.warning("Statement %s failed: %s", statement.id, e)
            self._transition(statement, StatementStatus.FAILED, str(e))
            return statement
        except OSError as e:
            logger.error("Statement %s file could not be read: %s", statement.id, e)
            self._transition(statement, StatementStatus.FAILED, "Uploaded file is unavailable")
            return statement
        except Exception:
            logger.exception("Unexpected error processing statement %s", statement.id)
            self._transition(
                statement, StatementStatus.FAILED, "Failed to process bank statement"
            )
            raise

        self.detector.mark_duplicates(user_id, extracted.transactions)
        self._save_extracted(statement, extracted, with_metadata=True)
        self._transition(statement, StatementStatus.READY)
        return statement

    def _save_extracted(
        self,
        statement: StatementRecord,
        extracted: ExtractedData,
        with_metadata: bool = False,
    ) -> None:
        fields: dict[str, Any] = {
            "extracted_data": extracted,
            "transaction_count": len(extracted.transactions),
        }
        metadata = extracted.statement_metadata
        if with_metadata and metadata is not None:
            fields.update(
                bank_name=metadata.bank_name,
                account_number=metadata.account_number,
                period_start=metadata.period_start,
                period_end=metadata.period_end,
            )
        self.store.update_statement(statement.id, **fields)
        statement.extracted_data = extracted
        statement.transaction_count = len(extracted.transactions)

    # Review

    def get_status(self, user_id: str, statement_id: str) -> StatusInfo:
        statement = self._load(user_id, statement_id)
        return StatusInfo(
            statement_id=statement.id,
            status=statement.status,
            transaction_count=statement.transaction_count,
            error_message=statement.error_message,
        )

    def get_extracted(self, user_id: str, statement_id: str) -> ExtractedData:
        """Return the review working set.

        Raises:
            ValidationError: If the statement has not produced transactions
        """
        statement = self._load(user_id, statement_id)
        if statement.extracted_data is None:
            raise ValidationError(f"Statement {statement_id} has no extracted transactions")
        return statement.extracted_data

    def update_extracted(
        self,
        user_id: str,
        statement_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> ExtractedTransaction:
        """Apply a reviewer edit to one extracted transaction.

        Editing date, description or amount recomputes the hash and the
        duplicate flag; every edit recomputes the summary.

        Raises:
            ValidationError: Unknown transaction, unknown field or bad value
            StatementStateError: If the statement is not ready for review
        """
        statement = self._load(user_id, statement_id)
        if statement.status != StatementStatus.READY:
            raise StatementStateError(statement.id, statement.status.value, "edited")

        extracted = statement.extracted_data
        tx = extracted.get_transaction(transaction_id) if extracted else None
        if tx is None:
            raise ValidationError(f"Transaction {transaction_id} not found")

        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        values = self._validate_edit(fields)
        for name, value in values.items():
            setattr(tx, name, value)
        tx.edited = True

        if any(name in values for name in IDENTITY_FIELDS):
            tx.hash = compute_transaction_hash(tx.date, tx.amount, tx.description)
            self.detector.refresh(user_id, tx)

        extracted.recompute_summary()
        self._save_extracted(statement, extracted)
        logger.info("Statement %s: edited transaction %s", statement.id, transaction_id)
        return tx

    def _validate_edit(self, fields: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        try:
            if "date" in fields:
                values["date"] = parse_date(
                    str(fields["date"]), prefer_european=self.config.parsing.prefer_european_dates
                )
            if "description" in fields:
                values["description"] = str(fields["description"] or "").strip()
            if "amount" in fields:
                amount = fields["amount"]
                if isinstance(amount, bool):
                    raise ValidationError("amount must be a number of minor units")
                if isinstance(amount, int):
                    if amount < 0:
                        raise ValidationError("amount must be >= 0")
                    values["amount"] = amount
                else:
                    values["amount"] = parse_amount(str(amount)).amount
        except ParseError as e:
            raise ValidationError(str(e)) from e

        if "type" in fields:
            try:
                values["type"] = TransactionType(str(fields["type"]).lower())
            except ValueError:
                raise ValidationError(f"Invalid transaction type: {fields['type']}") from None
        if "currency" in fields:
            currency = str(fields["currency"] or "").strip().upper()
            if len(currency) != 3 or not currency.isalpha():
                raise ValidationError(f"Invalid currency code: {fields['currency']}")
            values["currency"] = currency
        if "selected" in fields:
            if not isinstance(fields["selected"], bool):
                raise ValidationError("selected must be true or false")
            values["selected"] = fields["selected"]
        return values

    def analyze_csv(self, user_id: str, statement_id: str) -> CSVFormatInfo:
        """Describe the CSV layout of a statement for column mapping."""
        statement = self._load(user_id, statement_id)
        if not self._is_csv(statement):
            raise ValidationError("Column mapping is only available for CSV statements")
        return analyze_csv_format(decode_csv_bytes(self.file_store.read(statement.path)))

    def remap_columns(
        self,
        user_id: str,
        statement_id: str,
        mapping: CSVColumnMapping,
    ) -> ExtractedData:
        """Re-run CSV extraction with an explicit column mapping.

        Runs synchronously. On success the working set is replaced (edits
        are discarded) and duplicates are re-marked. On failure the stored
        statement is left unchanged and the error is raised.

        Raises:
            ParseError: If the mapping yields no transactions
            StatementStateError: If the statement is not ready or failed
            ValidationError: If the statement is not a CSV statement
        """
        statement = self._load(user_id, statement_id)
        self._check_transition(statement, StatementStatus.PROCESSING)
        if not self._is_csv(statement):
            raise ValidationError("Column mapping is only available for CSV statements")

        file_bytes = self.file_store.read(statement.path)
        extracted = CSVStatementExtractor().extract(file_bytes, self._context(statement, mapping))
        self.detector.mark_duplicates(user_id, extracted.transactions)

        self._transition(statement, StatementStatus.PROCESSING)
        self._save_extracted(statement, extracted)
        self._transition(statement, StatementStatus.READY)
        logger.info(
            "Statement %s remapped: %d transactions", statement.id, len(extracted.transactions)
        )
        return extracted

    def _is_csv(self, statement: StatementRecord) -> bool:
        if statement.extracted_data is not None:
            return statement.extracted_data.parsing_metadata.format == StatementFormat.CSV
        return CSVStatementExtractor().can_extract(statement.filename, statement.mimetype, b"")

    # Reconciliation

    def suggest_matches(
        self,
        user_id: str,
        statement_id: str,
        transaction_ids: list[str] | None = None,
    ) -> dict[str, list[MatchSuggestion]]:
        """Suggest existing transactions each bank transaction may settle.

        Recomputed on every call; nothing is stored.
        """
        extracted = self.get_extracted(user_id, statement_id)
        wanted = set(transaction_ids) if transaction_ids is not None else None

        suggestions: dict[str, list[MatchSuggestion]] = {}
        for tx in extracted.transactions:
            if wanted is not None and tx.id not in wanted:
                continue
            suggestions[tx.id] = self.matcher.suggest(user_id, tx)
        return suggestions

    # Import

    def import_transactions(
        self,
        user_id: str,
        statement_id: str,
        transaction_ids: list[str] | None = None,
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Commit selected transactions and mark the statement imported.

        When nothing is eligible the statement stays ready.

        Raises:
            StatementStateError: If the statement is not ready
            TransactionImportError: If the commit failed (nothing written)
        """
        statement = self._load(user_id, statement_id)
        self._check_transition(statement, StatementStatus.IMPORTED)

        result = self.committer.commit(statement, transaction_ids, options)

        # Refreshed duplicate flags are kept even when nothing was imported
        self._save_extracted(statement, statement.extracted_data)
        if result.imported_count == 0:
            return result
        self._transition(statement, StatementStatus.IMPORTED)
        return result

    def import_all(self, user_id: str, options: ImportOptions | None = None) -> ImportAllResult:
        """Import every ready statement of a user.

        A failing statement does not stop the others; its error is reported.
        """
        outcome = ImportAllResult()
        for statement in self.store.list_statements(user_id, StatementStatus.READY):
            try:
                outcome.results[statement.id] = self.import_transactions(
                    user_id, statement.id, options=options
                )
            except StatementError as e:
                logger.warning("Import of statement %s skipped: %s", statement.id, e)
                outcome.errors[statement.id] = str(e)
        return outcome

    # Housekeeping

    def delete(self, user_id: str, statement_id: str) -> None:
        """Delete a statement and its stored file.

        Imported transactions are kept.

        Raises:
            StatementStateError: While the statement is processing
        """
        statement = self._load(user_id, statement_id)
        if statement.status == StatementStatus.PROCESSING:
            raise StatementStateError(statement.id, statement.status.value, "deleted")

        self.file_store.delete(statement.path)
        self.store.delete_statement(statement.id)
        logger.info("Deleted statement %s", statement.id)

    def list_statements(
        self, user_id: str, status: StatementStatus | None = None
    ) -> list[StatementRecord]:
        return self.store.list_statements(user_id, status)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting background work."""
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> StatementLifecycleManager:
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
