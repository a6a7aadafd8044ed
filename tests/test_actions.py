"""Tests for the envelope-returning action facade."""

from unittest.mock import MagicMock

import pytest
from conftest import SAMPLE_CSV, SAMPLE_CSV_HEADERLESS

from statement_importer.errors import (
    ParseError,
    ProviderError,
    ProviderErrorCategory,
    StatementStateError,
    TransactionImportError,
    ValidationError,
)
from statement_importer.services import BankStatementActions, StatementLifecycleManager
from statement_importer.services.actions import GENERIC_ERROR, error_category


@pytest.fixture
def actions(config, store, file_store):
    manager = StatementLifecycleManager(config, store, file_store)
    yield BankStatementActions(manager)
    manager.shutdown()


def _upload(actions, content: str = SAMPLE_CSV) -> str:
    result = actions.upload(
        "user-1", "statement.csv", content.encode(), "text/csv", background=False
    )
    return result.data["statement_id"]


class TestErrorCategory:
    """Tests for user-facing error categories."""

    @pytest.mark.parametrize(
        "error,category",
        [
            (ProviderError("bad key", ProviderErrorCategory.AUTHENTICATION), "authentication"),
            (StatementStateError("st-1", "imported", "processing"), "state"),
            (ValidationError("bad"), "validation"),
            (ParseError("bad"), "parse"),
            (TransactionImportError("st-1", "bad"), "import"),
        ],
    )
    def test_categories(self, error, category) -> None:
        """Each error type maps to its category."""
        assert error_category(error) == category


class TestBankStatementActions:
    """Tests for the action envelopes."""

    def test_upload_success(self, actions) -> None:
        """Uploads return the statement ID and status."""
        result = actions.upload(
            "user-1", "statement.csv", SAMPLE_CSV.encode(), "text/csv", background=False
        )

        assert result.success is True
        assert result.data["status"] == "ready"
        assert result.error is None

    def test_upload_validation_error(self, actions) -> None:
        """Validation errors become failed envelopes."""
        result = actions.upload("user-1", "statement.csv", b"", "text/csv", background=False)

        assert result.success is False
        assert result.error == "No file provided"
        assert result.error_category == "validation"

    def test_get_status_and_extracted(self, actions) -> None:
        """Status and working set are returned as dictionaries."""
        statement_id = _upload(actions)

        status = actions.get_status("user-1", statement_id)
        extracted = actions.get_extracted("user-1", statement_id)

        assert status.data["status"] == "ready"
        assert status.data["transaction_count"] == 3
        assert len(extracted.data["transactions"]) == 3

    def test_update_extracted(self, actions) -> None:
        """Edits return the updated transaction."""
        statement_id = _upload(actions)
        tx_id = actions.get_extracted("user-1", statement_id).data["transactions"][0]["id"]

        result = actions.update_extracted("user-1", statement_id, tx_id, {"selected": False})

        assert result.success is True
        assert result.data["selected"] is False

    def test_remap_from_dict(self, actions) -> None:
        """Column mappings are accepted as plain dictionaries."""
        statement_id = _upload(actions, SAMPLE_CSV_HEADERLESS)
        assert actions.get_status("user-1", statement_id).data["status"] == "failed"

        result = actions.remap_columns(
            "user-1",
            statement_id,
            {"date_column": 0, "description_column": 1, "amount_column": 2},
        )

        assert result.success is True
        assert result.data == {"transaction_count": 2}

    def test_remap_incomplete_mapping(self, actions) -> None:
        """A mapping missing required columns is a validation failure."""
        statement_id = _upload(actions, SAMPLE_CSV_HEADERLESS)

        result = actions.remap_columns("user-1", statement_id, {"date_column": 0})

        assert result.success is False
        assert result.error_category == "validation"

    def test_import_and_state_error(self, actions) -> None:
        """A second import reports a state error."""
        statement_id = _upload(actions)

        first = actions.import_transactions("user-1", statement_id)
        second = actions.import_transactions("user-1", statement_id)

        assert first.data["imported_count"] == 3
        assert second.success is False
        assert second.error_category == "state"

    def test_import_all(self, actions) -> None:
        """Import-all reports totals per statement."""
        _upload(actions)

        result = actions.import_all("user-1")

        assert result.data["imported_count"] == 3
        assert result.data["errors"] == {}

    def test_suggest_matches(self, actions) -> None:
        """Suggestions are keyed by extracted transaction ID."""
        statement_id = _upload(actions)

        result = actions.suggest_matches("user-1", statement_id)

        assert result.success is True
        assert all(items == [] for items in result.data.values())

    def test_list_statements(self, actions) -> None:
        """Listings filter by status name."""
        _upload(actions)
        _upload(actions, SAMPLE_CSV_HEADERLESS)

        ready = actions.list_statements("user-1", "ready")
        unknown = actions.list_statements("user-1", "archived")

        assert len(ready.data) == 1
        assert unknown.success is False
        assert unknown.error == "Unknown status: archived"

    def test_delete(self, actions) -> None:
        """Deleting returns the deleted ID."""
        statement_id = _upload(actions)

        result = actions.delete("user-1", statement_id)

        assert result.data == {"deleted": statement_id}
        assert actions.get_status("user-1", statement_id).error_category == "validation"

    def test_unexpected_error_hidden(self) -> None:
        """Unexpected exceptions return a generic message."""
        manager = MagicMock()
        manager.get_status.side_effect = RuntimeError("database exploded")

        result = BankStatementActions(manager).get_status("user-1", "st-1")

        assert result.success is False
        assert result.error == GENERIC_ERROR
        assert result.error_category == "internal"

    def test_to_dict(self) -> None:
        """Envelopes serialize all fields."""
        assert BankStatementActions(MagicMock()).delete("u", "st").to_dict() == {
            "success": True,
            "data": {"deleted": "st"},
            "error": None,
            "error_category": None,
        }
