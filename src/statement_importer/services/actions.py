"""
Surfaced bank statement operations.

BankStatementActions is the seam consumed by UI/API layers. Every operation
returns an ActionResult envelope instead of raising; the error category lets
callers show an actionable message (e.g. "authentication" for a bad API key).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..errors import (
    ParseError,
    ProviderError,
    StatementError,
    StatementStateError,
    TransactionImportError,
    ValidationError,
)
from ..schemas.csv_format import CSVColumnMapping
from ..state_store.sqlite_store import StatementStatus
from .importer import ImportOptions
from .lifecycle import StatementLifecycleManager, UploadedFile

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An unexpected error occurred"


@dataclass
class ActionResult:
    """Success/error envelope returned by every action."""

    success: bool
    data: Any = None
    error: str | None = None
    error_category: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, category: str) -> ActionResult:
        return cls(success=False, error=error, error_category=category)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_category": self.error_category,
        }


def error_category(error: StatementError) -> str:
    """Map an error to its user-facing category."""
    if isinstance(error, ProviderError):
        return error.category.value
    if isinstance(error, StatementStateError):
        return "state"
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, ParseError):
        return "parse"
    if isinstance(error, TransactionImportError):
        return "import"
    return "unknown"


class BankStatementActions:
    """Envelope-returning facade over StatementLifecycleManager."""

    def __init__(self, manager: StatementLifecycleManager):
        self.manager = manager

    def _run(self, action: str, operation: Callable[[], Any]) -> ActionResult:
        try:
            return ActionResult.ok(operation())
        except StatementError as e:
            logger.info("%s failed: %s", action, e)
            return ActionResult.fail(str(e), error_category(e))
        except Exception:
            logger.exception("Unexpected error in %s", action)
            return ActionResult.fail(GENERIC_ERROR, "internal")

    def upload(
        self,
        user_id: str,
        filename: str,
        content: bytes,
        mimetype: str = "",
        currency: str | None = None,
        background: bool = True,
    ) -> ActionResult:
        """Upload a statement. Data: {statement_id, status}."""

        def run():
            statement = self.manager.upload(
                user_id,
                UploadedFile(filename=filename, content=content, mimetype=mimetype),
                currency=currency,
                background=background,
            )
            return {"statement_id": statement.id, "status": statement.status.value}

        return self._run("upload", run)

    def get_status(self, user_id: str, statement_id: str) -> ActionResult:
        """Data: {statement_id, status, transaction_count, error_message}."""
        return self._run(
            "get_status", lambda: self.manager.get_status(user_id, statement_id).to_dict()
        )

    def get_extracted(self, user_id: str, statement_id: str) -> ActionResult:
        return self._run(
            "get_extracted",
            lambda: self.manager.get_extracted(user_id, statement_id).to_dict(),
        )

    def update_extracted(
        self,
        user_id: str,
        statement_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> ActionResult:
        """Edit one extracted transaction. Data: the updated transaction."""
        return self._run(
            "update_extracted",
            lambda: self.manager.update_extracted(
                user_id, statement_id, transaction_id, fields
            ).to_dict(),
        )

    def remap_columns(self, user_id: str, statement_id: str, mapping: dict) -> ActionResult:
        """Re-run CSV extraction with a manual mapping. Data: {transaction_count}."""

        def run():
            extracted = self.manager.remap_columns(
                user_id, statement_id, CSVColumnMapping.from_dict(mapping)
            )
            return {"transaction_count": len(extracted.transactions)}

        return self._run("remap_columns", run)

    def analyze_csv(self, user_id: str, statement_id: str) -> ActionResult:
        return self._run(
            "analyze_csv", lambda: self.manager.analyze_csv(user_id, statement_id).to_dict()
        )

    def suggest_matches(
        self,
        user_id: str,
        statement_id: str,
        transaction_ids: list[str] | None = None,
    ) -> ActionResult:
        """Data: {extracted transaction id: [suggestion, ...]}."""

        def run():
            suggestions = self.manager.suggest_matches(user_id, statement_id, transaction_ids)
            return {
                tx_id: [s.to_dict() for s in items] for tx_id, items in suggestions.items()
            }

        return self._run("suggest_matches", run)

    def import_transactions(
        self,
        user_id: str,
        statement_id: str,
        transaction_ids: list[str] | None = None,
        options: ImportOptions | None = None,
    ) -> ActionResult:
        """Data: {imported_count, skipped_duplicates, transaction_ids}."""
        return self._run(
            "import_transactions",
            lambda: self.manager.import_transactions(
                user_id, statement_id, transaction_ids, options
            ).to_dict(),
        )

    def import_all(self, user_id: str, options: ImportOptions | None = None) -> ActionResult:
        return self._run(
            "import_all", lambda: self.manager.import_all(user_id, options).to_dict()
        )

    def reprocess(self, user_id: str, statement_id: str, background: bool = True) -> ActionResult:
        def run():
            statement = self.manager.reprocess(user_id, statement_id, background=background)
            return {"statement_id": statement.id, "status": statement.status.value}

        return self._run("reprocess", run)

    def delete(self, user_id: str, statement_id: str) -> ActionResult:
        def run():
            self.manager.delete(user_id, statement_id)
            return {"deleted": statement_id}

        return self._run("delete", run)

    def list_statements(self, user_id: str, status: str | None = None) -> ActionResult:
        def run():
            try:
                wanted = StatementStatus(status) if status else None
            except ValueError:
                raise ValidationError(f"Unknown status: {status}") from None
            return [s.to_dict() for s in self.manager.list_statements(user_id, wanted)]

        return self._run("list_statements", run)
