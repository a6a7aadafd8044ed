"""
Store contracts used by the services.

The services depend on these protocols only; StateStore (SQLite) implements
both. Any engine that can do an atomic multi-row insert can stand in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .sqlite_store import StatementRecord, StatementStatus, TransactionRecord


class TransactionStore(Protocol):
    """Persisted transactions (the user's ledger)."""

    def find_transaction_by_hash(self, user_id: str, transaction_hash: str) -> str | None: ...

    def find_transactions_by_hashes(
        self, user_id: str, hashes: list[str]
    ) -> dict[str, str]: ...

    def find_match_candidates(
        self,
        user_id: str,
        amount: int,
        start_date: str,
        end_date: str,
        exclude_linked: bool = True,
    ) -> list[TransactionRecord]: ...

    def create_transactions(
        self,
        user_id: str,
        records: list[TransactionRecord],
        links: dict[str, str] | None = None,
    ) -> list[str]: ...

    def create_transaction(self, record: TransactionRecord) -> str: ...

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None: ...


class StatementStore(Protocol):
    """Uploaded bank statements and their review working sets."""

    def create_statement(
        self,
        user_id: str,
        filename: str,
        path: str,
        mimetype: str,
        file_size: int,
        file_hash: str | None = None,
        currency: str | None = None,
    ) -> StatementRecord: ...

    def get_statement(
        self, statement_id: str, user_id: str | None = None
    ) -> StatementRecord | None: ...

    def list_statements(
        self, user_id: str, status: StatementStatus | None = None
    ) -> list[StatementRecord]: ...

    def update_statement(self, statement_id: str, **fields: Any) -> bool: ...

    def update_status(
        self,
        statement_id: str,
        status: StatementStatus,
        error_message: str | None = None,
    ) -> bool: ...

    def delete_statement(self, statement_id: str) -> bool: ...
