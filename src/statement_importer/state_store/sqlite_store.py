"""
SQLite-based state store implementation.

Tables:
- statements: Uploaded bank statements and their review working set
- transactions: Persisted transactions (imported, invoices, manual entries)

A new connection is opened per operation, so background workers never
share a connection.
"""

import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import ValidationError
from ..schemas.extraction import ExtractedData

# Hashes per IN (...) query; stays below SQLite's bound-parameter limit
HASH_LOOKUP_CHUNK = 500

# Source types eligible as reconciliation candidates (NULL is eligible too)
MATCHABLE_SOURCE_TYPES = ("invoice", "manual")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StatementStatus(str, Enum):
    """Lifecycle state of a bank statement."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    IMPORTED = "imported"


class SourceType(str, Enum):
    """Where a persisted transaction came from."""

    BANK_IMPORT = "bank-import"
    INVOICE = "invoice"
    MANUAL = "manual"


@dataclass
class StatementRecord:
    """Record of an uploaded bank statement."""

    id: str
    user_id: str
    filename: str
    path: str
    mimetype: str
    file_size: int
    status: StatementStatus
    created_at: str
    updated_at: str
    file_hash: str | None = None
    currency: str | None = None  # Default currency override
    bank_name: str | None = None
    account_number: str | None = None
    period_start: str | None = None
    period_end: str | None = None
    extracted_data: ExtractedData | None = None
    transaction_count: int = 0
    error_message: str | None = None
    processed_at: str | None = None
    imported_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StatementRecord":
        """Create from database row."""
        extracted = row["extracted_data"]
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            filename=row["filename"],
            path=row["path"],
            mimetype=row["mimetype"],
            file_size=row["file_size"],
            status=StatementStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            file_hash=row["file_hash"],
            currency=row["currency"],
            bank_name=row["bank_name"],
            account_number=row["account_number"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            extracted_data=ExtractedData.from_dict(json.loads(extracted)) if extracted else None,
            transaction_count=row["transaction_count"] or 0,
            error_message=row["error_message"],
            processed_at=row["processed_at"],
            imported_at=row["imported_at"],
        )

    def to_dict(self) -> dict:
        """Summary view without the working set."""
        return {
            "id": self.id,
            "filename": self.filename,
            "mimetype": self.mimetype,
            "file_size": self.file_size,
            "status": self.status.value,
            "currency": self.currency,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "transaction_count": self.transaction_count,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "imported_at": self.imported_at,
        }


@dataclass
class TransactionRecord:
    """Record of a persisted transaction.

    total is signed minor units: negative for expenses.
    """

    id: str
    user_id: str
    name: str
    total: int
    currency_code: str
    type: str  # expense | income
    issued_at: str  # ISO date
    description: str | None = None
    merchant: str | None = None
    source_type: str | None = None
    source_id: str | None = None
    transaction_hash: str | None = None
    linked_transaction_id: str | None = None
    category_code: str | None = None
    project_code: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            total=row["total"],
            currency_code=row["currency_code"],
            type=row["type"],
            issued_at=row["issued_at"],
            description=row["description"],
            merchant=row["merchant"],
            source_type=row["source_type"],
            source_id=row["source_id"],
            transaction_hash=row["transaction_hash"],
            linked_transaction_id=row["linked_transaction_id"],
            category_code=row["category_code"],
            project_code=row["project_code"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "merchant": self.merchant,
            "total": self.total,
            "currency_code": self.currency_code,
            "type": self.type,
            "issued_at": self.issued_at,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "transaction_hash": self.transaction_hash,
            "linked_transaction_id": self.linked_transaction_id,
            "category_code": self.category_code,
            "project_code": self.project_code,
        }


# Statement columns that update_statement may set
_UPDATABLE_STATEMENT_FIELDS = {
    "bank_name",
    "account_number",
    "period_start",
    "period_end",
    "extracted_data",
    "transaction_count",
    "error_message",
}


class StateStore:
    """
    SQLite-based state store.

    Provides persistent tracking of:
    - Uploaded statements and their extracted working sets
    - Persisted transactions with content hashes for duplicate detection

    Implements both the StatementStore and TransactionStore contracts.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statements (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    path TEXT NOT NULL,
                    mimetype TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    file_hash TEXT,
                    currency TEXT,
                    bank_name TEXT,
                    account_number TEXT,
                    period_start TEXT,
                    period_end TEXT,
                    status TEXT NOT NULL,
                    extracted_data TEXT,  -- JSON (ExtractedData)
                    transaction_count INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    processed_at TEXT,
                    imported_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    merchant TEXT,
                    total INTEGER NOT NULL,  -- signed minor units
                    currency_code TEXT NOT NULL,
                    type TEXT NOT NULL,
                    issued_at TEXT NOT NULL,
                    source_type TEXT,
                    source_id TEXT,
                    transaction_hash TEXT,
                    linked_transaction_id TEXT,
                    category_code TEXT,
                    project_code TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_statements_user_status "
                "ON statements(user_id, status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_user_hash "
                "ON transactions(user_id, transaction_hash)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_user_issued "
                "ON transactions(user_id, issued_at)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Statement methods

    def create_statement(
        self,
        user_id: str,
        filename: str,
        path: str,
        mimetype: str,
        file_size: int,
        file_hash: str | None = None,
        currency: str | None = None,
    ) -> StatementRecord:
        """Insert a new statement in pending state."""
        statement_id = str(uuid.uuid4())
        now = _now()

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO statements
                (id, user_id, filename, path, mimetype, file_size, file_hash, currency, status,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    statement_id,
                    user_id,
                    filename,
                    path,
                    mimetype,
                    file_size,
                    file_hash,
                    currency,
                    StatementStatus.PENDING.value,
                    now,
                    now,
                ),
            )

        return StatementRecord(
            id=statement_id,
            user_id=user_id,
            filename=filename,
            path=path,
            mimetype=mimetype,
            file_size=file_size,
            file_hash=file_hash,
            currency=currency,
            status=StatementStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def get_statement(
        self, statement_id: str, user_id: str | None = None
    ) -> StatementRecord | None:
        """Get a statement by ID, optionally scoped to its owner."""
        with self._transaction() as conn:
            if user_id is None:
                row = conn.execute(
                    "SELECT * FROM statements WHERE id = ?", (statement_id,)
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM statements WHERE id = ? AND user_id = ?",
                    (statement_id, user_id),
                ).fetchone()
            return StatementRecord.from_row(row) if row else None

    def list_statements(
        self, user_id: str, status: StatementStatus | None = None
    ) -> list[StatementRecord]:
        """List a user's statements, newest first."""
        with self._transaction() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM statements WHERE user_id = ? ORDER BY created_at DESC",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM statements
                    WHERE user_id = ? AND status = ?
                    ORDER BY created_at DESC
                """,
                    (user_id, StatementStatus(status).value),
                ).fetchall()
            return [StatementRecord.from_row(row) for row in rows]

    def update_statement(self, statement_id: str, **fields: Any) -> bool:
        """Update statement columns (never status; see update_status).

        Args:
            statement_id: Statement to update
            **fields: Column values; extracted_data takes an ExtractedData

        Returns:
            True if updated, False if statement not found.
        """
        unknown = set(fields) - _UPDATABLE_STATEMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update statement fields: {', '.join(sorted(unknown))}")

        updates = ["updated_at = ?"]
        params: list[Any] = [_now()]
        for name, value in fields.items():
            if name == "extracted_data" and value is not None:
                value = json.dumps(value.to_dict())
            updates.append(f"{name} = ?")
            params.append(value)
        params.append(statement_id)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE statements SET {', '.join(updates)} WHERE id = ?",
                params,
            )
            return cursor.rowcount > 0

    def update_status(
        self,
        statement_id: str,
        status: StatementStatus,
        error_message: str | None = None,
    ) -> bool:
        """Set statement status.

        processed_at is stamped on ready/failed, imported_at on imported.
        error_message is stored as given (None clears it).

        Returns:
            True if updated, False if statement not found.
        """
        status = StatementStatus(status)
        now = _now()
        updates = ["status = ?", "error_message = ?", "updated_at = ?"]
        params: list[Any] = [status.value, error_message, now]

        if status in (StatementStatus.READY, StatementStatus.FAILED):
            updates.append("processed_at = ?")
            params.append(now)
        elif status == StatementStatus.IMPORTED:
            updates.append("imported_at = ?")
            params.append(now)
        params.append(statement_id)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE statements SET {', '.join(updates)} WHERE id = ?",
                params,
            )
            return cursor.rowcount > 0

    def delete_statement(self, statement_id: str) -> bool:
        """Delete a statement record. Persisted transactions are kept."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM statements WHERE id = ?", (statement_id,))
            return cursor.rowcount > 0

    # Transaction methods

    def find_transaction_by_hash(self, user_id: str, transaction_hash: str) -> str | None:
        """Return the ID of a persisted transaction with this hash, if any."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT id FROM transactions
                WHERE user_id = ? AND transaction_hash = ?
                ORDER BY created_at
                LIMIT 1
            """,
                (user_id, transaction_hash),
            ).fetchone()
            return row["id"] if row else None

    def find_transactions_by_hashes(self, user_id: str, hashes: list[str]) -> dict[str, str]:
        """Batch duplicate lookup.

        Returns:
            Map of hash -> existing transaction ID for hashes already persisted
        """
        unique = list(dict.fromkeys(h for h in hashes if h))
        found: dict[str, str] = {}

        with self._transaction() as conn:
            for start in range(0, len(unique), HASH_LOOKUP_CHUNK):
                chunk = unique[start : start + HASH_LOOKUP_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"""
                    SELECT id, transaction_hash FROM transactions
                    WHERE user_id = ? AND transaction_hash IN ({placeholders})
                    ORDER BY created_at
                """,
                    [user_id, *chunk],
                ).fetchall()
                for row in rows:
                    found.setdefault(row["transaction_hash"], row["id"])

        return found

    def find_match_candidates(
        self,
        user_id: str,
        amount: int,
        start_date: str,
        end_date: str,
        exclude_linked: bool = True,
    ) -> list[TransactionRecord]:
        """Find invoice-like transactions with this absolute amount in a date window.

        Args:
            user_id: Owner
            amount: Unsigned minor units; matched against abs(total)
            start_date: Inclusive ISO date
            end_date: Inclusive ISO date
            exclude_linked: Skip transactions already linked to another one
        """
        source_placeholders = ", ".join("?" for _ in MATCHABLE_SOURCE_TYPES)
        query = f"""
            SELECT * FROM transactions
            WHERE user_id = ?
              AND ABS(total) = ?
              AND substr(issued_at, 1, 10) BETWEEN ? AND ?
              AND (source_type IS NULL OR source_type IN ({source_placeholders}))
        """
        params: list[Any] = [user_id, amount, start_date, end_date, *MATCHABLE_SOURCE_TYPES]
        if exclude_linked:
            query += " AND linked_transaction_id IS NULL"
        query += " ORDER BY issued_at"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]

    def _insert_transaction(self, conn: sqlite3.Connection, record: TransactionRecord) -> None:
        conn.execute(
            """
            INSERT INTO transactions
            (id, user_id, name, description, merchant, total, currency_code, type, issued_at,
             source_type, source_id, transaction_hash, linked_transaction_id,
             category_code, project_code, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                record.id,
                record.user_id,
                record.name,
                record.description,
                record.merchant,
                record.total,
                record.currency_code,
                record.type,
                record.issued_at,
                record.source_type,
                record.source_id,
                record.transaction_hash,
                record.linked_transaction_id,
                record.category_code,
                record.project_code,
                record.created_at or _now(),
            ),
        )

    def _link(self, conn: sqlite3.Connection, user_id: str, new_id: str, existing_id: str) -> None:
        row = conn.execute(
            "SELECT linked_transaction_id FROM transactions WHERE id = ? AND user_id = ?",
            (existing_id, user_id),
        ).fetchone()
        if row is None:
            raise ValidationError(f"Transaction {existing_id} not found")
        if row["linked_transaction_id"]:
            raise ValidationError(f"Transaction {existing_id} is already linked")

        conn.execute(
            "UPDATE transactions SET linked_transaction_id = ? WHERE id = ?",
            (new_id, existing_id),
        )
        conn.execute(
            "UPDATE transactions SET linked_transaction_id = ? WHERE id = ?",
            (existing_id, new_id),
        )

    def create_transactions(
        self,
        user_id: str,
        records: list[TransactionRecord],
        links: dict[str, str] | None = None,
    ) -> list[str]:
        """Insert transactions all-or-nothing.

        Args:
            user_id: Owner of every record
            records: Records to insert
            links: New record ID -> existing transaction ID to link both ways

        Returns:
            IDs of the created transactions, in input order

        Raises:
            ValidationError: If a record belongs to another user or a link
                target is missing or already linked (nothing is written)
        """
        with self._transaction() as conn:
            for record in records:
                if record.user_id != user_id:
                    raise ValidationError(f"Transaction {record.id} belongs to another user")
                self._insert_transaction(conn, record)

            for new_id, existing_id in (links or {}).items():
                self._link(conn, user_id, new_id, existing_id)

        return [record.id for record in records]

    def create_transaction(self, record: TransactionRecord) -> str:
        """Insert a single transaction (invoices, manual entries)."""
        with self._transaction() as conn:
            self._insert_transaction(conn, record)
        return record.id

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        """Get a transaction by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return TransactionRecord.from_row(row) if row else None

    def list_transactions(
        self, user_id: str, source_id: str | None = None
    ) -> list[TransactionRecord]:
        """List a user's transactions, optionally those created from one statement."""
        with self._transaction() as conn:
            if source_id is None:
                rows = conn.execute(
                    "SELECT * FROM transactions WHERE user_id = ? ORDER BY issued_at, created_at",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM transactions
                    WHERE user_id = ? AND source_id = ?
                    ORDER BY issued_at, created_at
                """,
                    (user_id, source_id),
                ).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]
