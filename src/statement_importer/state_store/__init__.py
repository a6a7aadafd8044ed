"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Uploaded bank statements and their review working sets
- Persisted transactions with content hashes

The services depend on the StatementStore / TransactionStore protocols.
"""

from .base import StatementStore, TransactionStore
from .sqlite_store import (
    SourceType,
    StatementRecord,
    StatementStatus,
    StateStore,
    TransactionRecord,
)

__all__ = [
    "SourceType",
    "StateStore",
    "StatementRecord",
    "StatementStatus",
    "StatementStore",
    "TransactionRecord",
    "TransactionStore",
]
