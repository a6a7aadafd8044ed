"""Duplicate detection against persisted transactions.

A bank transaction is a duplicate when a persisted transaction of the same
user carries the same content hash (see schemas.dedupe). Lookups are batched:
one store query per chunk of hashes, never one per row.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..schemas.extraction import ExtractedTransaction
    from ..state_store import TransactionStore

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """Flags extracted transactions that were already imported."""

    def __init__(self, store: TransactionStore) -> None:
        self.store = store

    def find_duplicate(self, user_id: str, transaction_hash: str) -> str | None:
        """Return the ID of the persisted transaction with this hash, if any."""
        return self.store.find_transaction_by_hash(user_id, transaction_hash)

    def find_duplicates(self, user_id: str, hashes: list[str]) -> dict[str, str]:
        """Return hash -> persisted transaction ID for every known hash."""
        if not hashes:
            return {}
        return self.store.find_transactions_by_hashes(user_id, hashes)

    def mark_duplicates(self, user_id: str, transactions: list[ExtractedTransaction]) -> int:
        """Set is_duplicate / duplicate_of in place.

        Flags are recomputed from scratch, so a transaction whose duplicate
        was deleted becomes importable again.

        Returns:
            Number of duplicates found
        """
        existing = self.find_duplicates(user_id, [tx.hash for tx in transactions])

        count = 0
        for tx in transactions:
            duplicate_of = existing.get(tx.hash)
            tx.is_duplicate = duplicate_of is not None
            tx.duplicate_of = duplicate_of
            if duplicate_of is not None:
                count += 1

        if count:
            logger.info("Flagged %d of %d transactions as duplicates", count, len(transactions))
        return count

    def refresh(self, user_id: str, tx: ExtractedTransaction) -> None:
        """Recompute the duplicate flag of a single edited transaction."""
        duplicate_of = self.find_duplicate(user_id, tx.hash)
        tx.is_duplicate = duplicate_of is not None
        tx.duplicate_of = duplicate_of
