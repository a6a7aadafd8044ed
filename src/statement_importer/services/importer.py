"""Import committer: turns reviewed bank transactions into persisted ones.

The commit is all-or-nothing. Duplicate flags are refreshed right before
committing, so importing the same statement twice creates nothing the
second time.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import StatementError, TransactionImportError, ValidationError
from ..schemas.extraction import TransactionType
from ..state_store.sqlite_store import SourceType, TransactionRecord
from .duplicates import DuplicateDetector

if TYPE_CHECKING:
    from ..schemas.extraction import ExtractedTransaction
    from ..state_store import StatementRecord, TransactionStore

logger = logging.getLogger(__name__)

# Maximum length of the transaction name (taken from the description)
NAME_MAX_LENGTH = 100


@dataclass
class ImportOptions:
    """User choices for an import."""

    skip_duplicates: bool = True
    default_category: str | None = None
    default_project: str | None = None
    # Extracted transaction ID -> existing transaction ID to link
    links: dict[str, str] = field(default_factory=dict)


@dataclass
class ImportResult:
    """Outcome of an import."""

    imported_count: int
    skipped_duplicates: int
    transaction_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "imported_count": self.imported_count,
            "skipped_duplicates": self.skipped_duplicates,
            "transaction_ids": self.transaction_ids,
        }


def build_transaction_record(
    user_id: str,
    statement_id: str,
    tx: ExtractedTransaction,
    options: ImportOptions,
) -> TransactionRecord:
    """Map a reviewed bank transaction to a persisted record.

    Debits become expenses with a negative total; credits become income.
    """
    is_debit = tx.type == TransactionType.DEBIT
    return TransactionRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name=tx.description[:NAME_MAX_LENGTH],
        description=tx.description,
        total=-tx.amount if is_debit else tx.amount,
        currency_code=tx.currency,
        type="expense" if is_debit else "income",
        issued_at=tx.date,
        source_type=SourceType.BANK_IMPORT.value,
        source_id=statement_id,
        transaction_hash=tx.hash,
        category_code=options.default_category,
        project_code=options.default_project,
    )


class ImportCommitter:
    """Commit the selected transactions of a statement atomically."""

    def __init__(self, store: TransactionStore, detector: DuplicateDetector | None = None) -> None:
        self.store = store
        self.detector = detector or DuplicateDetector(store)

    def commit(
        self,
        statement: StatementRecord,
        transaction_ids: list[str] | None = None,
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Import selected transactions of a statement.

        Args:
            statement: Statement with an extracted working set
            transaction_ids: Optional subset of extracted IDs (intersected with
                the selected ones; empty means no subset)
            options: Duplicate handling, defaults and links

        Returns:
            ImportResult (zero counts when nothing is eligible)

        Raises:
            ValidationError: If the statement has no extracted data or a link
                refers to a transaction that is not being imported
            TransactionImportError: If the commit failed (nothing was written)
        """
        options = options or ImportOptions()
        extracted = statement.extracted_data
        if extracted is None:
            raise ValidationError(f"Statement {statement.id} has no extracted transactions")

        user_id = statement.user_id
        # Refresh flags: other imports may have happened since extraction
        self.detector.mark_duplicates(user_id, extracted.transactions)

        selected = [tx for tx in extracted.transactions if tx.selected]
        if transaction_ids:
            wanted = set(transaction_ids)
            selected = [tx for tx in selected if tx.id in wanted]

        skipped = 0
        if options.skip_duplicates:
            eligible = [tx for tx in selected if not tx.is_duplicate]
            skipped = len(selected) - len(eligible)
        else:
            eligible = selected

        if not eligible:
            logger.info("Nothing to import for statement %s (%d duplicates)", statement.id, skipped)
            return ImportResult(imported_count=0, skipped_duplicates=skipped)

        records = [build_transaction_record(user_id, statement.id, tx, options) for tx in eligible]
        record_ids = {tx.id: record.id for tx, record in zip(eligible, records)}

        links: dict[str, str] = {}
        for extracted_id, existing_id in options.links.items():
            if extracted_id not in record_ids:
                raise ValidationError(
                    f"Cannot link transaction {extracted_id}: it is not part of this import"
                )
            links[record_ids[extracted_id]] = existing_id

        try:
            created = self.store.create_transactions(user_id, records, links=links)
        except StatementError as e:
            raise TransactionImportError(statement.id, str(e)) from e
        except Exception as e:
            logger.exception("Import of statement %s failed", statement.id)
            raise TransactionImportError(statement.id, str(e)) from e

        logger.info(
            "Imported %d transactions from statement %s (%d duplicates skipped, %d linked)",
            len(created),
            statement.id,
            skipped,
            len(links),
        )
        return ImportResult(
            imported_count=len(created),
            skipped_duplicates=skipped,
            transaction_ids=created,
        )
