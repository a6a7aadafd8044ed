"""
Canonical extracted statement data (SSOT).

This is THE single source of truth for the review-phase working set.
Both extraction pipelines produce it, the statement store persists it,
and the import committer consumes it.

ExtractedData is versioned; every optional field is enumerated in
to_dict()/from_dict() so a storage round-trip cannot drop fields.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import ParseError

# Version of the serialized ExtractedData layout
EXTRACTED_DATA_VERSION = 1

# Confidence assigned by each extraction path
CSV_CONFIDENCE = 1.0
AI_CONFIDENCE = 0.9


class TransactionType(str, Enum):
    """Direction of a bank transaction."""

    DEBIT = "debit"  # Money out
    CREDIT = "credit"  # Money in


class StatementFormat(str, Enum):
    """Source format of a statement."""

    CSV = "csv"
    PDF = "pdf"


@dataclass
class MatchSuggestion:
    """A suggested link between a bank transaction and an existing record."""

    transaction_id: str
    transaction_name: str
    confidence: float

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "transaction_id": self.transaction_id,
            "transaction_name": self.transaction_name,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchSuggestion":
        """Deserialize from dictionary."""
        return cls(
            transaction_id=data["transaction_id"],
            transaction_name=data.get("transaction_name", ""),
            confidence=float(data.get("confidence", 0.0)),
        )


@dataclass
class ExtractedTransaction:
    """
    A single transaction extracted from a statement (not yet persisted).

    amount is always non-negative minor units; the sign lives in type.
    """

    id: str
    date: str  # ISO format YYYY-MM-DD
    description: str
    amount: int  # Minor units (cents), >= 0
    type: TransactionType
    currency: str
    confidence: float
    hash: str

    # Review state
    edited: bool = False
    selected: bool = True

    # Duplicate detection
    is_duplicate: bool = False
    duplicate_of: Optional[str] = None

    # Reconciliation (recomputed on demand)
    match_suggestions: Optional[list[MatchSuggestion]] = None

    # Original CSV line for display
    raw_line: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "type": self.type.value,
            "currency": self.currency,
            "confidence": self.confidence,
            "hash": self.hash,
            "edited": self.edited,
            "selected": self.selected,
            "is_duplicate": self.is_duplicate,
            "duplicate_of": self.duplicate_of,
            "match_suggestions": (
                [s.to_dict() for s in self.match_suggestions]
                if self.match_suggestions is not None
                else None
            ),
            "raw_line": self.raw_line,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedTransaction":
        """Deserialize from dictionary."""
        suggestions = data.get("match_suggestions")
        return cls(
            id=data["id"],
            date=data["date"],
            description=data.get("description", ""),
            amount=int(data["amount"]),
            type=TransactionType(data["type"]),
            currency=data.get("currency", ""),
            confidence=float(data.get("confidence", 0.0)),
            hash=data["hash"],
            edited=bool(data.get("edited", False)),
            selected=bool(data.get("selected", True)),
            is_duplicate=bool(data.get("is_duplicate", False)),
            duplicate_of=data.get("duplicate_of"),
            match_suggestions=(
                [MatchSuggestion.from_dict(s) for s in suggestions]
                if suggestions is not None
                else None
            ),
            raw_line=data.get("raw_line"),
        )


@dataclass
class DateRange:
    """Inclusive date range of a batch (empty strings for an empty batch)."""

    start: str = ""
    end: str = ""


@dataclass
class ExtractedSummary:
    """Aggregates over a batch of extracted transactions (minor units)."""

    total_debits: int = 0
    total_credits: int = 0
    net_amount: int = 0
    transaction_count: int = 0
    date_range: DateRange = field(default_factory=DateRange)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_debits": self.total_debits,
            "total_credits": self.total_credits,
            "net_amount": self.net_amount,
            "transaction_count": self.transaction_count,
            "date_range": {"start": self.date_range.start, "end": self.date_range.end},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedSummary":
        """Deserialize from dictionary."""
        date_range = data.get("date_range") or {}
        return cls(
            total_debits=int(data.get("total_debits", 0)),
            total_credits=int(data.get("total_credits", 0)),
            net_amount=int(data.get("net_amount", 0)),
            transaction_count=int(data.get("transaction_count", 0)),
            date_range=DateRange(
                start=date_range.get("start", ""),
                end=date_range.get("end", ""),
            ),
        )


def calculate_summary(transactions: list[ExtractedTransaction]) -> ExtractedSummary:
    """Calculate summary statistics for a batch.

    ISO dates are fixed-width, so lexicographic min/max is chronological.
    """
    total_debits = 0
    total_credits = 0
    min_date = ""
    max_date = ""

    for tx in transactions:
        if tx.type == TransactionType.DEBIT:
            total_debits += tx.amount
        else:
            total_credits += tx.amount

        if not min_date or tx.date < min_date:
            min_date = tx.date
        if not max_date or tx.date > max_date:
            max_date = tx.date

    return ExtractedSummary(
        total_debits=total_debits,
        total_credits=total_credits,
        net_amount=total_credits - total_debits,
        transaction_count=len(transactions),
        date_range=DateRange(start=min_date, end=max_date),
    )


@dataclass
class ParsingMetadata:
    """How the statement was parsed."""

    format: StatementFormat
    detected_delimiter: Optional[str] = None
    detected_date_format: Optional[str] = None
    has_headers: Optional[bool] = None
    column_mapping: Optional[dict] = None  # Serialized CSVColumnMapping
    provider: Optional[str] = None  # Provider that answered (AI path)
    model: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "format": self.format.value,
            "detected_delimiter": self.detected_delimiter,
            "detected_date_format": self.detected_date_format,
            "has_headers": self.has_headers,
            "column_mapping": self.column_mapping,
            "provider": self.provider,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParsingMetadata":
        """Deserialize from dictionary."""
        return cls(
            format=StatementFormat(data["format"]),
            detected_delimiter=data.get("detected_delimiter"),
            detected_date_format=data.get("detected_date_format"),
            has_headers=data.get("has_headers"),
            column_mapping=data.get("column_mapping"),
            provider=data.get("provider"),
            model=data.get("model"),
        )


@dataclass
class StatementMetadata:
    """Bank details detected in the statement (AI path)."""

    bank_name: Optional[str] = None
    account_number: Optional[str] = None  # Last 4 digits only
    period_start: Optional[str] = None  # ISO date
    period_end: Optional[str] = None  # ISO date

    @property
    def is_empty(self) -> bool:
        """True if nothing was detected."""
        return not any(
            [self.bank_name, self.account_number, self.period_start, self.period_end]
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "period_start": self.period_start,
            "period_end": self.period_end,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatementMetadata":
        """Deserialize from dictionary."""
        return cls(
            bank_name=data.get("bank_name"),
            account_number=data.get("account_number"),
            period_start=data.get("period_start"),
            period_end=data.get("period_end"),
        )


@dataclass
class ExtractedData:
    """
    CANONICAL review-phase working set (SSOT).

    Attached to a bank statement and edited in place during review.
    The summary must be recomputed whenever a transaction changes.
    """

    transactions: list[ExtractedTransaction]
    summary: ExtractedSummary
    parsing_metadata: ParsingMetadata
    statement_metadata: Optional[StatementMetadata] = None
    version: int = EXTRACTED_DATA_VERSION

    @classmethod
    def build(
        cls,
        transactions: list[ExtractedTransaction],
        parsing_metadata: ParsingMetadata,
        statement_metadata: Optional[StatementMetadata] = None,
    ) -> "ExtractedData":
        """Create a working set with a freshly computed summary."""
        return cls(
            transactions=transactions,
            summary=calculate_summary(transactions),
            parsing_metadata=parsing_metadata,
            statement_metadata=statement_metadata,
        )

    def recompute_summary(self) -> None:
        """Recompute the summary from the current transactions."""
        self.summary = calculate_summary(self.transactions)

    def get_transaction(self, transaction_id: str) -> Optional[ExtractedTransaction]:
        """Find a transaction by its batch-local id."""
        for tx in self.transactions:
            if tx.id == transaction_id:
                return tx
        return None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "version": self.version,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "summary": self.summary.to_dict(),
            "parsing_metadata": self.parsing_metadata.to_dict(),
            "statement_metadata": (
                self.statement_metadata.to_dict() if self.statement_metadata else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedData":
        """Deserialize from dictionary.

        Raises:
            ParseError: If the stored layout is from an unknown version
        """
        version = int(data.get("version", EXTRACTED_DATA_VERSION))
        if version > EXTRACTED_DATA_VERSION:
            raise ParseError(
                f"Unsupported extracted data version {version} "
                f"(this build reads up to {EXTRACTED_DATA_VERSION})"
            )

        statement_metadata = data.get("statement_metadata")
        return cls(
            transactions=[ExtractedTransaction.from_dict(t) for t in data.get("transactions", [])],
            summary=ExtractedSummary.from_dict(data.get("summary") or {}),
            parsing_metadata=ParsingMetadata.from_dict(data["parsing_metadata"]),
            statement_metadata=(
                StatementMetadata.from_dict(statement_metadata) if statement_metadata else None
            ),
            version=version,
        )
