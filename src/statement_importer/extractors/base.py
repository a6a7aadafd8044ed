"""
Base extractor interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..schemas.csv_format import CSVColumnMapping
from ..schemas.extraction import ExtractedData, TransactionType


@dataclass
class ExtractionContext:
    """Per-statement settings handed to an extractor."""

    default_currency: str = "EUR"
    prefer_european_dates: bool = True
    positive_amount_type: TransactionType = TransactionType.DEBIT
    # Explicit CSV mapping (user override); auto-detected when None
    column_mapping: Optional[CSVColumnMapping] = None


class BaseExtractor(ABC):
    """
    Base class for all statement extractors.

    Each extractor implements a specific strategy:
    - Deterministic CSV parsing
    - Vision-model extraction from rendered PDF pages
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging and provenance."""
        pass

    @property
    @abstractmethod
    def priority(self) -> int:
        """
        Priority for extractor selection.
        Higher = more trusted, tried first.
        """
        pass

    @abstractmethod
    def can_extract(self, filename: str, mimetype: str, file_bytes: bytes) -> bool:
        """
        Check if this extractor can handle the given file.

        Args:
            filename: Original file name
            mimetype: Declared MIME type
            file_bytes: Raw file content

        Returns:
            True if this extractor should be used
        """
        pass

    @abstractmethod
    def extract(self, file_bytes: bytes, context: ExtractionContext) -> ExtractedData:
        """
        Extract transactions from a statement file.

        Args:
            file_bytes: Raw file content
            context: Currency, date preference and optional column mapping

        Returns:
            ExtractedData with transactions and a computed summary

        Raises:
            ParseError: If no transactions can be extracted
            ProviderError: If every extraction provider failed
        """
        pass
