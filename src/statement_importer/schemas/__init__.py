"""
SSOT (Single Source of Truth) schemas for statement import.

These canonical schemas are the ONLY models passed between extraction,
review and import. No duplicated "near-same" models allowed.
"""

from .csv_format import CSVColumnMapping, CSVFormatInfo
from .dedupe import (
    HASH_SEPARATOR,
    compute_file_hash,
    compute_transaction_hash,
    generate_temp_id,
    normalize_description,
)
from .extraction import (
    AI_CONFIDENCE,
    CSV_CONFIDENCE,
    EXTRACTED_DATA_VERSION,
    DateRange,
    ExtractedData,
    ExtractedSummary,
    ExtractedTransaction,
    MatchSuggestion,
    ParsingMetadata,
    StatementFormat,
    StatementMetadata,
    TransactionType,
    calculate_summary,
)

__all__ = [
    # CSV layout
    "CSVColumnMapping",
    "CSVFormatInfo",
    # Dedupe
    "HASH_SEPARATOR",
    "compute_file_hash",
    "compute_transaction_hash",
    "generate_temp_id",
    "normalize_description",
    # Extraction
    "AI_CONFIDENCE",
    "CSV_CONFIDENCE",
    "EXTRACTED_DATA_VERSION",
    "DateRange",
    "ExtractedData",
    "ExtractedSummary",
    "ExtractedTransaction",
    "MatchSuggestion",
    "ParsingMetadata",
    "StatementFormat",
    "StatementMetadata",
    "TransactionType",
    "calculate_summary",
]
