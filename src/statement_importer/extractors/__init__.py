"""
Bank statement extractors.

Provides:
- ExtractorRouter: Chooses the extraction pipeline
- CSV extractor (delimiter/header/column detection)
- PDF extractor (rendered pages + vision model)
- Field normalizer for amounts and dates

Pipelines are pluggable and testable.
"""

from .base import BaseExtractor, ExtractionContext
from .csv_extractor import CSVStatementExtractor, decode_csv_bytes
from .format_detector import (
    analyze_csv_format,
    auto_detect_column_mapping,
    detect_delimiter,
    looks_like_header,
)
from .normalizer import ParsedAmount, parse_amount, parse_date
from .pdf_extractor import PDFStatementExtractor
from .rendering import PageImage, PDFPageRenderer
from .router import ExtractorRouter

__all__ = [
    "BaseExtractor",
    "CSVStatementExtractor",
    "ExtractionContext",
    "ExtractorRouter",
    "PDFPageRenderer",
    "PDFStatementExtractor",
    "PageImage",
    "ParsedAmount",
    "analyze_csv_format",
    "auto_detect_column_mapping",
    "decode_csv_bytes",
    "detect_delimiter",
    "looks_like_header",
    "parse_amount",
    "parse_date",
]
