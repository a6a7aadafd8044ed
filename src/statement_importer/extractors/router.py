"""
Extractor router - chooses the extraction pipeline for a statement.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..ai.providers import ProviderChain
from ..errors import ParseError
from ..schemas.extraction import ExtractedData
from .base import BaseExtractor, ExtractionContext
from .csv_extractor import CSVStatementExtractor
from .pdf_extractor import PDFStatementExtractor
from .rendering import PDFPageRenderer

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)


class ExtractorRouter:
    """
    Routes extraction to the appropriate pipeline.

    Tries extractors in priority order:
    1. CSV (deterministic, confidence 1.0)
    2. PDF via vision model (confidence 0.9)
    """

    def __init__(self, extractors: list[BaseExtractor]):
        # Sort by priority (highest first)
        self.extractors = sorted(extractors, key=lambda e: -e.priority)

    @classmethod
    def from_config(cls, config: Config) -> ExtractorRouter:
        """Build the default CSV + PDF pipelines from configuration."""
        extraction = config.extraction
        return cls(
            [
                CSVStatementExtractor(),
                PDFStatementExtractor(
                    renderer=PDFPageRenderer(
                        max_pages=extraction.max_pages, zoom=extraction.render_zoom
                    ),
                    provider_chain=ProviderChain(
                        extraction.providers, timeout_seconds=extraction.timeout_seconds
                    ),
                ),
            ]
        )

    def select(self, filename: str, mimetype: str, file_bytes: bytes) -> BaseExtractor:
        """
        Pick the extractor for a file.

        Raises:
            ParseError: If no extractor accepts the file
        """
        for extractor in self.extractors:
            if extractor.can_extract(filename, mimetype, file_bytes):
                return extractor
        raise ParseError(f"Unsupported statement format: {mimetype or filename}")

    def extract(
        self,
        filename: str,
        mimetype: str,
        file_bytes: bytes,
        context: ExtractionContext,
    ) -> ExtractedData:
        """Extract transactions with the first matching pipeline."""
        extractor = self.select(filename, mimetype, file_bytes)
        logger.info("Extracting %s with %s extractor", filename, extractor.name)
        return extractor.extract(file_bytes, context)
