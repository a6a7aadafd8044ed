"""
PDF page rendering for vision-model extraction.

Pages are rasterized with PyMuPDF and handed to the provider chain as PNG.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass

import fitz  # PyMuPDF

from ..errors import ParseError

logger = logging.getLogger(__name__)


@dataclass
class PageImage:
    """One rendered page."""

    page_number: int  # 1-based
    content: bytes
    mimetype: str = "image/png"

    @property
    def base64(self) -> str:
        """Base64 encoding of the image bytes."""
        return base64.b64encode(self.content).decode("ascii")

    @property
    def data_url(self) -> str:
        """data: URL for chat-style image payloads."""
        return f"data:{self.mimetype};base64,{self.base64}"


class PDFPageRenderer:
    """Render the leading pages of a PDF to PNG images."""

    def __init__(self, max_pages: int = 10, zoom: float = 2.0):
        """
        Args:
            max_pages: Pages rendered at most (bank statements can be long)
            zoom: Scale factor; 2.0 renders at 144 dpi
        """
        self.max_pages = max_pages
        self.zoom = zoom

    def render(self, pdf_bytes: bytes) -> list[PageImage]:
        """
        Render up to max_pages pages.

        Pages that fail to render are skipped with a warning.

        Raises:
            ParseError: If the file is not a readable PDF or no page renders
        """
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except RuntimeError as e:
            # PyMuPDF raises FileDataError (a RuntimeError) for damaged files
            raise ParseError(f"Unable to open PDF: {e}") from e

        images: list[PageImage] = []
        try:
            matrix = fitz.Matrix(self.zoom, self.zoom)
            for index, page in enumerate(doc):
                if index >= self.max_pages:
                    break
                try:
                    pix = page.get_pixmap(matrix=matrix, alpha=False)
                    images.append(PageImage(page_number=index + 1, content=pix.tobytes("png")))
                except RuntimeError as e:
                    logger.warning("Failed to render PDF page %d: %s", index + 1, e)
            total_pages = doc.page_count
        finally:
            doc.close()

        if not images:
            raise ParseError("Unable to generate previews from PDF")

        if total_pages > self.max_pages:
            logger.info(
                "Rendered %d of %d PDF pages (page limit %d)",
                len(images),
                total_pages,
                self.max_pages,
            )
        return images
