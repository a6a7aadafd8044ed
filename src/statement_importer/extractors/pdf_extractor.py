"""
PDF bank statement extractor (vision model).

Renders the leading pages, sends them with the extraction prompt and schema
through the provider chain, and normalizes the answer into the same shape
the CSV pipeline produces. Every date and amount goes through the field
normalizer so that identical transactions hash identically across pipelines.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from ..ai.prompts import BankStatementPrompt
from ..errors import ParseError
from ..schemas.dedupe import compute_transaction_hash, generate_temp_id
from ..schemas.extraction import (
    AI_CONFIDENCE,
    ExtractedData,
    ExtractedTransaction,
    ParsingMetadata,
    StatementFormat,
    StatementMetadata,
    TransactionType,
)
from .base import BaseExtractor, ExtractionContext
from .normalizer import amount_to_minor_units, normalize_currency, parse_date

if TYPE_CHECKING:
    from ..ai.providers import ProviderChain
    from .rendering import PDFPageRenderer

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def _optional_date(value, prefer_european: bool) -> str | None:
    if not value:
        return None
    try:
        return parse_date(str(value), prefer_european=prefer_european)
    except ParseError:
        logger.debug("Ignoring unreadable statement period date")
        return None


def _last_four(value) -> str | None:
    """Keep only the last 4 digits of an account number."""
    if not value:
        return None
    digits = re.sub(r"\D", "", str(value))
    return digits[-4:] if digits else None


class PDFStatementExtractor(BaseExtractor):
    """Extract transactions from PDF statements with a vision model."""

    def __init__(
        self,
        renderer: PDFPageRenderer,
        provider_chain: ProviderChain,
        prompt: BankStatementPrompt | None = None,
    ):
        self.renderer = renderer
        self.provider_chain = provider_chain
        self.prompt = prompt or BankStatementPrompt()

    @property
    def name(self) -> str:
        return "pdf_vision"

    @property
    def priority(self) -> int:
        return 50

    def can_extract(self, filename: str, mimetype: str, file_bytes: bytes) -> bool:
        if mimetype == "application/pdf" or filename.lower().endswith(".pdf"):
            return True
        return file_bytes[:4] == PDF_MAGIC

    def extract(self, file_bytes: bytes, context: ExtractionContext) -> ExtractedData:
        """
        Extract transactions from a PDF statement.

        Raises:
            ParseError: If no page renders or the model returns no usable transaction
            ProviderError: If every configured provider failed
        """
        images = self.renderer.render(file_bytes)
        logger.info("Rendered %d page(s) for extraction", len(images))

        response = self.provider_chain.extract(
            self.prompt.prompt,
            self.prompt.schema,
            images,
            schema_name=self.prompt.schema_name,
        )
        output = response.output

        entries = output.get("transactions") or []
        if not isinstance(entries, list) or not entries:
            raise ParseError("No transactions found in the bank statement")

        currency = normalize_currency(output.get("currency"), context.default_currency)
        transactions: list[ExtractedTransaction] = []
        for index, entry in enumerate(entries, start=1):
            try:
                transactions.append(self._build_transaction(entry, currency, context))
            except (ParseError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping extracted entry %d: %s", index, e)

        if not transactions:
            raise ParseError("No valid transactions found in the bank statement")

        period = output.get("statement_period") or {}
        if not isinstance(period, dict):
            period = {}
        metadata = StatementMetadata(
            bank_name=(output.get("bank_name") or None),
            account_number=_last_four(output.get("account_number")),
            period_start=_optional_date(period.get("start_date"), context.prefer_european_dates),
            period_end=_optional_date(period.get("end_date"), context.prefer_european_dates),
        )

        logger.info(
            "Extracted %d transactions via %s (%s), %d skipped",
            len(transactions),
            response.provider,
            response.model,
            len(entries) - len(transactions),
        )

        return ExtractedData.build(
            transactions=transactions,
            parsing_metadata=ParsingMetadata(
                format=StatementFormat.PDF,
                detected_date_format="YYYY-MM-DD",
                provider=response.provider,
                model=response.model,
            ),
            statement_metadata=None if metadata.is_empty else metadata,
        )

    def _build_transaction(
        self,
        entry: dict,
        currency: str,
        context: ExtractionContext,
    ) -> ExtractedTransaction:
        date = parse_date(str(entry["date"]), prefer_european=context.prefer_european_dates)
        amount = amount_to_minor_units(entry["amount"])
        description = str(entry.get("description") or "").strip()
        tx_type = TransactionType(str(entry.get("type", "debit")).strip().lower())

        return ExtractedTransaction(
            id=generate_temp_id(),
            date=date,
            description=description,
            amount=amount,
            type=tx_type,
            currency=currency,
            confidence=AI_CONFIDENCE,
            hash=compute_transaction_hash(date, amount, description),
        )
