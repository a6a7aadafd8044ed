"""
CSV bank statement extractor.

Deterministic pipeline: decode, detect delimiter, read rows, map columns,
normalize each row. Rows that cannot be normalized are skipped with a
warning; the statement fails only when no row survives.
"""

import csv
import logging

from ..errors import ParseError
from ..schemas.csv_format import CSVColumnMapping
from ..schemas.dedupe import compute_transaction_hash, generate_temp_id
from ..schemas.extraction import (
    CSV_CONFIDENCE,
    ExtractedData,
    ExtractedTransaction,
    ParsingMetadata,
    StatementFormat,
    TransactionType,
)
from .base import BaseExtractor, ExtractionContext
from .format_detector import (
    auto_detect_column_mapping,
    detect_delimiter,
    looks_like_header,
    read_rows,
)
from .normalizer import normalize_currency, parse_amount, parse_date, parse_transaction_type

logger = logging.getLogger(__name__)

CSV_MIMETYPES = ("text/csv", "text/plain", "application/csv", "application/vnd.ms-excel")


def decode_csv_bytes(file_bytes: bytes) -> str:
    """Decode CSV bytes as UTF-8 (BOM stripped), falling back to Latin-1."""
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("CSV is not valid UTF-8, decoding as Latin-1")
        return file_bytes.decode("latin-1")


def _cell(row: list[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


class CSVStatementExtractor(BaseExtractor):
    """Extract transactions from delimited text exports."""

    @property
    def name(self) -> str:
        return "csv"

    @property
    def priority(self) -> int:
        return 100

    def can_extract(self, filename: str, mimetype: str, file_bytes: bytes) -> bool:
        if filename.lower().endswith(".csv"):
            return True
        return mimetype in CSV_MIMETYPES

    def extract(self, file_bytes: bytes, context: ExtractionContext) -> ExtractedData:
        """
        Parse a CSV statement.

        Args:
            file_bytes: Raw file content
            context: Currency, date preference and optional column mapping

        Returns:
            ExtractedData with one transaction per valid row

        Raises:
            ParseError: If the file is empty, the mapping cannot be
                determined, or no row yields a transaction
        """
        content = decode_csv_bytes(file_bytes)
        delimiter = detect_delimiter(content)

        try:
            rows = read_rows(content, delimiter)
        except csv.Error as e:
            raise ParseError(f"Failed to parse CSV file: {e}") from e

        rows = [row for row in rows if any(cell.strip() for cell in row)]
        if not rows:
            raise ParseError("CSV file is empty")

        has_headers = looks_like_header(rows[0])
        headers = [cell.strip() for cell in rows[0]] if has_headers else []
        data_rows = rows[1:] if has_headers else rows

        mapping = self._resolve_mapping(context.column_mapping, headers, has_headers)

        transactions: list[ExtractedTransaction] = []
        skipped = 0
        for line_number, row in enumerate(data_rows, start=2 if has_headers else 1):
            try:
                tx = self._parse_row(row, mapping, delimiter, context)
            except ParseError as e:
                skipped += 1
                logger.warning("Skipping CSV row %d: %s", line_number, e)
                continue
            if tx is not None:
                transactions.append(tx)

        if not transactions:
            raise ParseError("No valid transactions found in CSV file")

        logger.info(
            "Parsed %d transactions from CSV (%d rows skipped, delimiter %r)",
            len(transactions),
            skipped,
            delimiter,
        )

        return ExtractedData.build(
            transactions=transactions,
            parsing_metadata=ParsingMetadata(
                format=StatementFormat.CSV,
                detected_delimiter=delimiter,
                has_headers=has_headers,
                column_mapping=mapping.to_dict(),
            ),
        )

    def _resolve_mapping(
        self,
        explicit: CSVColumnMapping | None,
        headers: list[str],
        has_headers: bool,
    ) -> CSVColumnMapping:
        if explicit is not None:
            return explicit.resolve(headers)

        detected = auto_detect_column_mapping(headers) if has_headers else None
        if detected is None:
            raise ParseError(
                "Unable to auto-detect column mapping. "
                "Please provide manual column configuration."
            )
        return detected

    def _parse_row(
        self,
        row: list[str],
        mapping: CSVColumnMapping,
        delimiter: str,
        context: ExtractionContext,
    ) -> ExtractedTransaction | None:
        """Normalize one data row, or return None if it lacks a date or amount."""
        date_str = _cell(row, mapping.date_column)
        description = _cell(row, mapping.description_column)
        amount_str = _cell(row, mapping.amount_column)
        default_type = context.positive_amount_type

        # Split debit/credit layouts: the amount column holds debits only
        if mapping.credit_column is not None:
            default_type = TransactionType.DEBIT
            if not amount_str:
                amount_str = _cell(row, mapping.credit_column)
                default_type = TransactionType.CREDIT

        if not date_str or not amount_str:
            return None

        date = parse_date(date_str, prefer_european=context.prefer_european_dates)
        parsed = parse_amount(amount_str, default_type=default_type)

        tx_type = parsed.type
        if mapping.type_column is not None:
            explicit_type = parse_transaction_type(_cell(row, mapping.type_column))
            if explicit_type is not None:
                tx_type = explicit_type

        currency = context.default_currency
        if mapping.currency_column is not None:
            currency = normalize_currency(
                _cell(row, mapping.currency_column), context.default_currency
            )

        return ExtractedTransaction(
            id=generate_temp_id(),
            date=date,
            description=description,
            amount=parsed.amount,
            type=tx_type,
            currency=currency,
            confidence=CSV_CONFIDENCE,
            hash=compute_transaction_hash(date, parsed.amount, description),
            raw_line=delimiter.join(row),
        )
