"""
CSV format detection.

Guesses the delimiter, whether the first row is a header, and which columns
hold the transaction fields. The result is a suggestion; the user can
override the column mapping at any time.
"""

import csv
import io
import logging
from typing import Optional

from ..schemas.csv_format import CSVColumnMapping, CSVFormatInfo

logger = logging.getLogger(__name__)

# Candidate delimiters, in tie-break order
COMMON_DELIMITERS = [",", ";", "\t", "|"]

# Lines inspected for delimiter detection and analysis
SAMPLE_LINES = 10
SAMPLE_ROWS = 5

DATE_PATTERNS = ["date", "datum", "data", "transaction date", "value date", "booking date"]
DESCRIPTION_PATTERNS = [
    "description",
    "reference",
    "details",
    "narrative",
    "memo",
    "text",
    "libelle",
    "bezeichnung",
    "verwendungszweck",
]
AMOUNT_PATTERNS = ["amount", "value", "sum", "total", "betrag", "montant"]
TYPE_PATTERNS = ["type", "debit/credit", "d/c", "direction", "side"]
CURRENCY_PATTERNS = ["currency", "ccy", "curr", "wahrung", "währung", "devise"]
DEBIT_PATTERNS = ["debit", "withdrawal"]
CREDIT_PATTERNS = ["credit", "deposit"]

# Claim order for header classification
_FIELD_PATTERNS = [
    ("date", DATE_PATTERNS),
    ("type", TYPE_PATTERNS),
    ("currency", CURRENCY_PATTERNS),
    ("amount", AMOUNT_PATTERNS),
    ("description", DESCRIPTION_PATTERNS),
]


def _non_blank_lines(content: str) -> list[str]:
    return [line for line in content.splitlines() if line.strip()]


def detect_delimiter(content: str) -> str:
    """
    Detect the delimiter of a CSV file from its first lines.

    A candidate qualifies when every sampled line splits into the same
    number of columns, and that number is greater than one. The candidate
    with the most columns wins; ties go to the earlier candidate.

    Args:
        content: Decoded file content

    Returns:
        The detected delimiter, "," when nothing qualifies
    """
    lines = _non_blank_lines(content)[:SAMPLE_LINES]
    if not lines:
        return ","

    best_delimiter = ","
    best_columns = 0
    for delimiter in COMMON_DELIMITERS:
        counts = [len(line.split(delimiter)) for line in lines]
        if counts[0] > 1 and all(c == counts[0] for c in counts):
            if counts[0] > best_columns:
                best_delimiter = delimiter
                best_columns = counts[0]

    logger.debug("Detected delimiter %r (%d columns)", best_delimiter, best_columns)
    return best_delimiter


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def looks_like_header(row: list[str]) -> bool:
    """True if every cell is non-empty text that does not read as a number."""
    if not row:
        return False
    for cell in row:
        trimmed = cell.strip()
        if not trimmed:
            return False
        if _is_number(trimmed.replace(",", "").replace(".", "")):
            return False
    return True


def _matches(header: str, patterns: list[str]) -> bool:
    return any(p in header for p in patterns)


def auto_detect_column_mapping(headers: list[str]) -> Optional[CSVColumnMapping]:
    """
    Guess the column mapping from header names.

    Each header is claimed by at most one field, checked in the order date,
    type, currency, amount, description, so "Value Date" stays a date column
    and "Transaction Type" is never read as the date.

    Layouts without a single amount column but with split debit/credit
    columns use the debit column as amount and record the credit column.

    Args:
        headers: Header row as read from the file

    Returns:
        CSVColumnMapping with indices, or None if the date or amount column
        cannot be found
    """
    lower_headers = [h.strip().lower() for h in headers]

    # Each header belongs to the first field whose patterns it matches
    kinds: list[Optional[str]] = []
    for header in lower_headers:
        kind = None
        for name, patterns in _FIELD_PATTERNS:
            if _matches(header, patterns):
                kind = name
                break
        kinds.append(kind)

    def first(kind: str) -> Optional[int]:
        return kinds.index(kind) if kind in kinds else None

    def first_unclaimed(patterns: list[str]) -> Optional[int]:
        for index, header in enumerate(lower_headers):
            if kinds[index] is None and _matches(header, patterns):
                return index
        return None

    date_column = first("date")
    type_column = first("type")
    currency_column = first("currency")
    amount_column = first("amount")
    description_column = first("description")

    credit_column = None
    if amount_column is None:
        amount_column = first_unclaimed(DEBIT_PATTERNS)
        if amount_column is not None:
            credit_column = first_unclaimed(CREDIT_PATTERNS)

    if date_column is None or amount_column is None:
        logger.debug("Column auto-detection failed for headers %s", headers)
        return None

    return CSVColumnMapping(
        date_column=date_column,
        description_column=description_column if description_column is not None else 1,
        amount_column=amount_column,
        type_column=type_column,
        currency_column=currency_column,
        credit_column=credit_column,
    )


def read_rows(content: str, delimiter: str) -> list[list[str]]:
    """Read all rows of a CSV document, honoring quoted fields."""
    reader = csv.reader(io.StringIO(content), delimiter=delimiter)
    return [row for row in reader]


def analyze_csv_format(content: str) -> CSVFormatInfo:
    """
    Describe the structure of a CSV statement for the confirmation step.

    Args:
        content: Decoded file content

    Returns:
        CSVFormatInfo with up to five sample data rows and a suggested mapping
    """
    delimiter = detect_delimiter(content)
    rows = [row for row in read_rows(content, delimiter) if any(c.strip() for c in row)]

    if not rows:
        return CSVFormatInfo(
            delimiter=delimiter,
            has_headers=False,
            columns=[],
            row_count=0,
            sample_rows=[],
        )

    first_row = rows[0]
    has_headers = looks_like_header(first_row)
    if has_headers:
        columns = [cell.strip() for cell in first_row]
        data_rows = rows[1:]
    else:
        columns = [f"Column {i + 1}" for i in range(len(first_row))]
        data_rows = rows

    return CSVFormatInfo(
        delimiter=delimiter,
        has_headers=has_headers,
        columns=columns,
        row_count=len(data_rows),
        sample_rows=data_rows[:SAMPLE_ROWS],
        suggested_mapping=auto_detect_column_mapping(columns) if has_headers else None,
    )
