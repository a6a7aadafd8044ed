"""
Field normalization for bank statement values.

Turns the many ways banks print amounts and dates into integer minor units
and ISO dates. Both extraction pipelines go through here so that identical
statements converge on identical transaction hashes.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date as date_cls
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from dateutil import parser as date_parser

from ..errors import ParseError
from ..schemas.extraction import TransactionType

logger = logging.getLogger(__name__)

# Currency symbols and ISO codes stripped before parsing
_CURRENCY_RE = re.compile(r"[€$£¥]|\b[A-Z]{3}\b")
_WHITESPACE_RE = re.compile(r"\s+")
_EUROPEAN_DECIMAL_RE = re.compile(r",\d{2}$")
_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_DOT_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")


@dataclass
class ParsedAmount:
    """Unsigned amount in minor units plus the direction it implies."""

    amount: int
    type: TransactionType


def parse_amount(
    text: str,
    default_type: TransactionType = TransactionType.DEBIT,
) -> ParsedAmount:
    """
    Parse a printed amount into minor units.

    Handles "1,234.56", "1.234,56", "-50.00", "+50.00", "(12.00)", "€ 3,50", "12.00 EUR".
    A value is European when it ends in a comma followed by exactly two digits.

    Args:
        text: Amount as printed on the statement
        default_type: Type for amounts without a minus sign or parentheses

    Returns:
        ParsedAmount with a non-negative amount

    Raises:
        ParseError: If no number can be read
    """
    if text is None:
        raise ParseError("Unable to parse amount: empty value")

    cleaned = _WHITESPACE_RE.sub("", _CURRENCY_RE.sub("", text.strip().upper()))
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    is_negative = cleaned.startswith("-") or cleaned.startswith("(")
    cleaned = cleaned.replace("(", "").replace(")", "").replace("-", "")

    if _EUROPEAN_DECIMAL_RE.search(cleaned):
        # Dots are thousands separators, comma is the decimal mark
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    if not _NUMBER_RE.match(cleaned):
        raise ParseError(f"Unable to parse amount: {text}")

    try:
        minor = (Decimal(cleaned) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ParseError(f"Unable to parse amount: {text}") from None

    tx_type = TransactionType.DEBIT if is_negative else default_type
    return ParsedAmount(amount=abs(int(minor)), type=tx_type)


def amount_to_minor_units(value: float | int | str) -> int:
    """Convert a major-unit number (e.g. 12.5) to minor units, rounding half-up."""
    try:
        minor = (Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ParseError(f"Unable to parse amount: {value}") from None
    return abs(int(minor))


def _build_iso(year: int, month: int, day: int, original: str) -> str:
    try:
        return date_cls(year, month, day).isoformat()
    except ValueError:
        raise ParseError(f"Unable to parse date: {original}") from None


def parse_date(text: str, prefer_european: bool = True) -> str:
    """
    Parse a printed date into ISO format (YYYY-MM-DD).

    Supported formats:
    - YYYY-MM-DD (anything after the first 10 characters is ignored)
    - DD/MM/YYYY, MM/DD/YYYY, DD-MM-YYYY (disambiguated by value, then preference)
    - DD.MM.YYYY (always day-first)
    - Anything dateutil understands, as a last resort

    Args:
        text: Date as printed on the statement
        prefer_european: Day-first when neither component exceeds 12

    Returns:
        ISO date string

    Raises:
        ParseError: If the date cannot be read or does not exist
    """
    if not text or not text.strip():
        raise ParseError("Unable to parse date: empty value")

    cleaned = text.strip()

    iso_match = _ISO_DATE_RE.match(cleaned)
    if iso_match:
        year, month, day = (int(g) for g in iso_match.groups())
        return _build_iso(year, month, day, text)

    slash_match = _SLASH_DATE_RE.match(cleaned)
    if slash_match:
        first, second, year = (int(g) for g in slash_match.groups())
        if first > 12:
            day, month = first, second
        elif second > 12:
            month, day = first, second
        elif prefer_european:
            day, month = first, second
        else:
            month, day = first, second
        return _build_iso(year, month, day, text)

    dot_match = _DOT_DATE_RE.match(cleaned)
    if dot_match:
        day, month, year = (int(g) for g in dot_match.groups())
        return _build_iso(year, month, day, text)

    try:
        parsed = date_parser.parse(cleaned, dayfirst=prefer_european)
    except (ValueError, OverflowError):
        raise ParseError(f"Unable to parse date: {text}") from None

    logger.debug("Parsed date %r with generic parser", cleaned)
    return parsed.date().isoformat()


def parse_transaction_type(text: str | None) -> TransactionType | None:
    """Read an explicit debit/credit indicator cell.

    Returns None when the cell does not name a direction.
    """
    if not text:
        return None
    lowered = text.strip().lower()
    if "credit" in lowered or lowered in ("c", "cr"):
        return TransactionType.CREDIT
    if "debit" in lowered or lowered in ("d", "db", "dr"):
        return TransactionType.DEBIT
    return None


def normalize_currency(text: str | None, default: str) -> str:
    """Return a 3-letter upper-case currency code, or the default."""
    if text:
        code = text.strip().upper()
        if len(code) == 3 and code.isalpha():
            return code
    return default
