"""
Transaction hash generation (CRITICAL).

This module defines THE deterministic content hash for bank transactions.
This is the ONLY way to generate transaction hashes in the system.

Hash input: {date}|{amount}|{normalized description}
- date = first 10 characters of the ISO date (YYYY-MM-DD)
- amount = integer minor units (cents), unsigned
- description = lower-cased, whitespace collapsed, trimmed

The hash must be:
- Stable: Same inputs always produce same output
- Extraction-independent: CSV and AI pipelines converge on identical inputs
- Reproducible: Can be regenerated from stored data
"""

import hashlib
import re
import uuid

# Separator between hash components
HASH_SEPARATOR = "|"

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_description(description: str | None) -> str:
    """Normalize a description for hashing and comparison.

    Lowercases, collapses internal whitespace to single spaces and trims.
    """
    if not description:
        return ""
    return _WHITESPACE_RE.sub(" ", description.lower()).strip()


def compute_transaction_hash(date: str, amount: int, description: str | None) -> str:
    """
    Compute the deterministic content hash of a bank transaction.

    Args:
        date: Transaction date (ISO, only the first 10 characters are used)
        amount: Amount in minor units (cents), non-negative
        description: Raw transaction description

    Returns:
        64-character lowercase hex SHA256 hash

    Raises:
        ValueError: If date is not an ISO date or amount is not an integer

    Examples:
        >>> compute_transaction_hash("2024-01-15", 1050, "Coffee  Shop")
        '...'  # same as compute_transaction_hash("2024-01-15", 1050, "coffee shop")
    """
    if not date or len(date) < 10 or date[4] != "-" or date[7] != "-":
        raise ValueError(f"date must be in YYYY-MM-DD format, got: {date}")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer in minor units, got: {amount!r}")

    canonical = HASH_SEPARATOR.join(
        [date[:10], str(amount), normalize_description(description)]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_temp_id() -> str:
    """Generate a batch-local identifier for an extracted transaction."""
    return str(uuid.uuid4())


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Args:
        file_bytes: Raw file content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()
