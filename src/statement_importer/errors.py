"""
Error taxonomy for statement processing.

- ValidationError: bad input rejected before any pipeline runs
- ParseError: file could not be turned into transactions
- ProviderError: structured-extraction provider failed
- TransactionImportError: atomic commit failed, nothing was written
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StatementError(Exception):
    """Base exception for statement processing errors."""

    pass


class ValidationError(StatementError):
    """Input rejected (bad file type/size, unknown statement, bad field edit)."""

    pass


class StatementStateError(ValidationError):
    """Operation not allowed in the statement's current lifecycle state."""

    def __init__(self, statement_id: str, current: str, target: str):
        self.statement_id = statement_id
        self.current = current
        self.target = target
        super().__init__(
            f"Statement {statement_id} cannot move from '{current}' to '{target}'"
        )


class ParseError(StatementError):
    """Statement content could not be parsed into transactions."""

    pass


class ProviderErrorCategory(str, Enum):
    """Failure categories surfaced to the user for actionable messages."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    MODEL_NOT_FOUND = "model_not_found"
    NOT_CONFIGURED = "not_configured"
    INVALID_RESPONSE = "invalid_response"
    CONNECTION = "connection"
    UNKNOWN = "unknown"


@dataclass
class ProviderFailure:
    """One provider's failure inside a fallback chain."""

    provider: str
    model: str
    category: ProviderErrorCategory
    message: str


class ProviderError(StatementError):
    """Extraction provider failed.

    For a single provider the category describes that failure. When raised by
    a provider chain, ``failures`` lists every attempt and ``category`` is the
    category shared by all of them (or UNKNOWN when they differ).
    """

    def __init__(
        self,
        message: str,
        category: ProviderErrorCategory = ProviderErrorCategory.UNKNOWN,
        provider: str | None = None,
        failures: list[ProviderFailure] | None = None,
    ):
        self.category = category
        self.provider = provider
        self.failures = failures or []
        super().__init__(message)


class TransactionImportError(StatementError):
    """Import commit failed and was rolled back (no transactions created)."""

    def __init__(self, statement_id: str, message: str):
        self.statement_id = statement_id
        super().__init__(f"Import of statement {statement_id} failed: {message}")
