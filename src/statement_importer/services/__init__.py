"""
Statement services.

Provides:
- StatementLifecycleManager: upload -> process -> review -> import
- ImportCommitter: atomic import of reviewed transactions
- DuplicateDetector: hash-based duplicate flags
- StatusPoller: bounded client-side polling
- BankStatementActions: envelope-returning operations for UI/API layers
"""

from .actions import ActionResult, BankStatementActions
from .duplicates import DuplicateDetector
from .importer import ImportCommitter, ImportOptions, ImportResult, build_transaction_record
from .lifecycle import (
    ALLOWED_TRANSITIONS,
    ImportAllResult,
    StatementLifecycleManager,
    StatusInfo,
    UploadedFile,
    validate_upload,
)
from .polling import TIMEOUT_MESSAGE, PollOutcome, StatusPoller

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ActionResult",
    "BankStatementActions",
    "DuplicateDetector",
    "ImportAllResult",
    "ImportCommitter",
    "ImportOptions",
    "ImportResult",
    "PollOutcome",
    "StatementLifecycleManager",
    "StatusInfo",
    "StatusPoller",
    "TIMEOUT_MESSAGE",
    "UploadedFile",
    "build_transaction_record",
    "validate_upload",
]
