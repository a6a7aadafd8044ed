"""
Bounded status polling for clients waiting on background processing.

Polling gives up after a fixed number of attempts. Giving up does NOT cancel
the background run; the statement keeps processing and can be polled again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..state_store.sqlite_store import StatementStatus
from .lifecycle import StatusInfo

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Processing is taking longer than expected"

# Statuses that end a polling loop
SETTLED_STATUSES = frozenset(
    {StatementStatus.READY, StatementStatus.FAILED, StatementStatus.IMPORTED}
)


@dataclass
class PollOutcome:
    """Result of waiting for a statement to settle."""

    status: StatusInfo | None
    attempts: int
    timed_out: bool = False
    message: str | None = None

    @property
    def settled(self) -> bool:
        return not self.timed_out and self.status is not None


class StatusPoller:
    """Poll a status source until the statement leaves ``processing``."""

    def __init__(
        self,
        attempts: int = 60,
        interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def wait(self, fetch_status: Callable[[], StatusInfo]) -> PollOutcome:
        """Call ``fetch_status`` until the status settles or attempts run out.

        Args:
            fetch_status: Returns the current StatusInfo (e.g. a bound
                ``StatementLifecycleManager.get_status``)

        Returns:
            PollOutcome; ``timed_out`` is set when every attempt saw processing
        """
        info: StatusInfo | None = None
        for attempt in range(1, self.attempts + 1):
            info = fetch_status()
            if info.status in SETTLED_STATUSES:
                logger.debug("Statement %s settled after %d polls", info.statement_id, attempt)
                return PollOutcome(status=info, attempts=attempt, message=info.error_message)
            if attempt < self.attempts:
                self._sleep(self.interval_seconds)

        logger.info(
            "Gave up polling statement %s after %d attempts",
            info.statement_id if info else "?",
            self.attempts,
        )
        return PollOutcome(
            status=info,
            attempts=self.attempts,
            timed_out=True,
            message=TIMEOUT_MESSAGE,
        )
