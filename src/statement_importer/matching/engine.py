"""Reconciliation matcher for linking bank transactions to existing records.

Suggests invoice-like transactions (invoices, manual entries, or records
without a source) that a bank transaction probably pays. Suggestions are
recomputed on demand and never persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING

from ..schemas.dedupe import normalize_description
from ..schemas.extraction import MatchSuggestion

if TYPE_CHECKING:
    from ..config import ReconciliationConfig
    from ..schemas.extraction import ExtractedTransaction
    from ..state_store import TransactionRecord, TransactionStore

logger = logging.getLogger(__name__)


@dataclass
class MatchScore:
    """Individual signal contribution to a match score."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        """Get the weighted score for this signal."""
        return self.score * self.weight


@dataclass
class MatchResult:
    """A ranked candidate for one extracted transaction."""

    transaction_id: str
    transaction_name: str
    total_score: float
    signals: list[MatchScore] = field(default_factory=list)

    def to_suggestion(self) -> MatchSuggestion:
        """Public view of the match."""
        return MatchSuggestion(
            transaction_id=self.transaction_id,
            transaction_name=self.transaction_name,
            confidence=self.total_score,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "transaction_id": self.transaction_id,
            "transaction_name": self.transaction_name,
            "total_score": self.total_score,
            "signals": [
                {
                    "signal": s.signal,
                    "score": s.score,
                    "weight": s.weight,
                    "weighted_score": s.weighted_score,
                    "detail": s.detail,
                }
                for s in self.signals
            ],
        }


class ReconciliationMatcher:
    """Rank existing transactions a bank transaction may settle.

    Candidates must have the same absolute amount, an issue date within the
    window, and no existing link. Score:
    - Base: amount + date window match
    - Date: closer dates score higher (linear over the window)
    - Merchant: normalized merchant and description contain one another
    """

    # Signal weights (sum to 1.0)
    WEIGHT_BASE = 0.50
    WEIGHT_DATE = 0.35
    WEIGHT_MERCHANT = 0.15

    def __init__(
        self,
        store: TransactionStore,
        config: ReconciliationConfig,
    ) -> None:
        self.store = store
        self.date_window_days = config.date_window_days
        self.max_suggestions = config.max_suggestions

    def find_matches(
        self,
        user_id: str,
        transaction: ExtractedTransaction,
        max_results: int | None = None,
    ) -> list[MatchResult]:
        """Find and rank candidates for one extracted transaction.

        All candidates in the window are scored before truncation.

        Returns:
            At most max_results results, sorted by score descending.
        """
        limit = max_results if max_results is not None else self.max_suggestions
        tx_date = date.fromisoformat(transaction.date[:10])
        window = timedelta(days=self.date_window_days)

        candidates = self.store.find_match_candidates(
            user_id,
            transaction.amount,
            (tx_date - window).isoformat(),
            (tx_date + window).isoformat(),
            exclude_linked=True,
        )
        if not candidates:
            return []

        results = [self.score_candidate(transaction, tx_date, c) for c in candidates]
        results.sort(key=lambda r: r.total_score, reverse=True)
        logger.debug("Scored %d candidates for transaction %s", len(results), transaction.id)
        return results[:limit]

    def suggest(self, user_id: str, transaction: ExtractedTransaction) -> list[MatchSuggestion]:
        """Top suggestions for one transaction."""
        return [r.to_suggestion() for r in self.find_matches(user_id, transaction)]

    def score_candidate(
        self,
        transaction: ExtractedTransaction,
        tx_date: date,
        candidate: TransactionRecord,
    ) -> MatchResult:
        """Score one candidate against a bank transaction."""
        signals = [
            MatchScore(
                signal="base",
                score=1.0,
                weight=self.WEIGHT_BASE,
                detail=f"Amount {transaction.amount} within ±{self.date_window_days} days",
            )
        ]

        days = abs((tx_date - date.fromisoformat(candidate.issued_at[:10])).days)
        date_score = max(0.0, 1.0 - days / self.date_window_days)
        signals.append(
            MatchScore(
                signal="date",
                score=date_score,
                weight=self.WEIGHT_DATE,
                detail=f"{days} day(s) apart",
            )
        )

        merchant_score = 0.0
        merchant = normalize_description(candidate.merchant)
        description = normalize_description(transaction.description)
        if merchant and description and (merchant in description or description in merchant):
            merchant_score = 1.0
        signals.append(
            MatchScore(
                signal="merchant",
                score=merchant_score,
                weight=self.WEIGHT_MERCHANT,
                detail="Merchant appears in description" if merchant_score else "No merchant match",
            )
        )

        total = min(1.0, sum(s.weighted_score for s in signals))
        return MatchResult(
            transaction_id=candidate.id,
            transaction_name=candidate.name or candidate.merchant or "Unnamed transaction",
            total_score=round(total, 4),
            signals=signals,
        )
