"""Reconciliation of bank transactions with invoice-like records."""

from .engine import MatchResult, MatchScore, ReconciliationMatcher

__all__ = ["MatchResult", "MatchScore", "ReconciliationMatcher"]
