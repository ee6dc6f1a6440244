"""Re-associate manifest agents with freshly discovered identities."""

from clawup.reconcile.matcher import MatchedPair, MatchResult, reconcile, short_name

__all__ = ["MatchResult", "MatchedPair", "reconcile", "short_name"]
