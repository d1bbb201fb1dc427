"""Scoring module."""

from .engine import ScoreResult, score
from .weights import DEFAULT_WEIGHTS, SIGNAL_SCORERS, ScoringConfig

__all__ = [
    "DEFAULT_WEIGHTS",
    "SIGNAL_SCORERS",
    "ScoreResult",
    "ScoringConfig",
    "score",
]
