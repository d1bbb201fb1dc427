"""Weighted aggregate over available sub-scores."""

import logging
import math
from dataclasses import dataclass, field

from ..models.listing import ListingCreate, SignalScore
from ..signals.extractor import Signals
from .weights import SIGNAL_SCORERS, ScoringConfig, SignalScorer

logger = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    """Aggregate score (0-100, or None) plus the per-signal breakdown."""

    index_score: float | None
    signals: dict[str, SignalScore] = field(default_factory=dict)

    @property
    def scored_count(self) -> int:
        return sum(1 for s in self.signals.values() if s.score is not None)


def _to_percent(fraction: float) -> float:
    """0.0-1.0 -> 0-100 with one decimal, rounding halves up."""
    return math.floor(fraction * 1000 + 0.5) / 10


def score(
    listing: ListingCreate,
    signals: Signals,
    scoring: ScoringConfig | None = None,
    scorers: dict[str, SignalScorer] | None = None,
) -> ScoreResult:
    """Score a listing.

    aggregate = sum(sub_score * weight) / sum(weight), both sums taken over
    the signals whose sub-score is not None. If none are, the aggregate is None.
    """
    scoring = scoring or ScoringConfig.default()
    scorers = SIGNAL_SCORERS if scorers is None else scorers

    breakdown: dict[str, SignalScore] = {}
    weighted_sum = 0.0
    total_weight = 0.0

    for name, weight in scoring.weights.items():
        scorer = scorers.get(name)
        if scorer is None:
            logger.debug(f"Ignoring signal without scorer: {name}")
            continue
        entry = scorer(listing, signals)
        breakdown[name] = entry
        if entry.score is None:
            continue
        weighted_sum += entry.score * weight
        total_weight += weight

    index_score = None if total_weight == 0 else _to_percent(weighted_sum / total_weight)
    return ScoreResult(index_score=index_score, signals=breakdown)
