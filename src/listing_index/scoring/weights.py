"""Signal weights and sub-score functions.

Each signal maps its raw value to a 0.0-1.0 sub-score, or None when the
signal cannot be evaluated. None is not the same as 0.0: a None sub-score
drops out of the weighted mean, a 0.0 stays in and pulls it down.

Two deliberate hard penalties apply when a listing shows no earnings figure
(neither cash flow/SDE nor EBITDA): the earnings multiple scores 0.0 instead
of None, and data completeness is capped at 0.15.

Weights do not need to sum to 1; the engine normalizes over the signals
that produced a sub-score.
"""

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from ..errors import ScoringConfigError
from ..models.listing import ListingCreate, SignalScore
from ..signals.extractor import Signals

logger = logging.getLogger(__name__)


NO_EARNINGS_COMPLETENESS_CAP = 0.15


def score_sde_multiple(multiple: float | None, has_earnings_data: bool) -> float | None:
    """Asking price / earnings. Missing earnings is penalized, not skipped."""
    if multiple is not None:
        if multiple <= 2.0:
            return 1.0
        if multiple <= 3.0:
            return 0.8
        if multiple <= 4.0:
            return 0.5
        if multiple <= 5.0:
            return 0.2
        return 0.1
    if not has_earnings_data:
        return 0.0
    # Earnings present but no asking price
    return None


def score_data_completeness(completeness: float, has_earnings_data: bool) -> float:
    if not has_earnings_data:
        return min(completeness, NO_EARNINGS_COMPLETENESS_CAP)
    return completeness


OWNER_INVOLVEMENT_SCORES = {
    "absentee owner": 1.0,
    "semi-absentee": 0.8,
    "manager run": 0.7,
    "manager in place": 0.7,
    "management in place": 0.7,
    "owner operated": 0.2,
    "owner involved": 0.2,
    "hands-on owner": 0.2,
}


def score_owner_involvement(label: str | None) -> float | None:
    if not label:
        return None
    return OWNER_INVOLVEMENT_SCORES.get(label, 0.4)


def score_employee_count(count: int | None) -> float | None:
    """1-2 employees is likely a one-person show; 8+ is real infrastructure."""
    if count is None:
        return None
    if count <= 2:
        return 0.0
    if count <= 4:
        return 0.4
    if count <= 7:
        return 0.7
    return 1.0


def score_years_in_business(years: int | None) -> float | None:
    if years is None:
        return None
    if years < 3:
        return 0.2
    if years <= 7:
        return 0.5
    if years <= 15:
        return 0.8
    return 1.0


STRONG_GROWTH_LABELS = {"untapped market", "significant growth", "underperforming", "under-market"}


def score_growth_potential(label: str | None) -> float | None:
    if not label:
        return None
    return 1.0 if label in STRONG_GROWTH_LABELS else 0.7


REASON_FOR_SALE_SCORES = {
    "retiring": 1.0,
    "relocation": 1.0,
    "health": 0.8,
    "other opportunities": 0.9,
    "personal reasons": 0.8,
    "family reasons": 0.8,
    "new venture": 0.6,
    "partnership dissolution": 0.5,
    "burnout": 0.2,
    "struggling": 0.1,
    "declining": 0.1,
}


def score_reason_for_sale(label: str | None) -> float | None:
    if not label:
        return None
    return REASON_FOR_SALE_SCORES.get(label, 0.5)


FAVORABLE_LEASES = {"long-term lease", "favorable lease", "below-market rent", "low rent", "new lease"}
UNFAVORABLE_LEASES = {"month-to-month", "short-term lease", "lease expiring soon"}


def score_lease_terms(label: str | None) -> float | None:
    if not label:
        return None
    if label in FAVORABLE_LEASES:
        return 1.0
    if label == "lease renewable":
        return 0.8
    years = re.match(r"^(\d+)", label)
    if years:
        n = int(years.group(1))
        if n >= 5:
            return 0.9
        if n >= 3:
            return 0.6
        return 0.3
    if label in UNFAVORABLE_LEASES:
        return 0.1
    return 0.5


def score_price_revenue_ratio(ratio: float | None) -> float | None:
    """Flags both overpriced listings and suspiciously cheap ones."""
    if ratio is None:
        return None
    if ratio < 0.15:
        return 0.1
    if ratio <= 0.5:
        return 0.7
    if ratio <= 1.5:
        return 1.0
    if ratio <= 3.0:
        return 0.4
    return 0.1


SignalScorer = Callable[[ListingCreate, Signals], SignalScore]


def _sde_multiple(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.sde_multiple, score=score_sde_multiple(s.sde_multiple, s.has_earnings_data))


def _data_completeness(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(
        value=s.data_completeness,
        score=score_data_completeness(s.data_completeness, s.has_earnings_data),
    )


def _owner_involvement(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.owner_involvement, score=score_owner_involvement(s.owner_involvement))


def _recurring_revenue(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.has_recurring_revenue, score=1.0 if s.has_recurring_revenue else 0.0)


def _employee_count(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=listing.num_employees, score=score_employee_count(listing.num_employees))


def _reason_for_sale(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.reason_for_sale, score=score_reason_for_sale(s.reason_for_sale))


def _years_in_business(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=listing.num_years, score=score_years_in_business(listing.num_years))


def _sba_prequalified(listing: ListingCreate, s: Signals) -> SignalScore:
    qualified = bool(listing.sba_preapproval)
    return SignalScore(value=qualified, score=1.0 if qualified else 0.0)


def _description_quality(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.description_quality, score=s.description_quality)


def _price_revenue_ratio(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.price_revenue_ratio, score=score_price_revenue_ratio(s.price_revenue_ratio))


def _customer_concentration(listing: ListingCreate, s: Signals) -> SignalScore:
    risky = s.customer_concentration_risk
    return SignalScore(value=risky, score=0.0 if risky else 1.0)


def _growth_potential(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.growth_potential, score=score_growth_potential(s.growth_potential))


def _lease_terms(listing: ListingCreate, s: Signals) -> SignalScore:
    return SignalScore(value=s.lease_terms, score=score_lease_terms(s.lease_terms))


SIGNAL_SCORERS: dict[str, SignalScorer] = {
    "sde_multiple": _sde_multiple,
    "data_completeness": _data_completeness,
    "owner_involvement": _owner_involvement,
    "recurring_revenue": _recurring_revenue,
    "employee_count": _employee_count,
    "reason_for_sale": _reason_for_sale,
    "years_in_business": _years_in_business,
    "sba_prequalified": _sba_prequalified,
    "description_quality": _description_quality,
    "price_revenue_ratio": _price_revenue_ratio,
    "customer_concentration_risk": _customer_concentration,
    "growth_potential": _growth_potential,
    "lease_terms": _lease_terms,
}

DEFAULT_WEIGHTS: dict[str, float] = {
    "sde_multiple": 25,
    "data_completeness": 20,
    "owner_involvement": 15,
    "recurring_revenue": 12,
    "employee_count": 12,
    "reason_for_sale": 10,
    "years_in_business": 8,
    "sba_prequalified": 5,
    "description_quality": 5,
    "price_revenue_ratio": 5,
    "customer_concentration_risk": 5,
    "growth_potential": 3,
    "lease_terms": 3,
}


class ScoringConfig(BaseModel):
    """Signal name -> weight. Validated against the scorer registry."""

    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    @field_validator("weights")
    @classmethod
    def _non_negative(cls, value: dict[str, float]) -> dict[str, float]:
        negative = [name for name, weight in value.items() if weight < 0]
        if negative:
            raise ValueError(f"Negative weights: {', '.join(sorted(negative))}")
        return value

    def validate_scorers(self, scorers: dict[str, SignalScorer] | None = None) -> "ScoringConfig":
        """Fail fast if a weighted signal has no sub-score function."""
        scorers = SIGNAL_SCORERS if scorers is None else scorers
        missing = sorted(name for name in self.weights if name not in scorers)
        if missing:
            raise ScoringConfigError(f"No sub-score function for weighted signals: {', '.join(missing)}")
        return self

    @classmethod
    def default(cls) -> "ScoringConfig":
        return cls().validate_scorers()

    @classmethod
    def from_file(cls, path: Path) -> "ScoringConfig":
        """Load a JSON object of {signal: weight} and validate it."""
        data = json.loads(path.read_text(encoding="utf-8"))
        scoring = cls(weights=data.get("weights", data)).validate_scorers()
        logger.info(f"Loaded {len(scoring.weights)} signal weights from {path}")
        return scoring
