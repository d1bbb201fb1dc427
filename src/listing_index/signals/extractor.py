"""Derive scoring signals from a listing's description and structured fields."""

from pydantic import BaseModel

from ..models.listing import ListingCreate
from .rules import SignalRules


class Signals(BaseModel):
    """Signals for one listing. None means the signal was not found."""

    owner_involvement: str | None = None
    has_recurring_revenue: bool = False
    growth_potential: str | None = None
    reason_for_sale: str | None = None
    lease_terms: str | None = None
    customer_concentration_risk: bool = False

    sde_multiple: float | None = None
    has_earnings_data: bool = False
    data_completeness: float = 0.0
    description_quality: float = 0.0
    price_revenue_ratio: float | None = None

    def apply_to(self, listing: ListingCreate) -> ListingCreate:
        """Copy the text signals onto the listing row."""
        return listing.model_copy(update={
            "owner_involvement": self.owner_involvement,
            "has_recurring_revenue": self.has_recurring_revenue,
            "growth_potential": self.growth_potential,
            "reason_for_sale": self.reason_for_sale,
            "lease_terms": self.lease_terms,
            "customer_concentration_risk": self.customer_concentration_risk,
        })


def _ratio(numerator: int | None, denominator: int | None) -> float | None:
    """numerator / denominator rounded to 2 places, only for positive operands."""
    if not numerator or denominator is None or denominator <= 0:
        return None
    return round(numerator / denominator, 2)


def _description_quality(description: str | None) -> float:
    """Length tiers as a proxy for seller seriousness."""
    length = len((description or "").strip())
    if length == 0:
        return 0.0
    if length < 100:
        return 0.2
    if length < 500:
        return 0.6
    return 1.0


def _present(value) -> bool:
    return value is not None and value != ""


def extract_signals(
    description: str | None,
    listing: ListingCreate,
    rules: SignalRules | None = None,
    current_year: int | None = None,
    page_text: str | None = None,
) -> Signals:
    """Extract all signals for a listing.

    Args:
        description: Description text to scan for text signals.
        listing: Normalized listing (structured fields).
        rules: Pattern rules; defaults to SignalRules.default().
        current_year: Reference year for 'lease through YYYY'.
        page_text: Full page text. Without a description, owner involvement
            and recurring revenue are read from it instead. Description
            quality and the other text signals only ever see the description.

    Returns:
        Signals for the listing.
    """
    rules = rules or SignalRules.default()
    text = (description or "").strip().lower()

    if text:
        owner_involvement = rules.classify("owner_involvement", text)
        has_recurring_revenue = rules.flag("recurring_revenue", text)
    elif page_text:
        page_lower = page_text.lower()
        owner_involvement = rules.classify("owner_involvement", page_lower)
        has_recurring_revenue = rules.flag("recurring_revenue", page_lower)
    else:
        # Stored listing without a description: keep what the crawl read off the page
        owner_involvement = listing.owner_involvement
        has_recurring_revenue = listing.has_recurring_revenue

    # Earnings: SDE first, EBITDA as fallback
    earnings = None
    if listing.cash_flow_sde and listing.cash_flow_sde > 0:
        earnings = listing.cash_flow_sde
    elif listing.ebitda and listing.ebitda > 0:
        earnings = listing.ebitda

    # Completeness looks at the listing with the freshly classified owner involvement
    fields = listing.model_dump()
    fields["owner_involvement"] = owner_involvement
    present = sum(1 for name in rules.completeness_fields if _present(fields.get(name)))
    completeness = round(present / len(rules.completeness_fields), 2) if rules.completeness_fields else 0.0

    return Signals(
        owner_involvement=owner_involvement,
        has_recurring_revenue=has_recurring_revenue,
        growth_potential=rules.classify("growth_potential", text),
        reason_for_sale=rules.classify("reason_for_sale", text),
        lease_terms=rules.classify("lease_terms", text, current_year),
        customer_concentration_risk=rules.flag("customer_concentration", text),
        sde_multiple=_ratio(listing.asking_price, earnings),
        has_earnings_data=earnings is not None,
        data_completeness=completeness,
        description_quality=_description_quality(description),
        price_revenue_ratio=_ratio(listing.asking_price, listing.gross_revenue),
    )
