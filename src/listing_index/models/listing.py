"""Listing data models."""

from datetime import datetime, UTC
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class RawRecord(BaseModel):
    """Labeled raw strings pulled off one listing page by a source adapter."""

    url: str = Field(..., description="Canonical listing URL")
    state: str | None = None
    industry: str | None = None
    asking_price: str | None = None
    gross_revenue: str | None = None
    cash_flow_sde: str | None = None
    ebitda: str | None = None
    inventory: str | None = None
    ffe: str | None = None
    num_employees: str | None = None
    num_years: str | None = None
    support_training: str | None = None
    sba_preapproval: str | None = None
    description: str | None = None
    page_text: str = Field("", description="Full page text, used for the content fingerprint")


class ListingCreate(BaseModel):
    """Normalized listing ready for upsert."""

    source: str = Field(..., description="Source identifier (e.g., 'bizbuysell')")
    external_id: str = Field(..., description="ID from the source platform")
    url: str = Field(..., description="Listing URL")
    state: str | None = Field(None, description="US state")
    industry: str | None = Field(None, description="Business category")

    # Money fields in whole dollars
    asking_price: int | None = Field(None, ge=0)
    gross_revenue: int | None = Field(None, ge=0)
    cash_flow_sde: int | None = Field(None, ge=0, description="Cash flow / seller's discretionary earnings")
    ebitda: int | None = Field(None, ge=0)
    inventory: int | None = Field(None, ge=0)
    ffe: int | None = Field(None, ge=0, description="Furniture, fixtures and equipment")

    num_employees: int | None = Field(None, ge=0)
    num_years: int | None = Field(None, ge=0, description="Years in business")
    support_training: str | None = None
    sba_preapproval: str | None = Field(None, description="SBA pre-qualification text")
    description: str | None = None

    # Text signals, filled by the signal extractor
    owner_involvement: str | None = None
    has_recurring_revenue: bool = False
    reason_for_sale: str | None = None
    growth_potential: str | None = None
    lease_terms: str | None = None
    customer_concentration_risk: bool = False

    index_score: float | None = Field(None, description="Aggregate score, 0-100")
    content_hash: str | None = Field(None, description="sha256 of the full page text")
    is_active: bool = True
    last_seen_at: datetime = Field(default_factory=_utc_now)

    @property
    def key(self) -> tuple[str, str]:
        """Natural identity of the listing."""
        return (self.source, self.external_id)


class Listing(ListingCreate):
    """Full listing model with database fields."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique listing ID")
    first_seen_at: datetime = Field(default_factory=_utc_now)
    content_changed_at: datetime | None = Field(None, description="Last time the content fingerprint changed")


class SignalScore(BaseModel):
    """One entry of a score breakdown."""

    value: Any = None
    score: float | None = Field(None, ge=0.0, le=1.0)


class ScoreRecord(BaseModel):
    """Computed score for one listing, replaced on every scoring run."""

    source: str
    external_id: str
    index_score: float | None = Field(None, description="Aggregate 0-100, None when nothing was scoreable")
    signals: dict[str, SignalScore] = Field(default_factory=dict)
    scored_at: datetime = Field(default_factory=_utc_now)
