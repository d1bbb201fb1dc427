"""Per-listing processing: normalize, extract signals, score."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC

from .models.listing import ListingCreate, RawRecord, ScoreRecord
from .normalize import normalize_record
from .scoring import ScoringConfig, ScoreResult, score
from .signals import SignalRules, Signals, extract_signals, validate_extraction

logger = logging.getLogger(__name__)


@dataclass
class ScoredListing:
    """A listing row with its signals and score, ready to persist."""

    listing: ListingCreate
    signals: Signals
    result: ScoreResult
    warnings: list[str] = field(default_factory=list)

    def score_record(self, scored_at: datetime | None = None) -> ScoreRecord:
        return ScoreRecord(
            source=self.listing.source,
            external_id=self.listing.external_id,
            index_score=self.result.index_score,
            signals=self.result.signals,
            scored_at=scored_at or datetime.now(UTC),
        )


@dataclass
class ListingPipeline:
    """Normalizer -> signal extractor -> scoring engine."""

    source: str
    rules: SignalRules = field(default_factory=SignalRules.default)
    scoring: ScoringConfig = field(default_factory=ScoringConfig.default)
    current_year: int | None = None

    def _finish(self, listing: ListingCreate, page_text: str | None = None) -> ScoredListing:
        signals = extract_signals(listing.description, listing, self.rules, self.current_year, page_text)
        listing = signals.apply_to(listing)
        warnings = validate_extraction(listing, signals)
        result = score(listing, signals, self.scoring)
        listing = listing.model_copy(update={"index_score": result.index_score})
        return ScoredListing(listing=listing, signals=signals, result=result, warnings=warnings)

    def build_scored_listing(self, raw: RawRecord) -> ScoredListing:
        """Process a freshly extracted page.

        Raises:
            MalformedListingError: If the URL carries no listing id.
        """
        listing = normalize_record(raw, self.source, self.current_year)
        return self._finish(listing, raw.page_text)

    def rescore(self, listing: ListingCreate) -> ScoredListing:
        """Recompute signals and score for a stored listing.

        Page-text signals stored by the crawl are kept for listings without a
        description, so rescoring an unchanged listing gives the same aggregate.
        """
        return self._finish(listing)
