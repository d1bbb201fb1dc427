"""Ordered pattern rules for text signals.

Each classification signal is an ordered list of (pattern, label) rules and
the first matching rule decides the label. Order is part of the data: more
specific phrases come first, and two rules may both match the same text.

Rules are plain data so the signal set can be tuned from a JSON file
without touching code:

    rules = SignalRules.from_file(Path("rules.json"))
    rules.classify("owner_involvement", "Absentee owner, manager in place")
    # -> "absentee owner"
"""

import logging
import re
from datetime import datetime, UTC
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class PatternRule(BaseModel):
    """One (pattern, label) pair.

    A rule without a label is dynamic: its first capture group is a number,
    read as either a year count or, above 1900, a calendar year.
    """

    model_config = ConfigDict(frozen=True)

    pattern: str
    label: str | None = None

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid pattern {value!r}: {e}") from e
        return value

    @property
    def regex(self) -> re.Pattern:
        return _compiled(self.pattern)


@lru_cache(maxsize=None)
def _compiled(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.I)


def _rules(*pairs: tuple[str, str | None]) -> list[PatternRule]:
    return [PatternRule(pattern=p, label=label) for p, label in pairs]


# Low involvement first, most specific to least specific
DEFAULT_OWNER_INVOLVEMENT = _rules(
    (r"absentee\s*owner", "absentee owner"),
    (r"semi[- ]?absentee", "semi-absentee"),
    (r"passive\s+(?:income|investment)", "absentee owner"),
    (r"hands[- ]?off", "absentee owner"),
    (r"low[- ]?touch", "semi-absentee"),
    (r"minimal\s+owner", "semi-absentee"),
    (r"manager[- ]?run", "manager run"),
    (r"manager\s+in\s+place", "manager in place"),
    (r"management\s+in\s+place", "management in place"),
    (r"(?:staff|team|employees?)\s+(?:run|manage)", "manager run"),
    (r"owner[- ]?operated", "owner operated"),
    (r"owner[- ]?involved", "owner involved"),
    (r"hands[- ]?on\s+owner", "hands-on owner"),
    (r"working\s+owner", "owner operated"),
    (r"full[- ]?time\s+owner", "owner operated"),
    (r"part[- ]?time\s+owner", "semi-absentee"),
    (r"run\s+by\s+(?:the\s+)?owner", "owner operated"),
    (r"owner\s+(?:can\s+)?semi[- ]?retire", "semi-absentee"),
)

DEFAULT_GROWTH_POTENTIAL = _rules(
    (r"untapped\s+market", "untapped market"),
    (r"significant\s+(?:growth|upside)", "significant growth"),
    (r"underperform(?:ing|ed|s)?", "underperforming"),
    (r"under[- ]?market", "under-market"),
    (r"room\s+to\s+grow", "room to grow"),
    (r"expansion\s+opportunit", "expansion opportunity"),
    (r"growth\s+potential", "growth potential"),
    (r"could\s+(?:easily\s+)?(?:add|expand|grow)", "could expand"),
    (r"opportunity\s+to\s+(?:add|expand|grow)", "opportunity to expand"),
    (r"potential\s+to\s+(?:increase|double|triple|grow)", "growth potential"),
    (r"not\s+(?:yet\s+)?(?:market|advertis)", "not yet marketed"),
    (r"additional\s+(?:revenue|income|service)", "additional revenue"),
    (r"scalab(?:le|ility)", "scalable"),
    (r"(?:add|adding|new)\s+(?:services?|locations?|territories?|routes?)", "add services"),
)

# Favorable, then neutral, then unfavorable
DEFAULT_REASON_FOR_SALE = _rules(
    (r"retir(?:ing|ement|ed)", "retiring"),
    (r"relocat(?:ing|ion|ed)", "relocation"),
    (r"health\s+(?:reasons?|issues?|concerns?|conditions?|problems?)", "health"),
    (r"other\s+(?:business\s+)?opportunit", "other opportunities"),
    (r"pursue\s+other", "other opportunities"),
    (r"personal\s+reasons?", "personal reasons"),
    (r"family\s+(?:reasons?|matters?|obligations?)", "family reasons"),
    (r"moving\s+(?:out\s+of\s+(?:state|area)|away)", "relocation"),
    (r"partner(?:ship)?\s+(?:split|dissolv)", "partnership dissolution"),
    (r"ready\s+(?:to|for)\s+(?:a\s+)?(?:new|next)\s+(?:chapter|venture|challenge)", "new venture"),
    (r"(?:burn(?:ed)?|burnt)\s*out", "burnout"),
    (r"struggling", "struggling"),
    (r"declining", "declining"),
)

DEFAULT_LEASE_TERMS = _rules(
    (r"long[- ]?term\s+lease", "long-term lease"),
    (r"favorable\s+lease", "favorable lease"),
    (r"below[- ]?market\s+(?:lease|rent)", "below-market rent"),
    (r"low\s+rent", "low rent"),
    (r"(?:new|recently?\s+(?:signed|renewed))\s+lease", "new lease"),
    (r"lease\s+(?:renew|option|renewable)", "lease renewable"),
    (r"(\d+)\s*[+-]?\s*year\s+lease", None),
    (r"lease\s+(?:through|until|expires?)\s+(\d{4})", None),
    (r"month[- ]?to[- ]?month", "month-to-month"),
    (r"short[- ]?term\s+lease", "short-term lease"),
    (r"lease\s+expir(?:ing|es?)\s+soon", "lease expiring soon"),
)

DEFAULT_RECURRING_REVENUE = [
    r"recurring|subscription|contract\s+revenue|repeat\s+customers?|monthly\s+contracts?"
    r"|annual\s+contracts?|(?:^|\W)mrr(?:\W|$)|(?:^|\W)arr(?:\W|$)|contracted\s+revenue|retainer",
]

DEFAULT_CUSTOMER_CONCENTRATION = [
    r"(?:single|one|few|major|primary|main|key)\s+(?:customer|client|account|contract)",
    r"(?:customer|client)\s+(?:concentration|dependency|dependent)",
    r"(?:\d{1,2}|one|two|three|few)\s+(?:large|major|key)\s+(?:customers?|clients?|accounts?)",
    r"(?:relies?|reliant|dependent)\s+on\s+(?:a\s+)?(?:single|one|few|handful)",
]

# Key fields counted by the data-completeness signal
DEFAULT_COMPLETENESS_FIELDS = [
    "asking_price",
    "cash_flow_sde",
    "gross_revenue",
    "ebitda",
    "num_employees",
    "num_years",
    "description",
    "owner_involvement",
]

CLASSIFIERS = ("owner_involvement", "growth_potential", "reason_for_sale", "lease_terms")


class SignalRules(BaseModel):
    """All pattern data used by the signal extractor."""

    owner_involvement: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_OWNER_INVOLVEMENT))
    growth_potential: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_GROWTH_POTENTIAL))
    reason_for_sale: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_REASON_FOR_SALE))
    lease_terms: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_LEASE_TERMS))
    recurring_revenue: list[str] = Field(default_factory=lambda: list(DEFAULT_RECURRING_REVENUE))
    customer_concentration: list[str] = Field(default_factory=lambda: list(DEFAULT_CUSTOMER_CONCENTRATION))
    completeness_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_COMPLETENESS_FIELDS))

    @field_validator("recurring_revenue", "customer_concentration")
    @classmethod
    def _flag_patterns_compile(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e
        return value

    @classmethod
    def default(cls) -> "SignalRules":
        return cls()

    @classmethod
    def from_file(cls, path: Path) -> "SignalRules":
        """Load rules from a JSON file. Lists not present keep their defaults."""
        rules = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.info(f"Loaded signal rules from {path}")
        return rules

    def classify(self, signal: str, text: str, current_year: int | None = None) -> str | None:
        """Return the label of the first rule that matches, or None.

        Args:
            signal: One of CLASSIFIERS.
            text: Text to scan (case-insensitive).
            current_year: Used to turn 'lease through 2030' into years remaining.
        """
        if signal not in CLASSIFIERS:
            raise KeyError(f"Unknown classification signal: {signal}")
        for rule in getattr(self, signal):
            match = rule.regex.search(text)
            if not match:
                continue
            if rule.label is not None:
                return rule.label
            return _dynamic_label(match, current_year)
        return None

    def flag(self, signal: str, text: str) -> bool:
        """True if any pattern of a boolean signal matches."""
        patterns = getattr(self, signal)
        return any(_compiled(p).search(text) for p in patterns)


def _dynamic_label(match: re.Match, current_year: int | None) -> str | None:
    """Label for rules whose capture group is a lease length or an end year."""
    if not match.groups() or match.group(1) is None:
        return None
    number = int(match.group(1))
    if number > 1900:
        if current_year is None:
            current_year = datetime.now(UTC).year
        years_left = number - current_year
        return f"{years_left}-year lease" if years_left > 0 else "lease expiring soon"
    return f"{number}-year lease"
