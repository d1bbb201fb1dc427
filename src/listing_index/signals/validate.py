"""Extraction sanity checks.

Scans the description for phrases that imply a field should have been
extracted, and warns when that field came out empty. Warnings only; nothing
here fails a listing.
"""

import logging
import re

from ..models.listing import ListingCreate
from .extractor import Signals

logger = logging.getLogger(__name__)


FINANCIAL_CHECKS = [
    ("asking_price", r"asking\s+price[^$]{0,30}\$[\d,.]+", "Asking Price"),
    ("cash_flow_sde", r"(?:cash\s+flow|(?:^|\W)sde(?:\W|$)|seller'?s\s+discretionary)[^$]{0,30}\$[\d,.]+", "Cash Flow/SDE"),
    ("gross_revenue", r"(?:gross\s+)?revenue[^$]{0,30}\$[\d,.]+", "Gross Revenue"),
    ("ebitda", r"ebitda[^$]{0,30}\$[\d,.]+", "EBITDA"),
    ("ffe", r"(?:ff&e|furniture)[^$]{0,30}\$[\d,.]+", "FF&E"),
]

OPERATIONAL_CHECKS = [
    ("num_years", r"(?:established|founded|since|in\s+business)\s+(?:in\s+)?(?:since\s+)?\d{4}", "Years in Business"),
    ("sba_preapproval", r"sba\s+(?:pre[- ]?)?(?:qualifi|approv)\w*", "SBA Pre-qualification"),
]

SIGNAL_CHECKS = [
    (
        "owner_involvement",
        r"absentee\s*owner|semi[- ]?absentee|manager[- ]?run|manager\s+in\s+place"
        r"|management\s+in\s+place|owner[- ]?operated|owner[- ]?involved",
        "Owner Involvement",
    ),
    (
        "reason_for_sale",
        r"retir(?:ing|ement|ed)|relocat(?:ing|ion|ed)|health\s+(?:reasons?|issues?)"
        r"|personal\s+reasons?|family\s+(?:reasons?|matters?)",
        "Reason for Sale",
    ),
    (
        "growth_potential",
        r"growth\s+potential|room\s+to\s+grow|expansion\s+opportunit|untapped|scalab(?:le|ility)",
        "Growth Potential",
    ),
    (
        "lease_terms",
        r"long[- ]?term\s+lease|month[- ]?to[- ]?month|\d+[- ]?year\s+lease|favorable\s+lease",
        "Lease Terms",
    ),
]


def _empty(value) -> bool:
    return value is None or value is False or value == ""


def validate_extraction(listing: ListingCreate, signals: Signals) -> list[str]:
    """Return warnings for fields mentioned in the description but not extracted."""
    warnings: list[str] = []
    description = listing.description or ""
    if not description:
        return warnings

    for field_name, pattern, label in FINANCIAL_CHECKS + OPERATIONAL_CHECKS:
        if _empty(getattr(listing, field_name)) and re.search(pattern, description, re.I):
            warnings.append(f"{label} found in description but {field_name} is empty")

    for field_name, pattern, label in SIGNAL_CHECKS:
        if _empty(getattr(signals, field_name)) and re.search(pattern, description, re.I):
            warnings.append(f"{label} found in description but signal {field_name} is empty")

    for warning in warnings:
        logger.warning(f"{listing.external_id}: {warning}")
    return warnings
