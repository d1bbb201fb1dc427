"""Raw string -> typed value conversion.

Pure functions, no I/O. Unparseable values come back as None so one odd field
never aborts the pipeline. The one exception is the listing id: a URL without
one is malformed and raises `MalformedListingError`.
"""

import hashlib
import logging
import re
from datetime import datetime, UTC
from urllib.parse import urlparse

from .errors import MalformedListingError
from .models.listing import ListingCreate, RawRecord

logger = logging.getLogger(__name__)


_PARENTHETICAL = re.compile(r"\s*\([^)]*\)")
_MAGNITUDE_SUFFIX = re.compile(r"(\d)\s*([KkMm])\b")
_MAGNITUDES = {"K": 1_000, "M": 1_000_000}

# "15 years", "20+ yrs"
_YEARS_PHRASE = re.compile(r"(\d{1,3})\s*\+?\s*(?:years?|yrs?)\b", re.I)
# A four-digit founding year that is not part of a dollar figure ("$2,000", "$1999")
_FOUNDING_YEAR = re.compile(r"(?<![\d$,.])(1[89]\d{2}|20\d{2})(?![\d,.])")
_BARE_NUMBER = re.compile(r"\s*(\d{1,3})\s*")
_FIRST_INT = re.compile(r"\d[\d,]*")


def parse_money(text: str | None) -> int | None:
    """Parse a money string like '$1,250,000', '$178K' or '$2.4M' into whole dollars.

    Parenthetical asides such as '(24.45%)' are dropped first, and the K/M
    suffix is detected before non-numeric characters are stripped.
    """
    if not text:
        return None
    stripped = _PARENTHETICAL.sub("", text).strip()
    suffix = _MAGNITUDE_SUFFIX.search(stripped)
    cleaned = re.sub(r"[^0-9.]", "", stripped)
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if suffix:
        value *= _MAGNITUDES[suffix.group(2).upper()]
    return int(round(value))


def parse_count(text: str | None) -> int | None:
    """Parse the first integer in a string, e.g. '12 full-time' -> 12."""
    if not text:
        return None
    match = _FIRST_INT.search(text)
    if not match:
        return None
    try:
        return int(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_years(text: str | None, current_year: int | None = None) -> int | None:
    """Derive years in business.

    An explicit 'N years' phrase wins. Otherwise a founding year gives
    current_year - year. A bare small number is taken as a year count.
    """
    if not text:
        return None
    if current_year is None:
        current_year = datetime.now(UTC).year

    phrase = _YEARS_PHRASE.search(text)
    if phrase:
        return int(phrase.group(1))

    founded = _FOUNDING_YEAR.search(text)
    if founded:
        year = int(founded.group(1))
        if year > current_year:
            return None
        return current_year - year

    bare = _BARE_NUMBER.fullmatch(text)
    if bare:
        return int(bare.group(1))
    return None


def extract_external_id(url: str) -> str:
    """Return the last purely-numeric path segment of a listing URL.

    Raises:
        MalformedListingError: If the URL has no numeric segment.
    """
    path = urlparse(url).path
    numeric = [segment for segment in path.split("/") if segment.isdigit()]
    if not numeric:
        raise MalformedListingError(f"Could not extract listing id from URL: {url}")
    return numeric[-1]


def content_fingerprint(page_text: str | None) -> str:
    """sha256 hex digest of the full page text."""
    return hashlib.sha256((page_text or "").encode("utf-8")).hexdigest()


def _clean_text(text: str | None) -> str | None:
    if text is None:
        return None
    text = text.strip()
    return text or None


def normalize_record(
    raw: RawRecord,
    source: str,
    current_year: int | None = None,
    seen_at: datetime | None = None,
) -> ListingCreate:
    """Convert a RawRecord into a typed ListingCreate.

    Text signals (owner involvement, lease terms, ...) are left at their
    defaults; the signal extractor fills them in.
    """
    return ListingCreate(
        source=source,
        external_id=extract_external_id(raw.url),
        url=raw.url,
        state=_clean_text(raw.state),
        industry=_clean_text(raw.industry),
        asking_price=parse_money(raw.asking_price),
        gross_revenue=parse_money(raw.gross_revenue),
        cash_flow_sde=parse_money(raw.cash_flow_sde),
        ebitda=parse_money(raw.ebitda),
        inventory=parse_money(raw.inventory),
        ffe=parse_money(raw.ffe),
        num_employees=parse_count(raw.num_employees),
        num_years=parse_years(raw.num_years, current_year),
        support_training=_clean_text(raw.support_training),
        sba_preapproval=_clean_text(raw.sba_preapproval),
        description=_clean_text(raw.description),
        content_hash=content_fingerprint(raw.page_text),
        is_active=True,
        last_seen_at=seen_at or datetime.now(UTC),
    )
