"""BizBuySell.com listing source.

- Search index: /businesses-for-sale/{page}/?q=<base64 filter>, page 1 has no page segment
- Listing links: /business-opportunity/<slug>/<numeric id>/
- Next page link: `a[class*="next"]`, `a[rel="next"]` or `.pagerNext a`
- Blocks: 403/503 with "Access Denied"/"blocked" in the body, or a CAPTCHA page title
- Detail page: JSON-LD (state, industry), dt/dd label pairs, labeled money in
  the page text, description container
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from ..config import SearchFilter
from ..errors import BlockedError, MalformedListingError, TransientError
from ..models.listing import RawRecord
from .base import BrowserSession, IndexPage, ListingSource

if TYPE_CHECKING:
    from playwright.async_api import Response

logger = logging.getLogger(__name__)


# =============================================================================
# Selectors and patterns
# =============================================================================

BASE_URL = "https://www.bizbuysell.com"
SEARCH_PATH = "/businesses-for-sale/"

LISTING_LINK_SELECTOR = 'a[href*="/business-opportunity/"]'
LISTING_URL_PATTERN = re.compile(r"/business-opportunity/[^/]+/\d+/?$")
NEXT_PAGE_SELECTOR = 'a[class*="next"], a[rel="next"], .pagerNext a'

BLOCK_STATUSES = (403, 503)
BLOCK_BODY_MARKERS = ("Access Denied", "blocked")
BLOCK_TITLE_MARKERS = ("captcha", "blocked", "access denied")

YEARS_TEXT_PATTERNS = [
    # "Established in 2006" / "Founded in 1984" / "Operating since 2010"
    (re.compile(r"(?:established|founded|operating|in business)\s+(?:in\s+|since\s+)?(\d{4})", re.I), ""),
    # "Established in the 1980s" -> decade start
    (re.compile(r"(?:established|founded|operating|in business)\s+(?:in\s+)?(?:the\s+)?(\d{4})s", re.I), ""),
    # "20 years in business" / "15+ years established"
    (
        re.compile(
            r"(\d{1,3})\+?\s*(?:years?|yrs?)[\s-]+"
            r"(?:in business|established|old|operating|of (?:operating|business))",
            re.I,
        ),
        " years",
    ),
    # "nearly 20 years" / "over 30 years"
    (re.compile(r"(?:nearly|over|approximately|about|almost)\s+(\d{1,3})\s*(?:years?|yrs?)", re.I), " years"),
    # "open for 12 years" / "operating for 25 years"
    (re.compile(r"(?:open|operating|in business|running)\s+for\s+(\d{1,3})\+?\s*(?:years?|yrs?)", re.I), " years"),
]

SBA_PATTERNS = [
    re.compile(r"SBA\s+pre[- ]?(?:qualified|approved)", re.I),
    re.compile(r"pre[- ]?(?:qualified|approved)\s+(?:for\s+)?SBA", re.I),
    re.compile(r"(?:eligible|approved)\s+for\s+SBA\s+(?:financing|loan)", re.I),
    re.compile(r"SBA\s+financing\s+(?:available|eligible)", re.I),
]

BREADCRUMB_SKIP = ("Home", "Businesses For Sale")
STATE_ABBREVIATION = re.compile(r"^[A-Z]{2}$")
MIN_PARAGRAPH_LENGTH = 100

# Collects the raw DOM facts in one round trip; all interpretation happens in Python.
SNAPSHOT_JS = """
() => {
  const text = (el) => (el && el.textContent ? el.textContent.trim() : "");
  const pairs = [];
  for (const dt of document.querySelectorAll("dt")) {
    const dd = dt.nextElementSibling;
    if (dd && dd.tagName === "DD") pairs.push([text(dt), text(dd)]);
  }
  const details = [];
  const spans = document.querySelectorAll(
    ".listingProfile_details span, .details-item, .bfsListing_headerRow span"
  );
  for (const span of spans) {
    const parent = span.closest("div, li, tr");
    let value = "";
    if (parent) {
      const valueEl = parent.querySelector(".price, .value, b, strong") ||
                      parent.querySelector("span:last-child");
      if (valueEl && valueEl !== span) value = text(valueEl);
    }
    details.push({ label: text(span), value, parent: text(span.parentElement) });
  }
  const descEl = document.querySelector(
    ".businessDescription, #businessDescription, .listingProfile_description, .bfsListing_mainBody"
  );
  return {
    text: document.body ? document.body.innerText : "",
    ldJson: [...document.querySelectorAll('script[type="application/ld+json"]')].map((s) => s.textContent || ""),
    pairs,
    details,
    breadcrumbs: [...document.querySelectorAll(".breadcrumb a, .bcLinks a")].map(text),
    description: descEl ? descEl.innerText.trim() : null,
    paragraphs: [...document.querySelectorAll("p, .description")].map((p) => (p.innerText || "").trim()),
  };
}
"""


# =============================================================================
# Page snapshot and parsing helpers
# =============================================================================

class DetailSpan(BaseModel):
    """A label span in the listing header with its nearby value."""

    label: str = ""
    value: str = ""
    parent: str = ""


class PageSnapshot(BaseModel):
    """Raw DOM facts collected from a listing page."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    ld_json: list[str] = Field(default_factory=list, alias="ldJson")
    pairs: list[tuple[str, str]] = Field(default_factory=list)
    details: list[DetailSpan] = Field(default_factory=list)
    breadcrumbs: list[str] = Field(default_factory=list)
    description: str | None = None
    paragraphs: list[str] = Field(default_factory=list)

    def find_value(self, label: str) -> str | None:
        """Find the value displayed next to a label (dt/dd first, then header spans)."""
        needle = label.lower()
        for term, value in self.pairs:
            if needle in term.lower() and value:
                return value
        for span in self.details:
            if needle not in span.label.lower():
                continue
            if span.value:
                return span.value
            idx = span.parent.lower().rfind(needle)
            if idx >= 0:
                rest = span.parent[idx + len(label):].lstrip(": \t\n").strip()
                if rest:
                    return rest
        return None


def build_search_url(page_num: int, search: SearchFilter | None = None, base_url: str = BASE_URL) -> str:
    """Build the search index URL for a 1-based page number."""
    search = search or SearchFilter()
    page_path = f"{page_num}/" if page_num > 1 else ""
    url = f"{base_url}{SEARCH_PATH}{page_path}"
    q = search.query_param()
    return f"{url}?q={q}" if q else url


def filter_listing_urls(hrefs: list[str]) -> list[str]:
    """Keep full listing URLs only, normalized to a trailing slash, deduplicated in order."""
    urls: dict[str, None] = {}
    for href in hrefs:
        if href and LISTING_URL_PATTERN.search(href):
            urls.setdefault(href.rstrip("/") + "/", None)
    return list(urls)


def check_block(status: int | None, body_text: str = "") -> None:
    """Classify an HTTP response.

    Raises:
        BlockedError: On a block page or rate-limit response.
        MalformedListingError: If the listing no longer exists.
        TransientError: On other server errors.
    """
    if status is None or status < 400:
        return
    if status in BLOCK_STATUSES and any(marker in body_text for marker in BLOCK_BODY_MARKERS):
        raise BlockedError(f"Access denied (HTTP {status})", status_code=status)
    if status in (403, 429):
        raise BlockedError(f"HTTP {status}", status_code=status)
    if status in (404, 410):
        raise MalformedListingError(f"Listing not found (HTTP {status})")
    raise TransientError(f"HTTP {status}", status_code=status)


def check_title(title: str) -> None:
    """Raise BlockedError if the page title looks like a CAPTCHA or block page."""
    lowered = title.lower()
    if any(marker in lowered for marker in BLOCK_TITLE_MARKERS):
        raise BlockedError(f"CAPTCHA/block detected on page title: {title!r}")


def labeled_money(text: str, label: str) -> str | None:
    """Match "Label: $1,234" or "Label: ~$1,234" in page text. `label` is a regex."""
    match = re.search(label + r"[:\s]*~?\s*\$([0-9,]+)", text, re.I)
    return f"${match.group(1)}" if match else None


def parse_json_ld(scripts: list[str]) -> tuple[str | None, str | None]:
    """Pull (state, industry) out of JSON-LD blocks. Malformed blocks are skipped."""
    state = None
    industry = None
    for script in scripts:
        try:
            data = json.loads(script)
        except ValueError:
            continue
        for item in data if isinstance(data, list) else [data]:
            if not isinstance(item, dict):
                continue
            kind = item.get("@type")
            if kind in ("Product", "LocalBusiness"):
                address = item.get("address")
                if isinstance(address, dict):
                    state = address.get("addressRegion") or None
                if item.get("category"):
                    industry = item["category"]
            if kind == "BreadcrumbList" and isinstance(item.get("itemListElement"), list):
                for element in item["itemListElement"]:
                    target = element.get("item") if isinstance(element, dict) else None
                    name = target.get("name") if isinstance(target, dict) else None
                    if name and name not in BREADCRUMB_SKIP:
                        industry = industry or name
    return state, industry


def state_from_breadcrumbs(breadcrumbs: list[str]) -> str | None:
    """Last two-letter uppercase breadcrumb, if any."""
    state = None
    for text in breadcrumbs:
        if STATE_ABBREVIATION.match(text.strip()):
            state = text.strip()
    return state


def find_years_text(text: str) -> str | None:
    """Find a founding year or years-in-business phrase in free text."""
    for pattern, suffix in YEARS_TEXT_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1) + suffix
    return None


def find_sba_text(text: str) -> str | None:
    for pattern in SBA_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def longest_paragraph(paragraphs: list[str]) -> str | None:
    longest = ""
    for paragraph in paragraphs:
        if len(paragraph) > len(longest) and len(paragraph) > MIN_PARAGRAPH_LENGTH:
            longest = paragraph
    return longest or None


def parse_detail(url: str, snapshot: PageSnapshot) -> RawRecord:
    """Turn a listing page snapshot into a RawRecord of labeled strings."""
    text = snapshot.text
    find = snapshot.find_value

    state, industry = parse_json_ld(snapshot.ld_json)
    state = state or state_from_breadcrumbs(snapshot.breadcrumbs)

    return RawRecord(
        url=url,
        state=state,
        industry=industry,
        asking_price=labeled_money(text, "Asking Price") or find("Asking Price"),
        cash_flow_sde=(
            labeled_money(text, "Cash Flow")
            or labeled_money(text, "SDE")
            or labeled_money(text, "Seller'?s Discretionary Earnings")
            or find("Cash Flow")
            or find("SDE")
        ),
        gross_revenue=(
            labeled_money(text, "Gross Revenue")
            or labeled_money(text, "Revenue")
            or find("Gross Revenue")
        ),
        ebitda=labeled_money(text, "EBITDA") or find("EBITDA"),
        inventory=find("Inventory"),
        ffe=labeled_money(text, "FF&E") or labeled_money(text, "Furniture") or find("FF&E"),
        num_employees=find("Employees") or find("Number of Employees"),
        num_years=(
            find("Year Established")
            or find("Established")
            or find("Years in Business")
            or find("Years")
            or find_years_text(text)
        ),
        support_training=find("Support") or find("Training"),
        sba_preapproval=find("SBA") or find("Pre-Qualified") or find_sba_text(text),
        description=snapshot.description or longest_paragraph(snapshot.paragraphs),
        page_text=text,
    )


# =============================================================================
# Source
# =============================================================================

class BizBuySellSource(ListingSource):
    """BizBuySell listings filtered by gross revenue band."""

    source_id = "bizbuysell"

    def __init__(
        self,
        session: BrowserSession,
        search: SearchFilter | None = None,
        base_url: str = BASE_URL,
    ):
        self.session = session
        self.search = search or SearchFilter()
        self.base_url = base_url

    async def _goto(self, url: str) -> Response | None:
        page = self.session.page
        response = await page.goto(url, wait_until="domcontentloaded")
        if response is not None and response.status in BLOCK_STATUSES:
            body = await page.inner_text("body")
            check_block(response.status, body)
        elif response is not None:
            check_block(response.status)
        return response

    async def fetch_index_page(self, page_num: int) -> IndexPage:
        url = build_search_url(page_num, self.search, self.base_url)
        logger.info(f"Search page {page_num}: {url}")
        try:
            await self._goto(url)
        except MalformedListingError:
            # Past the last results page
            logger.info(f"Search page {page_num} not found, end of results")
            return IndexPage(urls=[], has_next=False)
        await self.session.human_scroll()

        page = self.session.page
        hrefs = await page.eval_on_selector_all(LISTING_LINK_SELECTOR, "els => els.map((e) => e.href)")
        urls = filter_listing_urls(hrefs)
        has_next = await page.query_selector(NEXT_PAGE_SELECTOR) is not None
        return IndexPage(urls=urls, has_next=has_next)

    async def extract(self, url: str) -> RawRecord:
        logger.debug(f"Extracting listing: {url}")
        await self._goto(url)
        page = self.session.page
        check_title(await page.title())
        await self.session.human_scroll()

        data = await page.evaluate(SNAPSHOT_JS)
        return parse_detail(url, PageSnapshot.model_validate(data))
