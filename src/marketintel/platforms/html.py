"""
Selector-driven HTML crawl executor.

Fetches one search-results page per call with httpx and extracts listing
cards with the platform's CSS selectors (registry.PlatformConfig.selectors).
Works for the server-rendered portals; JS-heavy pages may come back with no
cards, which the crawl loop treats as the end of results.

Raw fields are left as text ("150.000 €", "85 τ.μ.") for normalize().
"""
import re
from typing import Any, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from marketintel.errors import PageFetchError
from marketintel.jobs import ScrapeJobData
from marketintel.platforms.base import PageResult
from marketintel.platforms.registry import PlatformConfig, build_page_url

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "el-GR,el;q=0.9,en-US;q=0.8,en;q=0.7",
}

_ID_ATTRS = ("data-property-id", "data-listing-id", "data-id")
_TRAILING_ID_RE = re.compile(r"(\d{4,})$")
_HREF_ID_RE = re.compile(r"/(\d{4,})(?:[/?#]|$)")

# Raw listing key -> selector key in PlatformConfig.selectors
_TEXT_FIELDS = {
    "priceText": "price",
    "title": "title",
    "area": "location",
    "sizeSqm": "size",
    "bedrooms": "bedrooms",
    "bathrooms": "bathrooms",
    "propertyType": "property_type",
    "agencyName": "agency_name",
}


def _fetch_html(url: str, page: int, timeout: float = 30.0) -> str:
    """Fetch a search-results page. Raises PageFetchError on transport error or non-200."""
    try:
        with httpx.Client(timeout=timeout, headers=_HEADERS, follow_redirects=True) as client:
            response = client.get(url)
    except httpx.HTTPError as e:
        raise PageFetchError(f"Request failed for {url}: {e}", page=page) from e
    if response.status_code != 200:
        raise PageFetchError(
            f"HTTP {response.status_code} for {url}", page=page
        )
    return response.text


def _text(card, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    el = card.select_one(selector)
    if el is None:
        return None
    text = el.get_text(" ", strip=True)
    return text or None


def _listing_id(card, href: Optional[str]) -> Optional[str]:
    for attr in _ID_ATTRS:
        value = card.get(attr)
        if value:
            return str(value).strip()
    dom_id = card.get("id") or ""
    match = _TRAILING_ID_RE.search(dom_id)
    if match:
        return match.group(1)
    if href:
        match = _HREF_ID_RE.search(href)
        if match:
            return match.group(1)
    return None


def _phone(card, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    el = card.select_one(selector)
    if el is None:
        return None
    href = el.get("href") or ""
    if href.startswith("tel:"):
        return href[len("tel:"):]
    return el.get_text(strip=True) or None


def _images(card, selector: Optional[str], base_url: str) -> list[str]:
    if not selector:
        return []
    urls = []
    for img in card.select(selector):
        src = img.get("data-src") or img.get("src")
        if src:
            urls.append(urljoin(base_url + "/", src))
    return urls


def _parse_listings_html(html: str, platform: PlatformConfig) -> tuple[list[dict[str, Any]], bool]:
    """
    Parse a search-results page into raw listing dicts.

    Returns (listings, has_next). Cards are emitted even without an id;
    the runner skips and reports those.
    """
    if not html:
        return [], False
    soup = BeautifulSoup(html, "html.parser")
    selectors = platform.selectors
    card_selector = selectors.get("card")
    if not card_selector:
        return [], False

    listings = []
    for card in soup.select(card_selector):
        link = card.select_one(selectors["link"]) if selectors.get("link") else None
        href = card.get("data-targeturl") or (link.get("href") if link else None)
        raw: dict[str, Any] = {
            "sourceListingId": _listing_id(card, href),
            "sourceUrl": urljoin(platform.base_url + "/", href) if href else None,
        }
        for field_name, selector_key in _TEXT_FIELDS.items():
            raw[field_name] = _text(card, selectors.get(selector_key))
        raw["agencyPhone"] = _phone(card, selectors.get("agency_phone"))
        raw["images"] = _images(card, selectors.get("images"), platform.base_url)
        raw["rawData"] = {"card_id": card.get("id")} if card.get("id") else {}
        listings.append(raw)

    next_selector = selectors.get("next_page")
    has_next = bool(next_selector and soup.select_one(next_selector))
    return listings, has_next


class HtmlPageFetcher:
    """PageFetcher over plain HTTP + CSS selectors."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def fetch_page(self, platform: PlatformConfig, job: ScrapeJobData, page: int) -> PageResult:
        url = build_page_url(platform, page, job.filters)
        html = _fetch_html(url, page, timeout=self.timeout)
        listings, has_next = _parse_listings_html(html, platform)
        # Cards don't repeat the transaction type; the search path decided it
        transaction = job.filters.primary_transaction_type()
        for raw in listings:
            raw["transactionType"] = transaction
        return PageResult(listings=listings, has_next=has_next)
