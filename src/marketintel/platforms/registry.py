"""
Centralized platform registry.

Single source of truth for the external listing portals we crawl. Static
configuration, built once at import: base URL, per-transaction search paths,
the shared rate-limit budget, pagination strategy and the (executor-opaque)
extraction selectors. All modules that need platform config by id import
from here.
"""
from typing import Literal, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from marketintel.errors import UnknownPlatformError
from marketintel.jobs import SearchFilters


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests: int = Field(gt=0)
    per_minutes: float = Field(gt=0)


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["query", "path", "offset", "none"] = "query"
    param: Optional[str] = "page"
    max_pages: int = Field(default=50, ge=1)
    page_size: int = Field(default=20, ge=1)


class PlatformConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    base_url: str
    # Keyed by transaction type ("sale" / "rent")
    search_paths: dict[str, str]
    rate_limit: RateLimit
    pagination: Pagination = Pagination()
    # Search filter -> portal query parameter. Keys: "area", "property_type",
    # "min_price", "max_price"; filters the portal cannot take are left out
    filter_params: dict[str, str] = {}
    # Canonical property type -> portal category token
    property_type_values: dict[str, str] = {}
    selectors: dict[str, str] = {}


# Spitogatos is a React SPA with aggressive anti-bot; keep its budget lowest.
# Tospitimou pages with "p", not "page", and shares image CDN with Spitogatos.
PLATFORMS: dict[str, PlatformConfig] = {
    "spitogatos": PlatformConfig(
        id="spitogatos",
        name="Spitogatos.gr",
        base_url="https://www.spitogatos.gr",
        search_paths={"sale": "/pwlisi/katoikies", "rent": "/enoikiasi/katoikies"},
        rate_limit=RateLimit(requests=15, per_minutes=1),
        pagination=Pagination(type="query", param="page", max_pages=50),
        filter_params={
            "area": "geo_area_txt",
            "property_type": "property_type",
            "min_price": "minPrice",
            "max_price": "maxPrice",
        },
        property_type_values={
            "APARTMENT": "apartment",
            "STUDIO": "apartment",
            "HOUSE": "house",
            "MAISONETTE": "maisonette",
            "VILLA": "villa",
            "LAND": "land",
            "COMMERCIAL": "commercial",
        },
        selectors={
            "card": '[data-testid="property-card"], article[class*="PropertyCard"], div[class*="ResultItem"], .property-card',
            "link": 'a[href*="/aggelies/"], a[href*="/en/property/"]',
            "price": '[data-testid="price"], [class*="Price"], span[class*="price"]',
            "title": '[data-testid="title"], [class*="Title"], h2[class*="title"]',
            "location": '[data-testid="location"], [class*="Location"], [class*="Area"]',
            "size": '[data-testid="size"], [class*="Size"]',
            "bedrooms": '[data-testid="bedrooms"], [class*="Bedroom"]',
            "bathrooms": '[data-testid="bathrooms"], [class*="Bathroom"]',
            "property_type": '[data-testid="property-type"], [class*="PropertyType"]',
            "agency_name": '[data-testid="agency"], [class*="Agency"], [class*="Realtor"]',
            "agency_phone": '[data-testid="phone"], a[href^="tel:"]',
            "images": 'img[data-testid="property-image"], img[data-src*="spitogatos"], img[src*="cloudfront"]',
            "next_page": '[data-testid="next-page"], a[rel="next"]',
        },
    ),
    "xe_gr": PlatformConfig(
        id="xe_gr",
        name="XE.gr",
        base_url="https://www.xe.gr",
        search_paths={
            "sale": "/en/property/r/property-for-sale",
            "rent": "/en/property/r/property-to-rent",
        },
        rate_limit=RateLimit(requests=20, per_minutes=1),
        pagination=Pagination(type="query", param="page", max_pages=50),
        filter_params={
            "area": "geo_place",
            "property_type": "property_type",
            "min_price": "minimum_price",
            "max_price": "maximum_price",
        },
        property_type_values={
            "APARTMENT": "apartment",
            "STUDIO": "apartment",
            "HOUSE": "detached-house",
            "VILLA": "detached-house",
            "MAISONETTE": "maisonette",
            "LAND": "plots-of-land",
            "COMMERCIAL": "commercial-property",
            "WAREHOUSE": "commercial-property",
            "PARKING": "parking-spaces",
        },
        selectors={
            "card": '[data-testid="property-card"], [data-property-id], article[class*="PropertyCard"], div[class*="ResultCard"]',
            "link": 'a[href*="/property/d/"]',
            "price": '[data-testid="price"], [class*="Price"], span[class*="price"]',
            "title": '[data-testid="title"], [class*="Title"], h2[class*="title"]',
            "location": '[data-testid="location"], [class*="Location"], [class*="Address"]',
            "size": '[data-testid="size"], [class*="Size"]',
            "bedrooms": '[data-testid="bedrooms"], [class*="Bedroom"]',
            "bathrooms": '[data-testid="bathrooms"], [class*="Bathroom"]',
            "property_type": '[data-testid="property-type"], [class*="Type"]',
            "agency_name": '[data-testid="agency"], [class*="Agency"]',
            "agency_phone": '[data-testid="phone"], a[href^="tel:"]',
            "images": 'img[data-testid="property-image"], img[class*="PropertyImage"]',
            "next_page": 'a[rel="next"], button[aria-label="Next"]',
        },
    ),
    "tospitimou": PlatformConfig(
        id="tospitimou",
        name="Tospitimou.gr",
        base_url="https://en.tospitimou.gr",
        search_paths={
            "sale": "/property/for-sale/houses",
            "rent": "/property/to-rent/houses",
        },
        rate_limit=RateLimit(requests=25, per_minutes=1),
        pagination=Pagination(type="query", param="p", max_pages=50),
        filter_params={"area": "location", "property_type": "category"},
        property_type_values={
            "APARTMENT": "diamerisma",
            "HOUSE": "monokatoikia",
            "MAISONETTE": "mezoneta",
            "VILLA": "vila",
            "LAND": "oikopedo",
            "COMMERCIAL": "epaggelmatiko",
        },
        selectors={
            "card": '.search-result[id^="result-row_"], [data-targeturl*="/property/"], .property-card',
            "link": 'a[href*="/property/"]',
            "price": '.priceArea, [class*="price"]',
            "title": '.searchResultsH2 a, h2 a, [class*="title"]',
            "location": '[class*="location"], [class*="address"], [class*="area"]',
            "size": '[class*="size"]',
            "bedrooms": '[class*="bedroom"]',
            "bathrooms": '[class*="bathroom"]',
            "property_type": '[class*="type"], [class*="category"]',
            "agency_name": '[class*="agent"], [class*="agency"]',
            "agency_phone": 'a[href^="tel:"], [class*="phone"]',
            "images": 'img[src*="spitogatos.gr"], img[src*="tospitimou"], img.lazy',
            "next_page": 'a[rel="next"], .pagination a.next',
        },
    ),
}


def get_platform_config(platform_id: str) -> PlatformConfig:
    """Return the platform config, or raise UnknownPlatformError (a configuration error)."""
    try:
        return PLATFORMS[platform_id]
    except KeyError:
        raise UnknownPlatformError(platform_id) from None


def all_platform_ids() -> list[str]:
    return list(PLATFORMS)


def platform_names() -> dict[str, str]:
    return {pid: cfg.name for pid, cfg in PLATFORMS.items()}


def build_page_url(
    platform: PlatformConfig,
    page: int,
    filters: Optional[SearchFilters] = None,
) -> str:
    """
    Build the search-results URL for a page under the platform's pagination strategy.

    query:  ?{param}=N   (omitted on page 1)
    path:   /page/N      (omitted on page 1)
    offset: ?{param}=(N-1)*page_size
    none:   single page; N is ignored

    The area filter is the first target area (or municipality); a property
    type is sent only when exactly one is targeted and the portal has a
    category for it.
    """
    filters = filters or SearchFilters()
    transaction = filters.primary_transaction_type()
    path = platform.search_paths.get(transaction) or platform.search_paths.get("sale", "")
    url = platform.base_url.rstrip("/") + path

    property_type = filters.single_property_type()
    values = {
        "area": filters.primary_area(),
        "property_type": platform.property_type_values.get(property_type) if property_type else None,
        "min_price": filters.min_price,
        "max_price": filters.max_price,
    }
    params: list[tuple[str, str]] = []
    for filter_name, param in platform.filter_params.items():
        value = values.get(filter_name)
        if value is not None:
            params.append((param, str(value)))

    pagination = platform.pagination
    if pagination.type == "query" and page > 1:
        params.append((pagination.param or "page", str(page)))
    elif pagination.type == "offset":
        params.append((pagination.param or "offset", str((page - 1) * pagination.page_size)))
    elif pagination.type == "path" and page > 1:
        url = f"{url.rstrip('/')}/page/{page}"

    return f"{url}?{urlencode(params)}" if params else url
