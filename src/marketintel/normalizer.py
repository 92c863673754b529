"""
Listing normalizer: pure function that converts one raw platform listing
into the canonical, tenant-scoped listing dict.

The runner calls normalize(raw, platform, organization_id) on every crawled
item before upserting it. This module never touches the database and never
raises: every field degrades to None (or a safe default) on bad input, so one
malformed field cannot abort the rest of the record.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from marketintel.parsing import (
    normalize_floor,
    normalize_phone,
    normalize_postal_code,
    normalize_text,
    parse_coordinate,
    parse_listing_date,
    parse_price,
    parse_rooms,
    parse_size,
    parse_year,
    price_per_sqm,
)
from marketintel.vocabulary import (
    AREA_NORMALIZATION,
    DEFAULT_PROPERTY_PLATFORM,
    OTHER,
    PROPERTY_TYPE_FALLBACKS,
    PROPERTY_TYPE_MAPS,
    RENT,
    RENTAL_KEYWORDS,
    SALE,
    TRANSACTION_TYPE_MAP,
)


# ---------------------------------------------------------------------------
# Raw listing input model
# ---------------------------------------------------------------------------

class RawListing(BaseModel):
    """
    One crawled item in its source shape.

    Accepts snake_case or the camelCase keys crawl executors emit
    (sourceListingId, priceText, sizeSqm, ...). Values are kept as-is
    (Any); typing happens in normalize().
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    source_listing_id: Optional[Any] = None
    source_url: Optional[Any] = None
    title: Optional[Any] = None
    price: Optional[Any] = None
    price_text: Optional[Any] = None
    property_type: Optional[Any] = None
    transaction_type: Optional[Any] = None
    address: Optional[Any] = None
    area: Optional[Any] = None
    municipality: Optional[Any] = None
    postal_code: Optional[Any] = None
    latitude: Optional[Any] = None
    longitude: Optional[Any] = None
    size_sqm: Optional[Any] = None
    bedrooms: Optional[Any] = None
    bathrooms: Optional[Any] = None
    floor: Optional[Any] = None
    year_built: Optional[Any] = None
    agency_name: Optional[Any] = None
    agency_phone: Optional[Any] = None
    images: list[str] = []
    listing_date: Optional[Any] = None
    raw_data: dict[str, Any] = {}

    @field_validator("images", mode="before")
    @classmethod
    def clean_images(cls, v: Any) -> list[str]:
        """Stripped URLs, blanks and repeats dropped, first-seen order kept."""
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, (list, tuple)):
            return []
        seen: list[str] = []
        for item in v:
            if not isinstance(item, str):
                continue
            url = item.strip()
            if url and url not in seen:
                seen.append(url)
        return seen

    @field_validator("raw_data", mode="before")
    @classmethod
    def clean_raw_data(cls, v: Any) -> dict[str, Any]:
        if not isinstance(v, dict):
            return {}
        return {str(k): val for k, val in v.items()}


def coerce_raw(raw: Any) -> RawListing:
    """Build a RawListing from a dict or model; anything unusable is an empty listing."""
    if isinstance(raw, RawListing):
        return raw
    if not isinstance(raw, dict):
        return RawListing()
    try:
        return RawListing.model_validate(raw)
    except ValidationError:
        # Only reachable with keys pydantic refuses outright; keep the rest of the run going.
        return RawListing()


# ---------------------------------------------------------------------------
# Vocabulary lookups
# ---------------------------------------------------------------------------

def normalize_property_type(value: Any, platform: str) -> str:
    """
    Exact lookup in the platform's table, then an ordered substring scan in
    both directions. Unmatched (or absent) values bucket as OTHER.
    """
    token = normalize_text(value)
    if token is None:
        return OTHER
    token = token.lower()
    table_key = platform if platform in PROPERTY_TYPE_MAPS else DEFAULT_PROPERTY_PLATFORM
    exact = PROPERTY_TYPE_MAPS[table_key].get(token)
    if exact is not None:
        return exact
    for key, canonical in PROPERTY_TYPE_FALLBACKS[table_key]:
        if key in token or token in key:
            return canonical
    return OTHER


def normalize_transaction_type(value: Any) -> str:
    token = normalize_text(value)
    if token is None:
        return SALE
    token = token.lower()
    exact = TRANSACTION_TYPE_MAP.get(token)
    if exact is not None:
        return exact
    for keyword in RENTAL_KEYWORDS:
        if keyword in token:
            return RENT
    return SALE


def normalize_area(value: Any) -> Optional[str]:
    """Canonical place name, else each whitespace-separated token title-cased."""
    area = normalize_text(value)
    if area is None:
        return None
    canonical = AREA_NORMALIZATION.get(area.lower())
    if canonical is not None:
        return canonical
    return " ".join(word[:1].upper() + word[1:].lower() for word in area.split())


# ---------------------------------------------------------------------------
# Public normalize() function
# ---------------------------------------------------------------------------

def normalize(raw: Any, platform: str, organization_id: str) -> dict:
    """
    Normalize one raw listing into the canonical listing dict.

    Args:
        raw: RawListing or dict in source shape (every field optional).
        platform: Platform id the listing was crawled from (e.g. "xe_gr").
        organization_id: Tenant owning the normalized listing.

    Returns:
        Dict with keys: organization_id, source_platform, source_listing_id,
        source_url, title, price, price_per_sqm, property_type,
        transaction_type, address, area, municipality, postal_code,
        latitude, longitude, size_sqm, bedrooms, bathrooms, floor,
        year_built, agency_name, agency_phone, images, listing_date,
        raw_data. The (organization_id, source_platform, source_listing_id)
        triple is the upsert key; source_listing_id is None when the raw
        item carried none.
    """
    listing = coerce_raw(raw)
    platform_key = (normalize_text(platform) or "").lower()

    price = parse_price(listing.price)
    if price is None:
        price = parse_price(listing.price_text)
    size_sqm = parse_size(listing.size_sqm)

    return {
        "organization_id": normalize_text(organization_id),
        "source_platform": platform_key or None,
        "source_listing_id": normalize_text(listing.source_listing_id),
        "source_url": normalize_text(listing.source_url),
        "title": normalize_text(listing.title),
        "price": price,
        "price_per_sqm": price_per_sqm(price, size_sqm),
        "property_type": normalize_property_type(listing.property_type, platform_key),
        "transaction_type": normalize_transaction_type(listing.transaction_type),
        "address": normalize_text(listing.address),
        "area": normalize_area(listing.area),
        "municipality": normalize_text(listing.municipality),
        "postal_code": normalize_postal_code(listing.postal_code),
        "latitude": parse_coordinate(listing.latitude, 90.0),
        "longitude": parse_coordinate(listing.longitude, 180.0),
        "size_sqm": size_sqm,
        "bedrooms": parse_rooms(listing.bedrooms),
        "bathrooms": parse_rooms(listing.bathrooms),
        "floor": normalize_floor(listing.floor),
        "year_built": parse_year(listing.year_built),
        "agency_name": normalize_text(listing.agency_name),
        "agency_phone": normalize_phone(listing.agency_phone),
        "images": list(listing.images),
        "listing_date": parse_listing_date(listing.listing_date),
        "raw_data": dict(listing.raw_data),
    }


def dedup_key(listing: dict) -> tuple[Optional[str], Optional[str], Optional[str]]:
    """Upsert identity of a normalized listing."""
    return (
        listing.get("organization_id"),
        listing.get("source_platform"),
        listing.get("source_listing_id"),
    )
