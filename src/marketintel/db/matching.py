"""
Cross-platform duplicate matching within one organization.

The same property is often listed on several portals. After a listing is
stored (new or changed), candidates from the organization's other platforms
are scored three ways and the survivors recorded as ListingMatch rows:

    coordinates: within COORD_RADIUS_METERS of each other
    address:     same area, similar street address once numbers and
                 street prefixes are stripped
    combined:    same area and property type, size and price within tolerance

Only active listings of the same organization and transaction type are
considered; nothing is ever matched across tenants. A pair is stored once,
whichever side was seen first.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from rapidfuzz import fuzz
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from marketintel.config import MATCH_MIN_CONFIDENCE
from marketintel.db.models import CompetitorListing, ListingMatch

logger = logging.getLogger("marketintel.pipeline")

REASON_COORDINATES = "coordinates"
REASON_ADDRESS = "address"
REASON_COMBINED = "combined"

COORD_RADIUS_METERS = 50.0
COORD_CONFIDENCE = 0.95
ADDRESS_SIMILARITY_THRESHOLD = 0.8
ADDRESS_CONFIDENCE = 0.85
COMBINED_CONFIDENCE = 0.90
SIZE_TOLERANCE = 0.10
PRICE_TOLERANCE = 0.15

_EARTH_RADIUS_METERS = 6_371_000.0
_METERS_PER_DEGREE_LAT = 111_320.0

_STREET_PREFIX = re.compile(r"^(οδός|οδος|λεωφόρος|λεωφορος|πλατεία|πλατεια)\s*", re.IGNORECASE)
_DIGITS = re.compile(r"\d+")
_PUNCTUATION = re.compile(r"[,.\-_]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class MatchCandidate:
    listing_id: int
    platform: str
    confidence: float
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * _EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def normalize_address(address: Optional[str]) -> str:
    """Lowercase, drop the street prefix and house numbers, collapse punctuation."""
    text = (address or "").lower().strip()
    text = _STREET_PREFIX.sub("", text)
    text = _DIGITS.sub("", text)
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def address_similarity(a: Optional[str], b: Optional[str]) -> float:
    left, right = normalize_address(a), normalize_address(b)
    if not left or not right:
        return 0.0
    return fuzz.ratio(left, right) / 100.0


def _within(a: Optional[int], b: Optional[int], tolerance: float) -> bool:
    if not a or not b:
        return False
    return abs(a - b) / max(a, b) <= tolerance


def _candidates(listing: CompetitorListing):
    return select(CompetitorListing).where(
        CompetitorListing.organization_id == listing.organization_id,
        CompetitorListing.source_platform != listing.source_platform,
        CompetitorListing.transaction_type == listing.transaction_type,
        CompetitorListing.is_active.is_(True),
        CompetitorListing.id != listing.id,
    )


def _by_coordinates(db: Session, listing: CompetitorListing) -> list[MatchCandidate]:
    if listing.latitude is None or listing.longitude is None:
        return []
    # Bounding box first, exact distance after
    d_lat = COORD_RADIUS_METERS / _METERS_PER_DEGREE_LAT
    d_lon = d_lat / max(math.cos(math.radians(listing.latitude)), 0.01)
    rows = db.scalars(
        _candidates(listing).where(
            CompetitorListing.latitude.between(listing.latitude - d_lat, listing.latitude + d_lat),
            CompetitorListing.longitude.between(listing.longitude - d_lon, listing.longitude + d_lon),
        )
    ).all()

    matches = []
    for row in rows:
        distance = distance_meters(listing.latitude, listing.longitude, row.latitude, row.longitude)
        closeness = max(0.0, 1 - distance / COORD_RADIUS_METERS)
        size_match = _within(listing.size_sqm, row.size_sqm, SIZE_TOLERANCE)
        type_match = listing.property_type == row.property_type
        confidence = COORD_CONFIDENCE * closeness * (1.0 if size_match else 0.8) * (1.0 if type_match else 0.9)
        matches.append(MatchCandidate(
            listing_id=row.id,
            platform=row.source_platform,
            confidence=confidence,
            reason=REASON_COORDINATES,
            details={"distance_m": round(distance, 1), "size_match": size_match, "type_match": type_match},
        ))
    return matches


def _by_address(db: Session, listing: CompetitorListing) -> list[MatchCandidate]:
    if not listing.address or not listing.area:
        return []
    rows = db.scalars(
        _candidates(listing).where(
            CompetitorListing.area == listing.area,
            CompetitorListing.address.is_not(None),
        )
    ).all()

    matches = []
    for row in rows:
        similarity = address_similarity(listing.address, row.address)
        if similarity < ADDRESS_SIMILARITY_THRESHOLD:
            continue
        size_match = _within(listing.size_sqm, row.size_sqm, SIZE_TOLERANCE)
        price_match = _within(listing.price, row.price, PRICE_TOLERANCE)
        confidence = similarity * ADDRESS_CONFIDENCE
        if size_match:
            confidence *= 1.1
        if price_match:
            confidence *= 1.05
        matches.append(MatchCandidate(
            listing_id=row.id,
            platform=row.source_platform,
            confidence=min(1.0, confidence),
            reason=REASON_ADDRESS,
            details={
                "address_similarity": round(similarity, 3),
                "size_match": size_match,
                "price_match": price_match,
            },
        ))
    return matches


def _by_size_and_price(db: Session, listing: CompetitorListing) -> list[MatchCandidate]:
    if not listing.size_sqm or not listing.price or not listing.area:
        return []
    size_band = listing.size_sqm * SIZE_TOLERANCE
    price_band = listing.price * PRICE_TOLERANCE
    rows = db.scalars(
        _candidates(listing).where(
            CompetitorListing.area == listing.area,
            CompetitorListing.property_type == listing.property_type,
            CompetitorListing.size_sqm.between(listing.size_sqm - size_band, listing.size_sqm + size_band),
            CompetitorListing.price.between(listing.price - price_band, listing.price + price_band),
        )
    ).all()

    matches = []
    for row in rows:
        size_deviation = abs(row.size_sqm - listing.size_sqm) / listing.size_sqm
        price_deviation = abs(row.price - listing.price) / listing.price
        size_score = 1 - size_deviation / SIZE_TOLERANCE
        price_score = 1 - price_deviation / PRICE_TOLERANCE
        bedroom_match = listing.bedrooms == row.bedrooms
        confidence = COMBINED_CONFIDENCE * size_score * price_score * (1.0 if bedroom_match else 0.9)
        matches.append(MatchCandidate(
            listing_id=row.id,
            platform=row.source_platform,
            confidence=confidence,
            reason=REASON_COMBINED,
            details={
                "size_deviation_pct": round(size_deviation * 100),
                "price_deviation_pct": round(price_deviation * 100),
                "bedroom_match": bedroom_match,
            },
        ))
    return matches


def find_matches(
    db: Session,
    listing: CompetitorListing,
    min_confidence: float = MATCH_MIN_CONFIDENCE,
) -> list[MatchCandidate]:
    """
    Likely duplicates of `listing` on the organization's other platforms,
    one per matched listing, best confidence first.

    Coordinate matches are taken first, then address matches for listings
    not yet matched. A size-and-price match replaces an earlier one only
    when it scores higher.
    """
    found: dict[int, MatchCandidate] = {}
    for candidate in _by_coordinates(db, listing) + _by_address(db, listing):
        found.setdefault(candidate.listing_id, candidate)
    for candidate in _by_size_and_price(db, listing):
        existing = found.get(candidate.listing_id)
        if existing is None or candidate.confidence > existing.confidence:
            found[candidate.listing_id] = candidate

    matches = []
    for candidate in found.values():
        candidate.confidence = round(candidate.confidence, 2)
        if candidate.confidence >= min_confidence:
            matches.append(candidate)
    return sorted(matches, key=lambda m: (-m.confidence, m.listing_id))


def record_matches(
    db: Session,
    listing: CompetitorListing,
    now: Optional[datetime] = None,
    min_confidence: float = MATCH_MIN_CONFIDENCE,
) -> int:
    """
    Find and store the listing's duplicates. Does not commit.

    A pair already stored in either direction is updated in place.
    Returns the number of matches found.
    """
    now = now or datetime.now(timezone.utc)
    db.flush()
    matches = find_matches(db, listing, min_confidence=min_confidence)
    for match in matches:
        existing = db.scalars(
            select(ListingMatch).where(
                or_(
                    (ListingMatch.primary_listing_id == listing.id)
                    & (ListingMatch.matched_listing_id == match.listing_id),
                    (ListingMatch.primary_listing_id == match.listing_id)
                    & (ListingMatch.matched_listing_id == listing.id),
                )
            )
        ).first()
        details = {**match.details, "matched_platform": match.platform}
        if existing is None:
            db.add(ListingMatch(
                organization_id=listing.organization_id,
                primary_listing_id=listing.id,
                matched_listing_id=match.listing_id,
                match_confidence=match.confidence,
                match_reason=match.reason,
                match_details=details,
                created_at=now,
            ))
            logger.info(
                f"Matched listing {listing.source_platform}/{listing.source_listing_id} "
                f"to {match.platform} listing {match.listing_id} ({match.reason}, {match.confidence})"
            )
        else:
            existing.match_confidence = match.confidence
            existing.match_reason = match.reason
            existing.match_details = details
            existing.updated_at = now
    return len(matches)


def matches_for(db: Session, listing_id: int) -> list[ListingMatch]:
    """Stored matches touching the listing, from either side."""
    return list(db.scalars(
        select(ListingMatch).where(
            or_(
                ListingMatch.primary_listing_id == listing_id,
                ListingMatch.matched_listing_id == listing_id,
            )
        ).order_by(ListingMatch.match_confidence.desc(), ListingMatch.id)
    ))
