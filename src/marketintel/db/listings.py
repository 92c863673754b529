"""
Canonical competitor listing store.

Listings are keyed on (organization_id, source_platform, source_listing_id).
Writes are idempotent: the insert is an INSERT ... ON CONFLICT DO NOTHING on
that triple and whoever loses the race takes the update path. Listings are
never deleted; a listing missing from enough consecutive full crawls is
soft-deactivated.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import insert as generic_insert
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from marketintel.db.models import CompetitorListing, MarketIntelConfig, PriceHistory
from marketintel.errors import OrgConfigError
from marketintel.normalizer import dedup_key
from marketintel.platforms.registry import all_platform_ids
from marketintel.scheduler.lifecycle import PENDING_SETUP

logger = logging.getLogger("marketintel.pipeline")

_KEY_FIELDS = ("organization_id", "source_platform", "source_listing_id")

# Canonical fields copied from a normalized listing on every observation
_LISTING_FIELDS = (
    "source_url",
    "title",
    "price",
    "price_per_sqm",
    "property_type",
    "transaction_type",
    "address",
    "area",
    "municipality",
    "postal_code",
    "latitude",
    "longitude",
    "size_sqm",
    "bedrooms",
    "bathrooms",
    "floor",
    "year_built",
    "agency_name",
    "agency_phone",
    "images",
    "listing_date",
    "raw_data",
)

CHANGE_INITIAL = "initial"
CHANGE_INCREASE = "increase"
CHANGE_DECREASE = "decrease"


@dataclass
class UpsertOutcome:
    is_new: bool
    price_changed: bool = False
    changed: bool = False
    listing: Optional[CompetitorListing] = None


def _find_listing(db: Session, organization_id: str, platform: str, source_id: str) -> Optional[CompetitorListing]:
    return db.scalars(
        select(CompetitorListing).where(
            CompetitorListing.organization_id == organization_id,
            CompetitorListing.source_platform == platform,
            CompetitorListing.source_listing_id == source_id,
        )
    ).first()


def _insert_if_absent(db: Session, values: dict[str, Any]) -> bool:
    """Insert the row unless the dedup triple exists. Returns True if inserted."""
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(CompetitorListing).values(**values).on_conflict_do_nothing(
            index_elements=list(_KEY_FIELDS)
        )
    elif dialect == "postgresql":
        stmt = postgresql.insert(CompetitorListing).values(**values).on_conflict_do_nothing(
            index_elements=list(_KEY_FIELDS)
        )
    else:
        key = tuple(values[f] for f in _KEY_FIELDS)
        if _find_listing(db, *key) is not None:
            return False
        stmt = generic_insert(CompetitorListing).values(**values)
    result = db.execute(stmt)
    return (result.rowcount or 0) > 0


def _record_price(
    db: Session,
    listing: CompetitorListing,
    change_type: str,
    now: datetime,
) -> None:
    db.add(PriceHistory(
        listing_id=listing.id,
        organization_id=listing.organization_id,
        price=listing.price,
        price_per_sqm=listing.price_per_sqm,
        recorded_at=now,
        change_type=change_type,
    ))


def upsert_listing(db: Session, listing: dict, now: Optional[datetime] = None) -> UpsertOutcome:
    """
    Insert or update one normalized listing. Does not commit.

    Raises ValueError if the listing has no complete dedup key.
    """
    key = dedup_key(listing)
    if not all(key):
        raise ValueError(f"Listing has no complete dedup key: {key!r}")
    now = now or datetime.now(timezone.utc)

    values = {f: listing.get(f) for f in _LISTING_FIELDS}
    values["images"] = values["images"] or []
    values["raw_data"] = values["raw_data"] or {}

    inserted = _insert_if_absent(db, {
        **dict(zip(_KEY_FIELDS, key)),
        **values,
        "first_scraped_at": now,
        "last_seen_at": now,
        "is_active": True,
        "missed_crawls": 0,
    })
    row = _find_listing(db, *key)
    if row is None:
        raise RuntimeError(f"Listing {key!r} vanished after upsert")

    if inserted:
        if row.price is not None:
            _record_price(db, row, CHANGE_INITIAL, now)
        return UpsertOutcome(is_new=True, listing=row)

    old_price = row.price
    changed = any(getattr(row, f) != v for f, v in values.items())
    for field_name, value in values.items():
        setattr(row, field_name, value)
    row.last_seen_at = now
    row.missed_crawls = 0
    if not row.is_active:
        logger.info(f"Reactivated listing {'/'.join(key)}")
    row.is_active = True
    row.deactivated_at = None

    new_price = values["price"]
    price_changed = new_price is not None and new_price != old_price
    if price_changed:
        if old_price is None:
            change_type = CHANGE_INITIAL
        elif new_price > old_price:
            change_type = CHANGE_INCREASE
        else:
            change_type = CHANGE_DECREASE
        _record_price(db, row, change_type, now)

    return UpsertOutcome(is_new=False, price_changed=price_changed, changed=changed, listing=row)


def mark_missing(
    db: Session,
    organization_id: str,
    platform: str,
    seen_ids: set[str],
    threshold: int,
    now: Optional[datetime] = None,
) -> list[str]:
    """
    Count one missed crawl against every active listing of the pair not in
    `seen_ids`; soft-deactivate those reaching `threshold`.

    Only call after a fully successful crawl. Does not commit.
    Returns the source ids deactivated by this call.
    """
    now = now or datetime.now(timezone.utc)
    rows = db.scalars(
        select(CompetitorListing).where(
            CompetitorListing.organization_id == organization_id,
            CompetitorListing.source_platform == platform,
            CompetitorListing.is_active.is_(True),
        )
    ).all()

    deactivated = []
    for row in rows:
        if row.source_listing_id in seen_ids:
            continue
        row.missed_crawls = (row.missed_crawls or 0) + 1
        if row.missed_crawls >= threshold:
            row.is_active = False
            row.deactivated_at = now
            deactivated.append(row.source_listing_id)
    return deactivated


def find_config(db: Session, organization_id: str) -> Optional[MarketIntelConfig]:
    return db.scalars(
        select(MarketIntelConfig).where(MarketIntelConfig.organization_id == organization_id)
    ).first()


def get_config(db: Session, organization_id: str) -> MarketIntelConfig:
    """Fetch the org's config, or raise OrgConfigError if it has none."""
    config = find_config(db, organization_id)
    if config is None:
        raise OrgConfigError(f"no market intel config for '{organization_id}'")
    return config


def get_or_create_config(
    db: Session,
    organization_id: str,
    now: Optional[datetime] = None,
) -> MarketIntelConfig:
    """Fetch the org's config, creating a PENDING_SETUP one with defaults. Commits on create."""
    config = find_config(db, organization_id)
    if config is not None:
        return config

    now = now or datetime.now(timezone.utc)
    config = MarketIntelConfig(
        organization_id=organization_id,
        platforms=all_platform_ids(),
        target_areas=[],
        target_municipalities=[],
        transaction_types=["sale", "rent"],
        property_types=[],
        scrape_frequency="DAILY",
        max_pages_per_platform=10,
        status=PENDING_SETUP,
        consecutive_failures=0,
        created_at=now,
        updated_at=now,
    )
    db.add(config)
    db.commit()
    return config
