from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, always hands back aware UTC (SQLite drops tzinfo)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class MarketIntelConfig(Base):
    __tablename__ = "market_intel_configs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    platforms: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    target_areas: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    target_municipalities: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    transaction_types: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    property_types: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    min_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    scrape_frequency: Mapped[str] = mapped_column(
        String, default="DAILY", server_default="DAILY", nullable=False
    )
    max_pages_per_platform: Mapped[int] = mapped_column(
        Integer, default=10, server_default="10", nullable=False
    )
    status: Mapped[str] = mapped_column(
        String, default="PENDING_SETUP", server_default="PENDING_SETUP", nullable=False
    )
    last_scrape_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    next_scrape_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # "manual" or "failures"; only failure pauses are eligible for auto-resume
    pause_reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class ScrapeLog(Base):
    __tablename__ = "scrape_logs"
    __table_args__ = (
        Index("ix_scrape_logs_pair", "organization_id", "platform"),
        Index("ix_scrape_logs_status", "status"),
        Index("ix_scrape_logs_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    platform: Mapped[str] = mapped_column(String, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String, default="running", server_default="running", nullable=False)
    listings_found: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    listings_new: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    listings_updated: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    listings_deactivated: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pages_scraped: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    scrape_duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    run_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    # "{organization_id}:{platform}" while running, NULL once finalized.
    # The unique constraint is the per-pair in-flight lock.
    in_flight_key: Mapped[Optional[str]] = mapped_column(String, unique=True, nullable=True)


class CompetitorListing(Base):
    __tablename__ = "competitor_listings"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "source_platform", "source_listing_id",
            name="uq_listing_dedup_key",
        ),
        Index("ix_listings_area", "area"),
        Index("ix_listings_price", "price"),
        Index("ix_listings_price_per_sqm", "price_per_sqm"),
        Index("ix_listings_property_type", "property_type"),
        Index("ix_listings_active", "organization_id", "source_platform", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    source_platform: Mapped[str] = mapped_column(String, nullable=False)
    source_listing_id: Mapped[str] = mapped_column(String, nullable=False)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_per_sqm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    property_type: Mapped[str] = mapped_column(String, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    area: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    municipality: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(nullable=True)
    size_sqm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    floor: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    agency_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    agency_phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    images: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    listing_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    raw_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    first_scraped_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)
    missed_crawls: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    price_history: Mapped[list["PriceHistory"]] = relationship(
        back_populates="listing", cascade="all, delete-orphan"
    )


class PriceHistory(Base):
    __tablename__ = "price_history"
    __table_args__ = (
        Index("ix_price_history_listing_id", "listing_id"),
        Index("ix_price_history_recorded_at", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("competitor_listings.id"), nullable=False)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_sqm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    change_type: Mapped[str] = mapped_column(String, nullable=False)  # initial | increase | decrease

    listing: Mapped["CompetitorListing"] = relationship(back_populates="price_history")


class ListingMatch(Base):
    """Two listings of one organization that look like the same property on different portals."""

    __tablename__ = "listing_matches"
    __table_args__ = (
        UniqueConstraint("primary_listing_id", "matched_listing_id", name="uq_listing_match_pair"),
        Index("ix_listing_matches_org", "organization_id"),
        Index("ix_listing_matches_matched", "matched_listing_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    primary_listing_id: Mapped[int] = mapped_column(
        ForeignKey("competitor_listings.id", ondelete="CASCADE"), nullable=False
    )
    matched_listing_id: Mapped[int] = mapped_column(
        ForeignKey("competitor_listings.id", ondelete="CASCADE"), nullable=False
    )
    match_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    match_reason: Mapped[str] = mapped_column(String, nullable=False)  # coordinates | address | combined
    match_details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
