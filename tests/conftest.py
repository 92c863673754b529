"""
Shared fixtures: in-memory SQLite with the full schema, and a fresh set of
platform rate limiters per test.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketintel.db.models import Base, MarketIntelConfig
from marketintel.platforms.ratelimit import reset_rate_limiters

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """In-memory SQLite engine with schema created. One connection shared across threads."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture
def Session(engine):
    """Session factory for the test engine."""
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(Session):
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _fresh_rate_limiters():
    reset_rate_limiters()
    yield
    reset_rate_limiters()


def make_config(**overrides) -> MarketIntelConfig:
    """A detached ACTIVE config with sane defaults."""
    values = dict(
        organization_id="org_1",
        platforms=["spitogatos"],
        target_areas=[],
        target_municipalities=[],
        transaction_types=["sale"],
        property_types=[],
        scrape_frequency="DAILY",
        max_pages_per_platform=10,
        status="ACTIVE",
        consecutive_failures=0,
        next_scrape_at=None,
    )
    values.update(overrides)
    return MarketIntelConfig(**values)
