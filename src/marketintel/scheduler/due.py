"""Due-job selection: which (organization, platform) pairs run this cycle."""
from datetime import datetime
from typing import Iterable, Optional

from marketintel.db.models import MarketIntelConfig
from marketintel.jobs import ScrapeJobData, SearchFilters
from marketintel.platforms.registry import all_platform_ids
from marketintel.scheduler.backoff import FREQUENCY_INTERVALS
from marketintel.scheduler.lifecycle import ACTIVE


def due_jobs(
    now: datetime,
    configs: Iterable[MarketIntelConfig],
    running_pairs: Iterable[tuple[str, str]] = (),
) -> list[tuple[str, str]]:
    """
    Pairs to dispatch: every platform of each ACTIVE config whose
    next_scrape_at has passed (never-scheduled counts as due), minus pairs
    that still have a run in flight.

    Ordered by organization id, then the org's own platform order.
    """
    running = set(running_pairs)
    pairs = []
    for config in sorted(configs, key=lambda c: c.organization_id):
        if config.status != ACTIVE:
            continue
        if config.next_scrape_at is not None and config.next_scrape_at > now:
            continue
        for platform in dict.fromkeys(config.platforms or []):
            pair = (config.organization_id, platform)
            if pair not in running:
                pairs.append(pair)
    return pairs


def config_problem(config: MarketIntelConfig) -> Optional[str]:
    """Why this config cannot be scraped as-is, or None if it can."""
    if not config.platforms:
        return "No platforms selected"
    known = set(all_platform_ids())
    unknown = [p for p in config.platforms if p not in known]
    if unknown:
        return f"Unknown platform(s): {', '.join(unknown)}"
    if config.scrape_frequency and config.scrape_frequency not in FREQUENCY_INTERVALS:
        return f"Unknown scrape frequency: {config.scrape_frequency}"
    if (
        config.min_price is not None
        and config.max_price is not None
        and config.min_price > config.max_price
    ):
        return f"min_price {config.min_price} is above max_price {config.max_price}"
    return None


def build_job(config: MarketIntelConfig, platform: str) -> ScrapeJobData:
    """Detached job payload for one pair, safe to hand to a worker thread."""
    return ScrapeJobData(
        organization_id=config.organization_id,
        platform=platform,
        filters=SearchFilters(
            areas=list(config.target_areas or []),
            municipalities=list(config.target_municipalities or []),
            transaction_types=list(config.transaction_types or []),
            property_types=list(config.property_types or []),
            min_price=config.min_price,
            max_price=config.max_price,
        ),
        max_pages=config.max_pages_per_platform or None,
    )
