"""
Next-run calculation with exponential backoff.

Base interval comes from the org's scrape frequency; each consecutive
failure multiplies it, capped at the next-longer frequency bucket:

    HOURLY       1h   cap 12h
    TWICE_DAILY 12h   cap 24h
    DAILY       24h   cap  7d
    WEEKLY       7d   cap 28d
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from marketintel.config import BACKOFF_MULTIPLIER, FAILURE_THRESHOLD
from marketintel.db.models import MarketIntelConfig
from marketintel.jobs import (
    ERROR_KIND_CONFIG,
    ERROR_KIND_JOB,
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    ScrapeJobResult,
)
from marketintel.scheduler.lifecycle import (
    ACTIVE,
    DISABLED,
    PAUSE_FAILURES,
    mark_error,
    pause,
)

logger = logging.getLogger("marketintel.scheduler")

DEFAULT_FREQUENCY = "DAILY"

FREQUENCY_INTERVALS: dict[str, timedelta] = {
    "HOURLY": timedelta(hours=1),
    "TWICE_DAILY": timedelta(hours=12),
    "DAILY": timedelta(hours=24),
    "WEEKLY": timedelta(days=7),
}

BACKOFF_CAPS: dict[str, timedelta] = {
    "HOURLY": timedelta(hours=12),
    "TWICE_DAILY": timedelta(hours=24),
    "DAILY": timedelta(days=7),
    "WEEKLY": timedelta(days=28),
}


def _frequency(frequency: Optional[str]) -> str:
    key = (frequency or "").strip().upper()
    return key if key in FREQUENCY_INTERVALS else DEFAULT_FREQUENCY


def interval_for(frequency: Optional[str]) -> timedelta:
    """Base interval for a frequency; unknown values fall back to DAILY."""
    return FREQUENCY_INTERVALS[_frequency(frequency)]


def backoff_delay(
    frequency: Optional[str],
    failures: int = 0,
    multiplier: float = BACKOFF_MULTIPLIER,
) -> timedelta:
    """
    Delay until the next run after `failures` consecutive failures.

    - 0 failures: normal interval
    - n failures: interval * multiplier**n, capped per frequency
    """
    key = _frequency(frequency)
    base = FREQUENCY_INTERVALS[key]
    if failures <= 0:
        return base
    cap = BACKOFF_CAPS[key]
    try:
        seconds = base.total_seconds() * (multiplier ** failures)
    except OverflowError:
        return cap
    if seconds >= cap.total_seconds():
        return cap
    return timedelta(seconds=seconds)


def schedule_next(
    config: MarketIntelConfig,
    result: ScrapeJobResult,
    *,
    threshold: int = FAILURE_THRESHOLD,
    multiplier: float = BACKOFF_MULTIPLIER,
    now: Optional[datetime] = None,
) -> MarketIntelConfig:
    """
    Apply one org's aggregated run outcome to its config. Does not commit.

    success resets the failure count, partial leaves it alone, failed adds
    one. Reaching `threshold` failures auto-pauses the config; a
    configuration error parks it in ERROR instead of backing off.
    """
    completed_at = result.completed_at or now or datetime.now(timezone.utc)
    config.last_scrape_at = completed_at
    config.updated_at = completed_at

    if config.status == DISABLED:
        return config

    if result.error_kind == ERROR_KIND_CONFIG:
        mark_error(config, result.error_message or "Configuration error", completed_at)
        return config

    failures = config.consecutive_failures or 0
    if result.status == STATUS_SUCCESS:
        failures = 0
        config.last_error = None
    elif result.status == STATUS_PARTIAL:
        config.last_error = result.error_message
    else:
        failures += 1
        config.last_error = result.error_message or "Scrape failed"
    if config.last_error:
        config.last_error = config.last_error[:1000]
    config.consecutive_failures = failures

    config.next_scrape_at = completed_at + backoff_delay(config.scrape_frequency, failures, multiplier)

    if result.status == STATUS_FAILED and failures >= threshold and config.status == ACTIVE:
        pause(config, completed_at, reason=PAUSE_FAILURES)
        logger.warning(
            f"Paused market intel for {config.organization_id} after "
            f"{failures} consecutive failures"
        )
    return config


def summarize_results(
    organization_id: str,
    results: Sequence[ScrapeJobResult],
) -> ScrapeJobResult:
    """
    Fold the per-platform results of one org cycle into a single outcome.

    All success -> success, all failed -> failed, otherwise partial. Any
    configuration error makes the whole outcome a configuration error.
    """
    if not results:
        raise ValueError(f"No results to summarize for {organization_id}")

    statuses = {r.status for r in results}
    if statuses == {STATUS_SUCCESS}:
        status = STATUS_SUCCESS
    elif statuses == {STATUS_FAILED}:
        status = STATUS_FAILED
    else:
        status = STATUS_PARTIAL

    error_kind = None
    if any(r.error_kind == ERROR_KIND_CONFIG for r in results):
        status = STATUS_FAILED
        error_kind = ERROR_KIND_CONFIG
    elif status == STATUS_FAILED:
        error_kind = ERROR_KIND_JOB

    errors = [f"{r.platform}: {e}" for r in results for e in r.errors]
    completed = [r.completed_at for r in results if r.completed_at is not None]

    return ScrapeJobResult(
        organization_id=organization_id,
        platform=",".join(r.platform for r in results),
        status=status,
        listings_found=sum(r.listings_found for r in results),
        listings_new=sum(r.listings_new for r in results),
        listings_updated=sum(r.listings_updated for r in results),
        listings_deactivated=sum(r.listings_deactivated for r in results),
        pages_scraped=sum(r.pages_scraped for r in results),
        duration=max(r.duration for r in results),
        errors=errors,
        error_kind=error_kind,
        completed_at=max(completed) if completed else None,
    )
