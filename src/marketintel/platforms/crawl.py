"""
Bounded, cancellable pagination loop for one scrape job.

The loop owns the page bounds and the shared platform rate limit; the
PageFetcher owns everything network-facing. Raw listings are handed to
`on_listings` page by page as they arrive.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from marketintel.errors import CrawlAbortedError, CrawlCancelledError
from marketintel.jobs import ScrapeJobData
from marketintel.platforms.base import PageFetcher
from marketintel.platforms.ratelimit import PlatformRateLimiter, get_rate_limiter
from marketintel.platforms.registry import PlatformConfig

logger = logging.getLogger("marketintel.crawl")

# Stop paginating after this many failed pages in a row
MAX_CONSECUTIVE_PAGE_ERRORS = 2


@dataclass
class CrawlOutcome:
    pages_scraped: int = 0
    listings_seen: int = 0
    page_errors: list[str] = field(default_factory=list)


def effective_max_pages(
    platform: PlatformConfig,
    job: ScrapeJobData,
    org_max_pages: Optional[int] = None,
) -> int:
    """Tightest of the platform, job and organization page limits (at least 1)."""
    if platform.pagination.type == "none":
        return 1
    bounds = [platform.pagination.max_pages]
    if job.max_pages:
        bounds.append(job.max_pages)
    if org_max_pages:
        bounds.append(org_max_pages)
    return max(1, min(bounds))


def _check_cancelled(
    cancel_event: Optional[threading.Event],
    deadline: Optional[float],
    clock: Callable[[], float],
    page: int,
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CrawlCancelledError(f"Crawl cancelled before page {page}")
    if deadline is not None and clock() >= deadline:
        raise CrawlCancelledError(f"Crawl timed out before page {page}")


def crawl(
    platform: PlatformConfig,
    job: ScrapeJobData,
    fetcher: PageFetcher,
    on_listings: Callable[[int, list[Any]], None],
    *,
    max_pages: int,
    limiter: Optional[PlatformRateLimiter] = None,
    cancel_event: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    outcome: Optional[CrawlOutcome] = None,
) -> CrawlOutcome:
    """
    Crawl pages start_page .. start_page + max_pages - 1.

    Raises:
        CrawlAbortedError: the first page failed (nothing was crawled).
        CrawlCancelledError: cancel_event was set or the deadline passed.

    Later page failures are recorded in CrawlOutcome.page_errors and the
    crawl continues, stopping after MAX_CONSECUTIVE_PAGE_ERRORS in a row.
    An empty page or has_next=False ends pagination.

    Pass `outcome` to keep the partial progress when an exception escapes.
    """
    limiter = limiter or get_rate_limiter(platform)
    outcome = outcome if outcome is not None else CrawlOutcome()
    consecutive_errors = 0

    for page in range(job.start_page, job.start_page + max_pages):
        _check_cancelled(cancel_event, deadline, clock, page)
        if not limiter.acquire(cancel_event=cancel_event, deadline=deadline):
            _check_cancelled(cancel_event, deadline, clock, page)
            raise CrawlCancelledError(f"Rate limit wait interrupted before page {page}")

        try:
            result = fetcher.fetch_page(platform, job, page)
        except CrawlCancelledError:
            raise
        except Exception as e:
            error_msg = f"page {page}: [{type(e).__name__}] {str(e)[:300]}"
            if outcome.pages_scraped == 0 and not outcome.page_errors:
                raise CrawlAbortedError(error_msg) from e
            outcome.page_errors.append(error_msg)
            consecutive_errors += 1
            logger.warning(f"{platform.id} {job.organization_id}: {error_msg}")
            if consecutive_errors >= MAX_CONSECUTIVE_PAGE_ERRORS:
                logger.warning(
                    f"{platform.id} {job.organization_id}: {consecutive_errors} failed pages "
                    f"in a row, stopping at page {page}"
                )
                break
            continue

        consecutive_errors = 0
        outcome.pages_scraped += 1
        listings = list(result.listings)
        outcome.listings_seen += len(listings)
        if listings:
            on_listings(page, listings)
        if not listings or not result.has_next:
            break

    return outcome
