"""Per-pair scrape job with error isolation. Called from a thread pool thread."""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from marketintel.config import DEACTIVATE_AFTER_MISSES, JOB_TIMEOUT_SECONDS
from marketintel.db.listings import find_config, mark_missing, upsert_listing
from marketintel.db.matching import record_matches
from marketintel.db.runlog import close_run, open_run
from marketintel.db.session import SessionLocal
from marketintel.errors import ConfigurationError, RunAlreadyInFlightError
from marketintel.jobs import (
    ERROR_KIND_CONFIG,
    ERROR_KIND_IN_FLIGHT,
    ERROR_KIND_JOB,
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    ScrapeJobData,
    ScrapeJobResult,
)
from marketintel.normalizer import normalize
from marketintel.platforms.base import PageFetcher
from marketintel.platforms.crawl import CrawlOutcome, crawl, effective_max_pages
from marketintel.platforms.registry import get_platform_config

logger = logging.getLogger("marketintel.pipeline")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_scrape_job(
    job: ScrapeJobData,
    *,
    fetcher: PageFetcher,
    session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = JOB_TIMEOUT_SECONDS,
    deactivate_after: int = DEACTIVATE_AFTER_MISSES,
    now: Callable[[], datetime] = _utcnow,
    clock: Callable[[], float] = time.monotonic,
) -> ScrapeJobResult:
    """
    Crawl one (organization, platform) pair and persist what it finds.

    Run failures never raise; they come back in the result:
        status "success": every page fetched; unseen listings counted as missed
        status "partial": some pages failed after at least one succeeded
        status "failed":  nothing usable (error_kind "job"), an operator must
                          fix the config (error_kind "config"), or the pair was
                          already running (error_kind "in_flight", state untouched)
    """
    started = clock()
    result = ScrapeJobResult(
        organization_id=job.organization_id,
        platform=job.platform,
        status=STATUS_FAILED,
    )
    label = f"{job.organization_id}/{job.platform}"

    db = session_factory()
    try:
        try:
            log = open_run(
                db,
                job.organization_id,
                job.platform,
                metadata={
                    "filters": job.filters.model_dump(),
                    "max_pages": job.max_pages,
                    "start_page": job.start_page,
                },
                now=now(),
            )
        except RunAlreadyInFlightError as e:
            result.errors.append(str(e))
            result.error_kind = ERROR_KIND_IN_FLIGHT
            result.completed_at = now()
            logger.info(f"SKIP {label}: already running")
            return result

        progress = CrawlOutcome()
        seen_ids: set[str] = set()

        def on_listings(page: int, raws: list) -> None:
            for raw in raws:
                listing = normalize(raw, job.platform, job.organization_id)
                source_id = listing["source_listing_id"]
                if not source_id:
                    result.errors.append(f"page {page}: listing without source id skipped")
                    continue
                if source_id in seen_ids:
                    continue
                seen_ids.add(source_id)
                result.listings_found += 1
                outcome = upsert_listing(db, listing, now())
                if outcome.is_new:
                    result.listings_new += 1
                elif outcome.changed:
                    result.listings_updated += 1
                if outcome.is_new or outcome.changed:
                    result.listings_matched += record_matches(db, outcome.listing, now())
            db.commit()

        try:
            platform = get_platform_config(job.platform)
            # Jobs built outside the scheduler may not carry the org's page cap
            config = find_config(db, job.organization_id)
            org_max_pages = config.max_pages_per_platform if config is not None else None
            deadline = clock() + timeout if timeout else None
            crawl(
                platform,
                job,
                fetcher,
                on_listings,
                max_pages=effective_max_pages(platform, job, org_max_pages),
                cancel_event=cancel_event,
                deadline=deadline,
                clock=clock,
                outcome=progress,
            )
            if progress.page_errors:
                result.status = STATUS_PARTIAL
            else:
                result.status = STATUS_SUCCESS
                # An empty crawl is more likely a broken page than a market
                # with zero listings; don't count it as a miss
                if seen_ids:
                    deactivated = mark_missing(
                        db, job.organization_id, job.platform, seen_ids,
                        threshold=deactivate_after, now=now(),
                    )
                    result.listings_deactivated = len(deactivated)
                    db.commit()
        except ConfigurationError as e:
            db.rollback()
            result.status = STATUS_FAILED
            result.error_kind = ERROR_KIND_CONFIG
            result.errors.append(str(e))
        except Exception as e:
            db.rollback()
            result.status = STATUS_FAILED
            result.error_kind = ERROR_KIND_JOB
            result.errors.append(f"[{type(e).__name__}] {str(e)[:500]}")

        result.errors.extend(progress.page_errors)
        result.pages_scraped = progress.pages_scraped
        result.duration = int((clock() - started) * 1000)
        result.completed_at = now()

        try:
            close_run(
                db,
                log,
                result,
                metadata={"page_errors": progress.page_errors, "matches": result.listings_matched},
            )
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to close run log for {label}: {e}")

        if result.status == STATUS_FAILED:
            logger.warning(f"FAIL {label}: {result.error_message}")
        else:
            logger.info(
                f"{'OK  ' if result.status == STATUS_SUCCESS else 'PART'} {label}: "
                f"{result.listings_found} found, {result.listings_new} new, "
                f"{result.listings_updated} updated, {result.listings_deactivated} deactivated, "
                f"{result.listings_matched} matched "
                f"({result.pages_scraped} pages, {result.duration} ms)"
            )
    finally:
        db.close()

    return result
