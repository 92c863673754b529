"""Scheduling cycle: housekeeping -> due jobs -> parallel scrape -> reschedule -> prune."""
import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from marketintel.config import (
    AUTO_RESUME_HOURS,
    BACKOFF_MULTIPLIER,
    FAILURE_THRESHOLD,
    JOB_TIMEOUT_SECONDS,
    MAX_WORKERS,
    RUN_RETENTION_DAYS,
    STALE_RUN_MINUTES,
)
from marketintel.db.models import MarketIntelConfig
from marketintel.db.runlog import prune_old_runs, reap_stale_runs, running_pairs
from marketintel.db.session import SessionLocal
from marketintel.jobs import ERROR_KIND_IN_FLIGHT, ERROR_KIND_JOB, STATUS_FAILED, ScrapeJobData, ScrapeJobResult
from marketintel.platforms.base import PageFetcher
from marketintel.platforms.html import HtmlPageFetcher
from marketintel.scheduler.backoff import schedule_next, summarize_results
from marketintel.scheduler.due import build_job, config_problem, due_jobs
from marketintel.scheduler.lifecycle import (
    ACTIVE,
    PENDING_SETUP,
    activate_pending,
    mark_error,
    resume_cooled_down,
)
from marketintel.scheduler.runner import run_scrape_job

logger = logging.getLogger("marketintel.scheduler")

# Concurrent jobs per platform. The request budget is enforced separately
# by the platform rate limiter; this just keeps idle threads off the limiter.
PLATFORM_CONCURRENCY: dict[str, int] = {
    "spitogatos": 2,
    "xe_gr": 2,
    "tospitimou": 2,
}

_semaphores: dict[str, threading.Semaphore] = {
    p: threading.Semaphore(n) for p, n in PLATFORM_CONCURRENCY.items()
}
_default_sem = threading.Semaphore(1)


def _auto_resume_cooldown() -> Optional[timedelta]:
    return timedelta(hours=AUTO_RESUME_HOURS) if AUTO_RESUME_HOURS > 0 else None


def plan_cycle(
    *,
    session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> list[ScrapeJobData]:
    """
    Housekeeping plus due-job selection for one cycle.

    1. Fail runs abandoned by crashed workers
    2. Auto-resume configs whose failure cool-down elapsed
    3. Park misconfigured configs in ERROR; activate pending ones
    4. Select due (organization, platform) pairs not already in flight

    With dry_run=True the state changes are rolled back.

    Returns:
        Detached job payloads, ordered by organization then platform.
    """
    now = now or datetime.now(timezone.utc)
    cooldown = _auto_resume_cooldown()
    db = session_factory()
    try:
        if not dry_run:
            reaped = reap_stale_runs(db, timedelta(minutes=STALE_RUN_MINUTES), now=now)
            if reaped:
                logger.warning(f"Reaped {reaped} stale run(s)")

        configs = list(db.scalars(
            select(MarketIntelConfig).order_by(MarketIntelConfig.organization_id)
        ))
        for config in configs:
            resume_cooled_down(config, now, cooldown)
            if config.status not in (PENDING_SETUP, ACTIVE):
                continue
            problem = config_problem(config)
            if problem:
                mark_error(config, problem, now)
            elif config.status == PENDING_SETUP:
                activate_pending(config, now)

        pairs = due_jobs(now, configs, running_pairs(db))
        by_org = {c.organization_id: c for c in configs}
        jobs = [build_job(by_org[org], platform) for org, platform in pairs]

        if dry_run:
            db.rollback()
        else:
            db.commit()
        return jobs
    finally:
        db.close()


def _scrape_with_semaphore(
    job: ScrapeJobData,
    fetcher: PageFetcher,
    session_factory,
    cancel_event: Optional[threading.Event],
    timeout: Optional[float],
) -> ScrapeJobResult:
    """Acquire platform semaphore, then call run_scrape_job."""
    sem = _semaphores.get(job.platform, _default_sem)
    with sem:
        return run_scrape_job(
            job,
            fetcher=fetcher,
            session_factory=session_factory,
            cancel_event=cancel_event,
            timeout=timeout,
        )


def _finish_org(
    organization_id: str,
    results: list[ScrapeJobResult],
    session_factory,
    now: datetime,
) -> None:
    """Reschedule one org from its aggregated cycle outcome."""
    attempted = [r for r in results if r.error_kind != ERROR_KIND_IN_FLIGHT]
    if not attempted:
        return
    summary = summarize_results(organization_id, attempted)
    db = session_factory()
    try:
        config = db.scalars(
            select(MarketIntelConfig).where(MarketIntelConfig.organization_id == organization_id)
        ).first()
        if config is None:
            logger.warning(f"Config for {organization_id} disappeared mid-cycle")
            return
        schedule_next(
            config,
            summary,
            threshold=FAILURE_THRESHOLD,
            multiplier=BACKOFF_MULTIPLIER,
            now=now,
        )
        db.commit()
        logger.info(
            f"{organization_id}: {summary.status}, next run "
            f"{config.next_scrape_at.isoformat() if config.next_scrape_at else 'not scheduled'} "
            f"(status {config.status}, failures {config.consecutive_failures})"
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to reschedule {organization_id}: {e}")
    finally:
        db.close()


def run_cycle(
    *,
    fetcher: Optional[PageFetcher] = None,
    session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None,
    dry_run: bool = False,
    max_workers: int = MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = JOB_TIMEOUT_SECONDS,
) -> list[ScrapeJobResult]:
    """
    Execute one full scheduling cycle.

    Jobs fan out across threads; an org is rescheduled once, from the
    main thread, after its last platform job finishes, so each config has
    a single writer per cycle.

    Args:
        fetcher: Crawl executor (defaults to HtmlPageFetcher)
        dry_run: Log which pairs are due, but don't scrape or change state

    Returns:
        Per-pair job results (empty for dry runs)
    """
    start_time = datetime.now(timezone.utc)
    now = now or start_time
    logger.info("=== Market intel cycle starting ===")

    jobs = plan_cycle(session_factory=session_factory, now=now, dry_run=dry_run)
    logger.info(f"{len(jobs)} due job(s)")

    if dry_run:
        logger.info("DRY RUN: listing due jobs without scraping:")
        for job in jobs:
            logger.info(f"  [dry-run] {job.organization_id}/{job.platform}")
        return []

    fetcher = fetcher or HtmlPageFetcher()
    pending: dict[str, int] = defaultdict(int)
    for job in jobs:
        pending[job.organization_id] += 1

    results: list[ScrapeJobResult] = []
    by_org: dict[str, list[ScrapeJobResult]] = defaultdict(list)

    if jobs:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                pool.submit(
                    _scrape_with_semaphore, job, fetcher, session_factory, cancel_event, timeout
                ): job
                for job in jobs
            }
            for future in as_completed(futures):
                job = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Unhandled exception for {job.organization_id}/{job.platform}: {e}")
                    result = ScrapeJobResult(
                        organization_id=job.organization_id,
                        platform=job.platform,
                        status=STATUS_FAILED,
                        errors=[f"[{type(e).__name__}] {str(e)[:500]}"],
                        error_kind=ERROR_KIND_JOB,
                        completed_at=datetime.now(timezone.utc),
                    )
                results.append(result)
                by_org[job.organization_id].append(result)
                pending[job.organization_id] -= 1
                if pending[job.organization_id] == 0:
                    _finish_org(job.organization_id, by_org[job.organization_id], session_factory, now)

    db = session_factory()
    try:
        pruned = prune_old_runs(db, days=RUN_RETENTION_DAYS)
        logger.info(f"Pruned {pruned} scrape_logs older than {RUN_RETENTION_DAYS} days")
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to prune old scrape_logs: {e}")
    finally:
        db.close()

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    counts = defaultdict(int)
    for r in results:
        counts[r.status] += 1
    logger.info(
        f"=== Cycle complete in {elapsed:.0f}s: "
        f"{counts['success']} success, {counts['partial']} partial, {counts['failed']} failed ==="
    )
    return results
