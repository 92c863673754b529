"""
Append-only scrape run log.

One ScrapeLog row per (organization, platform) run: opened as "running",
closed exactly once with its terminal status and counters. While a run is
open its in_flight_key holds "{organization_id}:{platform}"; the unique
constraint on that column stops a second run of the same pair from opening.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketintel.db.models import ScrapeLog
from marketintel.errors import RunAlreadyInFlightError, RunLogFinalizedError
from marketintel.jobs import STATUS_FAILED, STATUS_RUNNING, ScrapeJobResult

logger = logging.getLogger("marketintel.pipeline")

MAX_ERROR_MESSAGE = 1000


def in_flight_key(organization_id: str, platform: str) -> str:
    return f"{organization_id}:{platform}"


def open_run(
    db: Session,
    organization_id: str,
    platform: str,
    *,
    metadata: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> ScrapeLog:
    """
    Insert and commit a "running" log row for the pair.

    Raises RunAlreadyInFlightError if the pair already has an open run.
    """
    log = ScrapeLog(
        organization_id=organization_id,
        platform=platform,
        started_at=now or datetime.now(timezone.utc),
        status=STATUS_RUNNING,
        listings_found=0,
        listings_new=0,
        listings_updated=0,
        listings_deactivated=0,
        pages_scraped=0,
        run_metadata=metadata or {},
        in_flight_key=in_flight_key(organization_id, platform),
    )
    db.add(log)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise RunAlreadyInFlightError(organization_id, platform) from None
    return log


def close_run(
    db: Session,
    log: ScrapeLog,
    result: ScrapeJobResult,
    now: Optional[datetime] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> ScrapeLog:
    """
    Write the terminal status and counters, release the in-flight key, commit.

    `metadata` is merged into the metadata recorded at open. The row is
    re-read first: a run reaped by another process stays reaped.
    """
    db.refresh(log)
    if log.status != STATUS_RUNNING or log.completed_at is not None:
        raise RunLogFinalizedError(f"Scrape log {log.id} is already {log.status}")

    log.status = result.status
    log.completed_at = result.completed_at or now or datetime.now(timezone.utc)
    log.listings_found = result.listings_found
    log.listings_new = result.listings_new
    log.listings_updated = result.listings_updated
    log.listings_deactivated = result.listings_deactivated
    log.pages_scraped = result.pages_scraped
    log.scrape_duration_ms = result.duration
    message = result.error_message
    log.error_message = message[:MAX_ERROR_MESSAGE] if message else None
    if metadata:
        log.run_metadata = {**(log.run_metadata or {}), **metadata}
    log.in_flight_key = None
    db.commit()
    return log


def running_pairs(db: Session) -> set[tuple[str, str]]:
    """(organization_id, platform) pairs with an open run."""
    rows = db.execute(
        select(ScrapeLog.organization_id, ScrapeLog.platform).where(
            ScrapeLog.status == STATUS_RUNNING
        )
    ).all()
    return {(org, platform) for org, platform in rows}


def recent_runs(
    db: Session,
    organization_id: str,
    platform: Optional[str] = None,
    limit: int = 20,
) -> list[ScrapeLog]:
    stmt = select(ScrapeLog).where(ScrapeLog.organization_id == organization_id)
    if platform is not None:
        stmt = stmt.where(ScrapeLog.platform == platform)
    stmt = stmt.order_by(ScrapeLog.started_at.desc(), ScrapeLog.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def reap_stale_runs(
    db: Session,
    older_than: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """
    Fail runs stuck in "running" for longer than `older_than`.

    A worker killed mid-run never closes its log, which would hold the
    pair's in-flight key forever. Returns the number of runs reaped.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - older_than
    stale = db.scalars(
        select(ScrapeLog).where(
            ScrapeLog.status == STATUS_RUNNING,
            ScrapeLog.started_at < cutoff,
        )
    ).all()
    for log in stale:
        minutes = int(older_than.total_seconds() // 60)
        log.status = STATUS_FAILED
        log.completed_at = now
        log.error_message = f"Run abandoned: still running after {minutes} minutes"
        log.in_flight_key = None
        logger.warning(
            f"Reaped stale run {log.id} for {log.organization_id}/{log.platform} "
            f"(started {log.started_at.isoformat()})"
        )
    db.commit()
    return len(stale)


def prune_old_runs(db: Session, days: int = 30, now: Optional[datetime] = None) -> int:
    """Delete finalized scrape_logs rows older than `days` days. Returns count deleted."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    result = db.execute(
        delete(ScrapeLog).where(
            ScrapeLog.status != STATUS_RUNNING,
            ScrapeLog.started_at < cutoff,
        )
    )
    db.commit()
    return result.rowcount or 0
