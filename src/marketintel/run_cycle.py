"""
Market intel cycle CLI entrypoint.

Usage:
    intel-cycle                    # Run one cycle immediately, then exit
    intel-cycle --run-now          # Same as above (explicit)
    intel-cycle --schedule         # Run a cycle every INTEL_CYCLE_MINUTES (blocks)
    intel-cycle --dry-run          # List due (organization, platform) pairs without scraping

Entrypoint: marketintel.run_cycle:main (registered as `intel-cycle` in pyproject.toml)
"""
import argparse
import logging
import sys
import threading
from datetime import datetime, timezone

from marketintel.config import CYCLE_MINUTES, MAX_WORKERS
from marketintel.db.session import create_tables
from marketintel.scheduler.batch import plan_cycle, run_cycle
from marketintel.scheduler.log_config import configure_logging


def _print_summary(results) -> None:
    by_status = {"success": 0, "partial": 0, "failed": 0}
    for r in results:
        by_status[r.status] = by_status.get(r.status, 0) + 1
    total_new = sum(r.listings_new for r in results)
    total_found = sum(r.listings_found for r in results)

    print(
        f"\nCycle complete: {by_status['success']} ok, {by_status['partial']} partial, "
        f"{by_status['failed']} failed; {total_found} listings found, {total_new} new"
    )
    problems = [r for r in results if r.status != "success"]
    if problems:
        print("\nJobs with errors:")
        for r in problems:
            print(f"  {r.organization_id}/{r.platform} [{r.status}]: {r.error_message or 'unknown error'}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run market intel scheduling cycles (crawl every due organization/platform pair)."
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--run-now",
        action="store_true",
        default=False,
        help="Run one cycle immediately, then exit (default if no mode specified)",
    )
    mode_group.add_argument(
        "--schedule",
        action="store_true",
        default=False,
        help=f"Enter scheduled mode: a cycle every {CYCLE_MINUTES} minutes (blocks)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="List due jobs without scraping or changing any state",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=MAX_WORKERS,
        help=f"Thread pool size (default {MAX_WORKERS})",
    )
    args = parser.parse_args()

    # Configure logging: rotating file + console
    configure_logging()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    create_tables()

    if args.dry_run:
        jobs = plan_cycle(dry_run=True)
        print(f"\n{len(jobs)} due job(s):")
        for job in jobs:
            print(f"  {job.organization_id}/{job.platform} (max pages: {job.max_pages or 'platform default'})")
        return

    if not args.schedule:
        results = run_cycle(max_workers=args.workers)
        _print_summary(results)
        return

    # Scheduled mode: APScheduler blocks; due selection decides what actually runs
    from apscheduler.schedulers.blocking import BlockingScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    cancel_event = threading.Event()
    scheduler = BlockingScheduler(timezone=timezone.utc)
    job = scheduler.add_job(
        run_cycle,
        IntervalTrigger(minutes=CYCLE_MINUTES),
        kwargs={"max_workers": args.workers, "cancel_event": cancel_event},
        id="market_intel_cycle",
        name="Market intel scheduling cycle",
        next_run_time=datetime.now(timezone.utc),
        misfire_grace_time=CYCLE_MINUTES * 60,
        coalesce=True,              # Only run once if multiple firings missed
        max_instances=1,            # Never overlap two cycles
    )

    logger = logging.getLogger("marketintel.scheduler")
    logger.info(f"Scheduler started. Cycle every {CYCLE_MINUTES} min, first run: {job.next_run_time}")
    print(f"Scheduler started. A cycle runs every {CYCLE_MINUTES} minutes. Press Ctrl+C to stop.")

    try:
        scheduler.start()  # Blocks until KeyboardInterrupt or SystemExit
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler shutting down...")
        cancel_event.set()  # in-flight crawls stop at their next page boundary
        scheduler.shutdown()
        print("Scheduler stopped.")


if __name__ == "__main__":
    main()
