"""
Operator CLI for organization market intel configs.

Usage:
    intel-config show    --org org_123
    intel-config enable  --org org_123 --platform spitogatos --platform xe_gr --frequency DAILY
    intel-config enable  --org org_123 --area Κολωνάκι --property-type APARTMENT
    intel-config pause   --org org_123
    intel-config resume  --org org_123
    intel-config disable --org org_123
    intel-config runs    --org org_123 [--platform xe_gr] [--limit 20]

Entrypoint: marketintel.manage:main (registered as `intel-config` in pyproject.toml)
"""
import argparse
import sys

from marketintel.db.listings import get_config, get_or_create_config
from marketintel.db.models import MarketIntelConfig
from marketintel.db.runlog import recent_runs
from marketintel.db.session import SessionLocal, create_tables
from marketintel.errors import InvalidTransitionError, OrgConfigError
from marketintel.platforms.registry import all_platform_ids
from marketintel.scheduler.backoff import FREQUENCY_INTERVALS
from marketintel.scheduler.lifecycle import DISABLED, disable, enable, pause, resume
from marketintel.vocabulary import CANONICAL_PROPERTY_TYPES


def _show(config: MarketIntelConfig) -> None:
    print(f"Organization:  {config.organization_id}")
    print(f"Status:        {config.status}")
    if config.pause_reason:
        print(f"Paused:        {config.paused_at} ({config.pause_reason})")
    print(f"Platforms:     {', '.join(config.platforms or []) or '-'}")
    print(f"Frequency:     {config.scrape_frequency}")
    print(f"Max pages:     {config.max_pages_per_platform}")
    print(f"Transactions:  {', '.join(config.transaction_types or []) or '-'}")
    print(f"Types:         {', '.join(config.property_types or []) or '-'}")
    print(f"Areas:         {', '.join(config.target_areas or []) or '-'}")
    print(f"Last scrape:   {config.last_scrape_at or '-'}")
    print(f"Next scrape:   {config.next_scrape_at or '-'}")
    print(f"Failures:      {config.consecutive_failures}")
    if config.last_error:
        print(f"Last error:    {config.last_error}")


def _print_runs(runs) -> None:
    if not runs:
        print("(No runs recorded.)")
        return
    for r in runs:
        duration = f"{r.scrape_duration_ms} ms" if r.scrape_duration_ms is not None else "-"
        print(
            f"  {r.started_at:%Y-%m-%d %H:%M} {r.platform:<12} {r.status:<8} "
            f"found={r.listings_found} new={r.listings_new} updated={r.listings_updated} "
            f"deactivated={r.listings_deactivated} pages={r.pages_scraped} ({duration})"
        )
        if r.error_message:
            print(f"      {r.error_message[:200]}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage organization market intel configs")
    parser.add_argument(
        "command",
        choices=["show", "enable", "pause", "resume", "disable", "runs"],
    )
    parser.add_argument("--org", required=True, help="Organization id")
    parser.add_argument(
        "--platform",
        action="append",
        choices=all_platform_ids(),
        help="Platform to crawl (repeatable; enable sets the list, runs filters by it)",
    )
    parser.add_argument("--frequency", choices=sorted(FREQUENCY_INTERVALS))
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--transaction", action="append", choices=["sale", "rent"])
    parser.add_argument("--area", action="append", help="Target area (repeatable)")
    parser.add_argument(
        "--property-type",
        action="append",
        choices=sorted(CANONICAL_PROPERTY_TYPES),
        help="Property type to target (repeatable)",
    )
    parser.add_argument("--limit", type=int, default=20, help="Runs to list (runs command)")
    args = parser.parse_args()

    create_tables()
    db = SessionLocal()
    try:
        if args.command == "runs":
            platform = args.platform[0] if args.platform else None
            _print_runs(recent_runs(db, args.org, platform=platform, limit=args.limit))
            return

        if args.command == "enable":
            config = get_or_create_config(db, args.org)
            if args.platform:
                config.platforms = list(dict.fromkeys(args.platform))
            if args.frequency:
                config.scrape_frequency = args.frequency
            if args.max_pages:
                config.max_pages_per_platform = args.max_pages
            if args.transaction:
                config.transaction_types = list(dict.fromkeys(args.transaction))
            if args.area:
                config.target_areas = args.area
            if args.property_type:
                config.property_types = list(dict.fromkeys(args.property_type))
            # New configs start in PENDING_SETUP; live ones only get new settings
            if config.status == DISABLED:
                enable(config)
        else:
            config = get_config(db, args.org)
            if args.command == "pause":
                pause(config)
            elif args.command == "resume":
                resume(config)
            elif args.command == "disable":
                disable(config)

        db.commit()
        _show(config)
    except (InvalidTransitionError, OrgConfigError) as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
