"""
Single-platform spot-check scraper CLI.

Crawls one platform with the given filters and prints the normalized
listings to the terminal. Does not write to the database by default.

Usage:
    intel-scrape --platform spitogatos
    intel-scrape --platform xe_gr --transaction rent --area Κολωνάκι --pages 2
    intel-scrape --platform spitogatos --org org_123 --save

Entrypoint: marketintel.scrape:main (registered as `intel-scrape` in pyproject.toml)
"""

import argparse

from marketintel.jobs import ScrapeJobData, SearchFilters
from marketintel.normalizer import normalize
from marketintel.platforms.crawl import crawl, effective_max_pages
from marketintel.platforms.html import HtmlPageFetcher
from marketintel.platforms.registry import all_platform_ids, get_platform_config

SPOT_CHECK_ORG = "spot-check"


def _format_price(price) -> str:
    if price is None:
        return "N/A"
    return f"€{price:,.0f}".replace(",", ".")


def _print_table(platform_name: str, listings: list[dict], pages: int, errors: list[str]) -> None:
    """Print a formatted table of normalized listings."""
    print(f"\nPlatform:  {platform_name}")
    print(f"Pages crawled: {pages}")
    print(f"Listings found: {len(listings)}")

    if not listings:
        print("\n(No listings returned.)")
    else:
        rows = [
            (
                str(l["source_listing_id"] or "-"),
                l["property_type"],
                _format_price(l["price"]),
                f"{l['size_sqm']} m²" if l["size_sqm"] else "-",
                str(l["area"] or "-"),
            )
            for l in listings
        ]
        headers = ("ID", "Type", "Price", "Size", "Area")
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        header = "  ".join(f"{h:<{w}}" for h, w in zip(headers, widths))
        print(f"\n {header}")
        print(" " + "─" * len(header))
        for row in rows:
            print(" " + "  ".join(f"{c:<{w}}" for c, w in zip(row, widths)))

    if errors:
        print("\nPage errors:")
        for e in errors:
            print(f"  {e}")
    print()


def main() -> None:
    """CLI entrypoint registered as `intel-scrape` in pyproject.toml."""
    parser = argparse.ArgumentParser(
        description="Spot-check one listing platform by crawling it and printing normalized results."
    )
    parser.add_argument(
        "--platform",
        required=True,
        choices=all_platform_ids(),
        help="Platform id to crawl",
    )
    parser.add_argument("--org", default=SPOT_CHECK_ORG, help="Organization id to attribute listings to")
    parser.add_argument("--pages", type=int, default=1, help="Maximum pages to crawl (default 1)")
    parser.add_argument("--transaction", choices=["sale", "rent"], default="sale")
    parser.add_argument("--area", action="append", default=[], help="Target area (repeatable)")
    parser.add_argument("--min-price", type=int, default=None)
    parser.add_argument("--max-price", type=int, default=None)
    parser.add_argument(
        "--save",
        action="store_true",
        default=False,
        help="Run as a real scrape job: persist listings and write a run log",
    )
    args = parser.parse_args()

    job = ScrapeJobData(
        organization_id=args.org,
        platform=args.platform,
        filters=SearchFilters(
            areas=args.area,
            transaction_types=[args.transaction],
            min_price=args.min_price,
            max_price=args.max_price,
        ),
        max_pages=max(1, args.pages),
    )
    fetcher = HtmlPageFetcher()

    try:
        if args.save:
            from marketintel.db.session import create_tables
            from marketintel.scheduler.runner import run_scrape_job

            create_tables()
            result = run_scrape_job(job, fetcher=fetcher)
            print(
                f"\n{job.organization_id}/{job.platform}: {result.status}, "
                f"{result.listings_found} found, {result.listings_new} new, "
                f"{result.listings_updated} updated, {result.pages_scraped} pages"
            )
            if result.errors:
                print(f"Errors: {result.error_message}")
            print("(Saved to database.)")
            if result.status == "failed":
                raise SystemExit(1)
            return

        platform = get_platform_config(args.platform)
        listings: list[dict] = []

        def collect(page: int, raws: list) -> None:
            listings.extend(normalize(raw, platform.id, job.organization_id) for raw in raws)

        outcome = crawl(platform, job, fetcher, collect, max_pages=effective_max_pages(platform, job))
        _print_table(platform.name, listings, outcome.pages_scraped, outcome.page_errors)
        print("(Not saved to database. Run with --save to persist.)")

    except SystemExit:
        raise
    except Exception as e:
        exc_type = type(e).__name__
        print(f"ERROR: [{exc_type}] {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
