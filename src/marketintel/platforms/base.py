"""
Crawl executor boundary.

PageFetcher: typing.Protocol that crawl executors satisfy structurally. The
executor owns HTTP, HTML extraction, retries and anti-bot handling; this core
only drives the paginated loop (see crawl.py) and consumes raw listings.
"""
from dataclasses import dataclass, field
from typing import Any, Protocol

from marketintel.jobs import ScrapeJobData
from marketintel.normalizer import RawListing
from marketintel.platforms.registry import PlatformConfig


@dataclass
class PageResult:
    """One page of raw listings. has_next=False ends pagination."""

    listings: list[RawListing | dict[str, Any]] = field(default_factory=list)
    has_next: bool = True


class PageFetcher(Protocol):
    def fetch_page(self, platform: PlatformConfig, job: ScrapeJobData, page: int) -> PageResult:
        """
        Return the raw listings on `page` (1-based).

        Raise PageFetchError once the executor's own retry policy is
        exhausted; the crawl loop decides whether that fails the job.
        """
        ...
