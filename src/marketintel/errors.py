"""Exception hierarchy for the ingestion pipeline.

Normalization never raises; these cover the boundary-crossing failures
(configuration, crawl, run log) that are reported at job granularity.
"""


class MarketIntelError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigurationError(MarketIntelError):
    """Retrying cannot succeed until an operator fixes the configuration."""


class UnknownPlatformError(ConfigurationError):
    def __init__(self, platform_id: str):
        super().__init__(f"Unknown platform: {platform_id!r}")
        self.platform_id = platform_id


class OrgConfigError(ConfigurationError):
    """Organization config is missing or lacks required fields."""


class CrawlError(MarketIntelError):
    """Raised on crawl-level failures."""


class PageFetchError(CrawlError):
    """A single page could not be fetched after the executor's own retries."""

    def __init__(self, message: str, page: int | None = None):
        super().__init__(message)
        self.page = page


class CrawlAbortedError(CrawlError):
    """The crawl failed before any page succeeded."""


class CrawlCancelledError(CrawlError):
    """The crawl was cancelled or ran past its deadline."""


class RunLogError(MarketIntelError):
    pass


class RunAlreadyInFlightError(RunLogError):
    def __init__(self, organization_id: str, platform: str):
        super().__init__(f"Scrape already running for {organization_id}/{platform}")
        self.organization_id = organization_id
        self.platform = platform


class RunLogFinalizedError(RunLogError):
    """Completed run logs are immutable."""


class InvalidTransitionError(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move market intel config from {current} to {target}")
        self.current = current
        self.target = target
