"""
Job contracts at the worker/queue boundary.

ScrapeJobData is what the scheduler dispatches for one (organization,
platform) pair; ScrapeJobResult is what comes back. Both accept and emit
camelCase keys (model_dump(by_alias=True)) for runtimes outside Python.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_PARTIAL = "partial"

# error_kind values: "job" counts toward backoff, "config" routes to ERROR
ERROR_KIND_JOB = "job"
ERROR_KIND_CONFIG = "config"
# the pair was already running elsewhere; nothing was attempted
ERROR_KIND_IN_FLIGHT = "in_flight"

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchFilters(BaseModel):
    model_config = _WIRE

    areas: list[str] = []
    municipalities: list[str] = []
    transaction_types: list[str] = []
    property_types: list[str] = []
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    def primary_transaction_type(self) -> str:
        """Search path selector: rent only when rentals are the sole target."""
        types = [t.strip().lower() for t in self.transaction_types if t and t.strip()]
        return "rent" if types and all(t == "rent" for t in types) else "sale"

    def primary_area(self) -> Optional[str]:
        """First target area, falling back to the first municipality."""
        for name in (*self.areas, *self.municipalities):
            if name and name.strip():
                return name.strip()
        return None

    def single_property_type(self) -> Optional[str]:
        """The property type when exactly one is targeted; portals take a single category."""
        types = list(dict.fromkeys(t.strip().upper() for t in self.property_types if t and t.strip()))
        return types[0] if len(types) == 1 else None


class ScrapeJobData(BaseModel):
    model_config = _WIRE

    organization_id: str
    platform: str
    filters: SearchFilters = Field(default_factory=SearchFilters)
    max_pages: Optional[int] = Field(default=None, ge=1)
    start_page: int = Field(default=1, ge=1)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.organization_id, self.platform)


class ScrapeJobResult(BaseModel):
    model_config = _WIRE

    organization_id: str
    platform: str
    status: Literal["success", "failed", "partial"] = STATUS_SUCCESS
    listings_found: int = 0
    listings_new: int = 0
    listings_updated: int = 0
    listings_deactivated: int = 0
    # cross-platform duplicates found for new or changed listings
    listings_matched: int = 0
    pages_scraped: int = 0
    duration: int = 0  # milliseconds
    errors: list[str] = []
    error_kind: Optional[Literal["job", "config", "in_flight"]] = None
    completed_at: Optional[datetime] = None

    @property
    def error_message(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None
