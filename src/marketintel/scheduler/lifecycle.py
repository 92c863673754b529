"""
Organization market intel config state machine.

    PENDING_SETUP --first dispatch--> ACTIVE <--resume-- PAUSED / ERROR
    ACTIVE --pause / failure threshold--> PAUSED
    any non-disabled --config error--> ERROR
    any --disable--> DISABLED --enable--> PENDING_SETUP

Each operation mutates the row in place and returns it; callers commit.
Illegal transitions raise InvalidTransitionError.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from marketintel.db.models import MarketIntelConfig
from marketintel.errors import InvalidTransitionError

logger = logging.getLogger("marketintel.scheduler")

PENDING_SETUP = "PENDING_SETUP"
ACTIVE = "ACTIVE"
PAUSED = "PAUSED"
ERROR = "ERROR"
DISABLED = "DISABLED"

PAUSE_MANUAL = "manual"
PAUSE_FAILURES = "failures"

_MAX_LAST_ERROR = 1000


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _status(config: MarketIntelConfig) -> str:
    return config.status or PENDING_SETUP


def _require(config: MarketIntelConfig, target: str, allowed: set[str]) -> None:
    if _status(config) not in allowed:
        raise InvalidTransitionError(_status(config), target)


def _clear_pause(config: MarketIntelConfig) -> None:
    config.paused_at = None
    config.pause_reason = None


def enable(config: MarketIntelConfig, now: Optional[datetime] = None) -> MarketIntelConfig:
    """Opt in (again). A no-op for configs that are already set up."""
    if _status(config) == PENDING_SETUP:
        return config
    _require(config, PENDING_SETUP, {DISABLED})
    config.status = PENDING_SETUP
    config.consecutive_failures = 0
    config.last_error = None
    config.next_scrape_at = None
    _clear_pause(config)
    config.updated_at = _now(now)
    return config


def activate_pending(config: MarketIntelConfig, now: Optional[datetime] = None) -> MarketIntelConfig:
    _require(config, ACTIVE, {PENDING_SETUP})
    now = _now(now)
    config.status = ACTIVE
    if config.next_scrape_at is None:
        config.next_scrape_at = now
    config.updated_at = now
    logger.info(f"Activated market intel for {config.organization_id}")
    return config


def pause(
    config: MarketIntelConfig,
    now: Optional[datetime] = None,
    reason: str = PAUSE_MANUAL,
) -> MarketIntelConfig:
    _require(config, PAUSED, {ACTIVE})
    now = _now(now)
    config.status = PAUSED
    config.paused_at = now
    config.pause_reason = reason
    config.updated_at = now
    return config


def resume(config: MarketIntelConfig, now: Optional[datetime] = None) -> MarketIntelConfig:
    """Manual reset: back to ACTIVE with a clean failure count, due immediately."""
    _require(config, ACTIVE, {PAUSED, ERROR})
    now = _now(now)
    config.status = ACTIVE
    config.consecutive_failures = 0
    config.last_error = None
    _clear_pause(config)
    config.next_scrape_at = now
    config.updated_at = now
    return config


def disable(config: MarketIntelConfig, now: Optional[datetime] = None) -> MarketIntelConfig:
    config.status = DISABLED
    config.next_scrape_at = None
    _clear_pause(config)
    config.updated_at = _now(now)
    return config


def mark_error(
    config: MarketIntelConfig,
    message: str,
    now: Optional[datetime] = None,
) -> MarketIntelConfig:
    """Park the config until an operator fixes it; backoff does not apply."""
    _require(config, ERROR, {PENDING_SETUP, ACTIVE, PAUSED, ERROR})
    config.status = ERROR
    config.last_error = (message or "Configuration error")[:_MAX_LAST_ERROR]
    config.next_scrape_at = None
    _clear_pause(config)
    config.updated_at = _now(now)
    logger.warning(f"Market intel for {config.organization_id} needs attention: {config.last_error}")
    return config


def resume_cooled_down(
    config: MarketIntelConfig,
    now: Optional[datetime] = None,
    cooldown: Optional[timedelta] = None,
) -> bool:
    """
    Auto-resume a config paused by the failure threshold once `cooldown` has
    elapsed since the pause. Manual pauses are left alone, and nothing
    happens when cooldown is None. Returns True if the config was resumed.
    """
    if cooldown is None or _status(config) != PAUSED:
        return False
    if config.pause_reason != PAUSE_FAILURES or config.paused_at is None:
        return False
    now = _now(now)
    if config.paused_at + cooldown > now:
        return False
    resume(config, now)
    logger.info(f"Auto-resumed market intel for {config.organization_id} after cool-down")
    return True
