"""
Platform-scoped request budget.

Every organization crawling the same portal draws from that portal's single
rate-limit budget, so there is exactly one limiter per platform id per
process, shared by all worker threads.
"""
import threading
import time
from collections import deque
from typing import Callable, Optional

from marketintel.platforms.registry import PlatformConfig


class PlatformRateLimiter:
    """Sliding-window limiter: at most `requests` acquisitions per `per_minutes` window."""

    def __init__(
        self,
        requests: int,
        per_minutes: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.requests = requests
        self.window = per_minutes * 60.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._stamps: deque[float] = deque()

    def try_acquire(self) -> float:
        """Take a slot if one is free and return 0.0, else return seconds until one frees up."""
        with self._lock:
            now = self._clock()
            while self._stamps and self._stamps[0] <= now - self.window:
                self._stamps.popleft()
            if len(self._stamps) < self.requests:
                self._stamps.append(now)
                return 0.0
            return self._stamps[0] + self.window - now

    def acquire(
        self,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> bool:
        """
        Block until a slot is available.

        Returns False without taking a slot if cancel_event is set or the
        deadline (same clock as the limiter) passes first.
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False
            wait = self.try_acquire()
            if wait <= 0:
                return True
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                wait = min(wait, remaining)
            if cancel_event is not None:
                if cancel_event.wait(wait):
                    return False
            else:
                self._sleep(wait)


_limiters: dict[str, PlatformRateLimiter] = {}
_limiters_lock = threading.Lock()


def get_rate_limiter(platform: PlatformConfig) -> PlatformRateLimiter:
    """Return the process-wide limiter for this platform, creating it on first use."""
    with _limiters_lock:
        limiter = _limiters.get(platform.id)
        if limiter is None:
            limiter = PlatformRateLimiter(
                platform.rate_limit.requests, platform.rate_limit.per_minutes
            )
            _limiters[platform.id] = limiter
        return limiter


def reset_rate_limiters() -> None:
    with _limiters_lock:
        _limiters.clear()
