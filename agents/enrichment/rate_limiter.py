"""
Minimum-interval rate limiting per provider.

Replaces fixed sleeps between entities: ``acquire("discovery")`` only waits
for whatever part of the provider's interval has not already elapsed.
"""

import logging
import threading
import time
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Blocks until at least ``intervals[provider]`` seconds since the last acquire."""

    def __init__(
        self,
        intervals: Mapping[str, float],
        default_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.intervals = dict(intervals)
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: dict[str, float] = {}

    def interval_for(self, provider_id: str) -> float:
        return float(self.intervals.get(provider_id, self.default_interval))

    def acquire(self, provider_id: str) -> float:
        """Wait for the provider's slot. Returns the seconds slept."""
        with self._lock:
            interval = self.interval_for(provider_id)
            last: Optional[float] = self._last.get(provider_id)
            waited = 0.0
            if last is not None and interval > 0:
                remaining = interval - (self._clock() - last)
                if remaining > 0:
                    logger.debug("Rate limit %s: sleeping %.2fs", provider_id, remaining)
                    self._sleep(remaining)
                    waited = remaining
            self._last[provider_id] = self._clock()
            return waited


class NullRateLimiter:
    """Never waits."""

    def acquire(self, provider_id: str) -> float:
        return 0.0
