"""
Per-service circuit breaker for upstream AI and discovery calls.

A service that keeps failing is short-circuited for a cooldown window so a
batch does not burn its budget on calls that cannot succeed. After the
cooldown one probe is allowed through (half-open); enough consecutive
successes close the circuit again, any failure re-opens it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from agents.enrichment.errors import CircuitOpenError

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    state: str = CLOSED
    failures: int = 0
    successes: int = 0
    opened_at: Optional[float] = None


class CircuitBreaker:
    """Tracks consecutive failures per service and blocks calls while open."""

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, CircuitState] = {}

    def _state_for(self, service: str) -> CircuitState:
        if service not in self._states:
            self._states[service] = CircuitState()
        return self._states[service]

    def state(self, service: str) -> str:
        with self._lock:
            current = self._state_for(service)
            self._maybe_half_open(service, current)
            return current.state

    def _maybe_half_open(self, service: str, current: CircuitState) -> None:
        if current.state != OPEN or current.opened_at is None:
            return
        if self._clock() - current.opened_at >= self.cooldown_seconds:
            current.state = HALF_OPEN
            current.successes = 0
            logger.info("Circuit breaker HALF_OPEN for %s", service)

    def check(self, service: str) -> None:
        """Raise CircuitOpenError if calls to *service* are currently blocked."""
        with self._lock:
            current = self._state_for(service)
            self._maybe_half_open(service, current)
            if current.state == OPEN:
                remaining = self.cooldown_seconds - (self._clock() - current.opened_at)
                raise CircuitOpenError(service, max(int(remaining), 0))

    def is_open(self, service: str) -> bool:
        return self.state(service) == OPEN

    def record_success(self, service: str) -> None:
        with self._lock:
            current = self._state_for(service)
            if current.state == HALF_OPEN:
                current.successes += 1
                if current.successes >= self.success_threshold:
                    self._states[service] = CircuitState()
                    logger.info("Circuit breaker CLOSED for %s", service)
            else:
                current.failures = 0

    def record_failure(self, service: str) -> None:
        with self._lock:
            current = self._state_for(service)
            current.failures += 1
            if current.state == HALF_OPEN or current.failures >= self.failure_threshold:
                current.state = OPEN
                current.opened_at = self._clock()
                current.successes = 0
                logger.warning(
                    "Circuit breaker OPEN for %s (%d consecutive failures, cooldown %ss)",
                    service, current.failures, self.cooldown_seconds,
                )

    def reset(self, service: Optional[str] = None) -> None:
        with self._lock:
            if service is None:
                self._states.clear()
            else:
                self._states.pop(service, None)


# Module-level singleton
_circuit_breaker = None


def get_circuit_breaker() -> CircuitBreaker:
    global _circuit_breaker
    if _circuit_breaker is None:
        _circuit_breaker = CircuitBreaker()
    return _circuit_breaker
