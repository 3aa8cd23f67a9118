"""Per-provider circuit breaker for transient network failures.

A provider that keeps timing out costs the resolver a full HTTP timeout on
every search. After `failure_threshold` consecutive transient failures the
breaker opens and the resolver skips the provider until `cooldown_seconds`
have passed; the next search is then let through as a trial request.

    CLOSED    -> OPEN       failure_count >= failure_threshold
    OPEN      -> HALF_OPEN  cooldown elapsed (evaluated lazily)
    HALF_OPEN -> CLOSED     trial succeeded
    HALF_OPEN -> OPEN       trial failed
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe breaker guarding one provider.

    Args:
        name: Provider name, used in log messages.
        failure_threshold: Consecutive failures before opening.
        cooldown_seconds: Time spent OPEN before a trial request is allowed.
        clock: Monotonic clock in seconds (injectable for tests).
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    def _refresh_locked(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.cooldown_seconds:
                self._state = CircuitState.HALF_OPEN
                logger.info("CircuitBreaker[%s]: OPEN → HALF_OPEN", self.name)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh_locked()
            return self._state

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        """A search completed (with or without results)."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("CircuitBreaker[%s]: %s → CLOSED", self.name, self._state.value)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None

    def record_failure(self) -> None:
        """A search failed with a transient error."""
        with self._lock:
            self._refresh_locked()
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold
            ):
                logger.warning(
                    "CircuitBreaker[%s]: %s → OPEN (%d consecutive failures)",
                    self.name, self._state.value, self._failure_count,
                )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def get_status(self) -> dict:
        """Return a JSON-serialisable status dict."""
        with self._lock:
            self._refresh_locked()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "cooldown_seconds": self.cooldown_seconds,
            }
