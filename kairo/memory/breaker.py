"""Circuit breaker tracking primary backend health."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 30.0


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Health flag for the primary backend.

    A new breaker is HALF_OPEN: nothing is known yet, so the first caller
    probes. A successful probe or call closes it. A failed probe, or
    ``failure_threshold`` consecutive call failures, opens it. An open
    breaker turns HALF_OPEN again after ``reset_timeout`` seconds.

    A single failed call below the threshold leaves the breaker closed, so
    one transient error only degrades the operation that hit it.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock or time.monotonic
        self._state = BreakerState.HALF_OPEN
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _maybe_half_open(self) -> None:
        if self._state is BreakerState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self._state = BreakerState.HALF_OPEN
                logger.info("Primary backend breaker half-open, next call re-probes")

    def allows_request(self) -> bool:
        """True unless the breaker is open."""
        return self.state is not BreakerState.OPEN

    def needs_probe(self) -> bool:
        return self.state is BreakerState.HALF_OPEN

    def record_success(self) -> None:
        with self._lock:
            if self._state is not BreakerState.CLOSED:
                logger.info("Primary backend healthy, breaker closed")
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        """Count a failed call; opens the breaker once the threshold is hit."""
        with self._lock:
            self._failures += 1
            if self._state is BreakerState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._open()

    def trip(self) -> None:
        """Open immediately (failed health probe)."""
        with self._lock:
            self._failures = max(self._failures, 1)
            self._open()

    def _open(self) -> None:
        if self._state is not BreakerState.OPEN:
            logger.warning("Primary backend marked unavailable (failures=%d)", self._failures)
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
