"""Circuit breaker guarding the partner transport.

After `threshold` consecutive failures the circuit opens and dispatches are
rejected without touching the network. Once `reset_timeout` seconds have
passed, one trial call is admitted (half-open): its success closes the circuit,
its failure reopens it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from hotelsync.engine.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe consecutive-failure circuit breaker for one service."""

    def __init__(
        self,
        service: str = "partner",
        threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the breaker.

        Args:
            service: Name used in logs and CircuitOpenError.
            threshold: Consecutive failures that open the circuit.
            reset_timeout: Seconds the circuit stays open before a trial call.
            clock: Seconds source (injectable for tests).
        """
        self.service = service
        self._threshold = threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def allow_request(self) -> bool:
        """Check whether a call may go through, admitting a trial call when due."""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                if self._clock() - self._opened_at < self._reset_timeout:
                    return False
                logger.info("Circuit for %s half-open; admitting a trial call", self.service)
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                return True
            # Half-open: only one trial call at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def check(self) -> None:
        """Raise CircuitOpenError when the call must be rejected."""
        if not self.allow_request():
            raise CircuitOpenError(self.service)

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit for %s closed", self.service)
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._opened_at = 0.0
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN or self._failures >= self._threshold:
                if self._state is not CircuitState.OPEN:
                    logger.warning(
                        "Circuit for %s opened after %d consecutive failure(s)",
                        self.service,
                        self._failures,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                self._trial_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed."""
        self.record_success()
