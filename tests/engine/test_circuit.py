"""Tests for the circuit breaker."""

from __future__ import annotations

import pytest

from hotelsync.engine.circuit import CircuitBreaker, CircuitState
from hotelsync.engine.errors import CircuitOpenError


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(service="partner", threshold=3, reset_timeout=60.0, clock=clock)


class TestCircuitBreaker:
    """Tests for open, half-open and closed transitions."""

    def test_opens_after_threshold(self, breaker: CircuitBreaker) -> None:
        """Should open after consecutive failures reach the threshold."""
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert breaker.allow_request() is False
        with pytest.raises(CircuitOpenError, match="partner"):
            breaker.check()

    def test_success_resets_count(self, breaker: CircuitBreaker) -> None:
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_single_trial_after_timeout(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        """Should admit exactly one trial call once the reset timeout elapsed."""
        for _ in range(3):
            breaker.record_failure()

        clock.value = 60.0

        assert breaker.allow_request() is True
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow_request() is False

    def test_trial_success_closes(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        for _ in range(3):
            breaker.record_failure()
        clock.value = 61.0
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow_request() is True

    def test_trial_failure_reopens(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        """Should reopen and restart the timeout when the trial call fails."""
        for _ in range(3):
            breaker.record_failure()
        clock.value = 61.0
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        clock.value = 100.0
        assert breaker.allow_request() is False
        clock.value = 121.0
        assert breaker.allow_request() is True

    def test_reset(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0
