"""Tests for the lane state machine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from hotelsync.core.config import HealthConfig, RetryConfig
from hotelsync.core.types import LaneState, MessageKind, ProcessingState
from hotelsync.engine.errors import InvalidTransitionError
from hotelsync.engine.lane import DEGRADED, RECOVERED, SyncLane, backoff, failure_rate

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
RETRY = RetryConfig()


def make_lane(**kwargs) -> SyncLane:
    return SyncLane(property_id="42", kind=MessageKind.INVENTORY, created_at=T0, updated_at=T0, **kwargs)


def fail(lane: SyncLane, now: datetime = T0, can_retry: bool = True, delay: int = 60) -> bool:
    return lane.record_failure(now, "Request timed out", can_retry, delay, RETRY)


class TestBackoff:
    """Tests for the exponential retry delay."""

    @pytest.mark.parametrize(
        ("retry_count", "minutes"),
        [(1, 5), (2, 10), (3, 20), (4, 40), (5, 60), (6, 60), (100, 60)],
    )
    def test_sequence(self, retry_count: int, minutes: int) -> None:
        """Should double from five minutes up to an hour."""
        assert backoff(retry_count) == timedelta(minutes=minutes)

    def test_zero_counts_as_first(self) -> None:
        assert backoff(0) == timedelta(minutes=5)


class TestFailureRate:
    def test_too_few_samples(self) -> None:
        """Should return None below the minimum sample count."""
        assert failure_rate([ProcessingState.FAILED] * 3, min_samples=10) is None
        assert failure_rate([], min_samples=0) is None

    def test_rate(self) -> None:
        outcomes = [ProcessingState.FAILED] * 3 + [ProcessingState.PROCESSED] * 7
        assert failure_rate(outcomes, min_samples=10) == pytest.approx(0.3)


class TestDispatch:
    """Tests for begin_dispatch and record_success."""

    def test_idle_to_running(self) -> None:
        """Should move an idle lane to running."""
        lane = make_lane()
        lane.begin_dispatch(T0, records=5, message_id="m1")
        assert lane.state is LaneState.RUNNING
        assert lane.records_total == 5
        assert lane.in_flight is True
        assert lane.last_message_id == "m1"
        assert lane.last_attempt_at == T0

    def test_success_completes(self) -> None:
        """Should complete and clear retry state on success."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane)
        lane.begin_dispatch(T0)
        lane.record_success(T0)

        assert lane.state is LaneState.COMPLETED
        assert lane.retry_count == 0
        assert lane.consecutive_failures == 0
        assert lane.error_message is None
        assert lane.next_retry_at is None
        assert lane.last_success_at == T0

    def test_failed_lane_stays_failed(self) -> None:
        """Should count a dispatch on a failed lane without leaving Failed."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane, can_retry=False)

        lane.begin_dispatch(T0 + timedelta(minutes=1), records=2, message_id="m2")

        assert lane.state is LaneState.FAILED
        assert lane.auto_retry_enabled is False
        assert lane.records_total == 3
        assert lane.in_flight_records == 2
        assert lane.last_message_id == "m2"
        assert lane.last_attempt_at == T0 + timedelta(minutes=1)

    def test_running_accepts_concurrent_dispatch(self) -> None:
        lane = make_lane()
        lane.begin_dispatch(T0, records=2)
        lane.begin_dispatch(T0, records=3)
        assert lane.state is LaneState.RUNNING
        assert lane.in_flight_records == 5

    def test_late_success_on_failed_lane(self) -> None:
        """Should keep a failed lane failed on a late success."""
        lane = make_lane()
        lane.begin_dispatch(T0, records=2)
        lane.begin_dispatch(T0)
        fail(lane, can_retry=False)
        lane.record_success(T0, records=2)

        assert lane.state is LaneState.FAILED
        assert lane.last_success_at == T0
        assert lane.records_processed == 2


class TestFailure:
    """Tests for record_failure."""

    def test_retryable_failure_schedules_retry(self) -> None:
        """Should schedule a retry five minutes out after the first timeout."""
        lane = make_lane()
        lane.begin_dispatch(T0)

        became_failed = fail(lane)

        assert became_failed is False
        assert lane.state is LaneState.RETRY_PENDING
        assert lane.retry_count == 1
        assert lane.consecutive_failures == 1
        assert lane.next_retry_at == T0 + timedelta(minutes=5)
        assert lane.error_message == "Request timed out"
        assert lane.in_flight is False

    def test_kind_delay_wins_when_longer(self) -> None:
        """Should wait at least the failure kind's recommended delay."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane, delay=900)
        assert lane.next_retry_at == T0 + timedelta(minutes=15)

    def test_backoff_grows(self) -> None:
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane)
        lane.begin_dispatch(T0)
        fail(lane)
        assert lane.next_retry_at == T0 + timedelta(minutes=10)

    def test_retry_budget_exhausted(self) -> None:
        """Should fail the lane on the third failure and stop counting."""
        lane = make_lane()
        results = []
        for _ in range(3):
            lane.begin_dispatch(T0)
            results.append(fail(lane))

        assert results == [False, False, True]
        assert lane.state is LaneState.FAILED
        assert lane.retry_count == 3
        assert lane.auto_retry_enabled is False

        assert fail(lane, can_retry=True) is False
        assert lane.retry_count == 3
        assert lane.consecutive_failures == 3

    def test_non_retryable_failure(self) -> None:
        """Should fail immediately on a non-retryable kind."""
        lane = make_lane()
        lane.begin_dispatch(T0)

        assert fail(lane, can_retry=False, delay=0) is True
        assert lane.state is LaneState.FAILED
        assert lane.retry_count == 1
        assert lane.next_retry_at is None
        assert lane.auto_retry_enabled is False

    def test_auto_retry_disabled_fails(self) -> None:
        lane = make_lane(auto_retry_enabled=False)
        lane.begin_dispatch(T0)
        assert fail(lane) is True
        assert lane.state is LaneState.FAILED


class TestOperatorActions:
    """Tests for reset and auto-retry toggling."""

    def test_reset_failed_lane(self) -> None:
        """Should return a failed lane to pending."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane, can_retry=False)

        lane.reset(T0 + timedelta(minutes=1))

        assert lane.state is LaneState.PENDING
        assert lane.retry_count == 0
        assert lane.error_message is None
        assert lane.auto_retry_enabled is True
        assert lane.consecutive_failures == 1
        lane.begin_dispatch(T0)
        assert lane.state is LaneState.RUNNING

    @pytest.mark.parametrize("state", [LaneState.IDLE, LaneState.RUNNING, LaneState.COMPLETED])
    def test_reset_rejected(self, state: LaneState) -> None:
        """Should reject resets of healthy lanes."""
        lane = make_lane(state=state)
        with pytest.raises(InvalidTransitionError):
            lane.reset(T0)

    def test_enable_auto_retry_on_failed_lane(self) -> None:
        """Should schedule a retry when budget remains."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane, can_retry=False)

        lane.set_auto_retry(True, T0, RETRY)

        assert lane.state is LaneState.RETRY_PENDING
        assert lane.next_retry_at == T0 + timedelta(minutes=5)
        assert lane.auto_retry_enabled is True

    def test_enable_auto_retry_exhausted(self) -> None:
        """Should require a reset once retries are exhausted."""
        lane = make_lane(max_retries=1)
        lane.begin_dispatch(T0)
        fail(lane)
        assert lane.state is LaneState.FAILED

        with pytest.raises(InvalidTransitionError):
            lane.set_auto_retry(True, T0, RETRY)

    def test_disable_auto_retry_on_retry_pending(self) -> None:
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane)

        lane.set_auto_retry(False, T0, RETRY)

        assert lane.state is LaneState.FAILED
        assert lane.next_retry_at is None
        assert lane.is_retry_due(T0 + timedelta(days=1)) is False


class TestRetryDue:
    def test_due_after_delay(self) -> None:
        """Should be due once next_retry_at has passed."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        fail(lane)

        assert lane.is_retry_due(T0) is False
        assert lane.is_retry_due(T0 + timedelta(minutes=5)) is True

    def test_not_due_when_healthy(self) -> None:
        lane = make_lane()
        assert lane.is_retry_due(T0) is False


class TestHealthOverlay:
    """Tests for the Degraded overlay."""

    def test_degrades_at_threshold(self) -> None:
        """Should degrade at the configured failure rate."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        assert lane.apply_health(0.30, HealthConfig(), T0) == DEGRADED
        assert lane.state is LaneState.DEGRADED

    def test_success_keeps_degraded(self) -> None:
        lane = make_lane(state=LaneState.DEGRADED)
        lane.begin_dispatch(T0)
        lane.record_success(T0)
        assert lane.state is LaneState.DEGRADED

    def test_recovers_to_idle_or_running(self) -> None:
        """Should leave Degraded below the recovery threshold."""
        idle = make_lane(state=LaneState.DEGRADED)
        assert idle.apply_health(0.04, HealthConfig(), T0) == RECOVERED
        assert idle.state is LaneState.IDLE

        busy = make_lane(state=LaneState.DEGRADED)
        busy.begin_dispatch(T0)
        assert busy.apply_health(0.0, HealthConfig(), T0) == RECOVERED
        assert busy.state is LaneState.RUNNING

    def test_hysteresis(self) -> None:
        """Should stay degraded between the two thresholds."""
        lane = make_lane(state=LaneState.DEGRADED)
        assert lane.apply_health(0.10, HealthConfig(), T0) is None
        assert lane.state is LaneState.DEGRADED

    @pytest.mark.parametrize("state", [LaneState.FAILED, LaneState.RETRY_PENDING])
    def test_not_applied_to_retry_states(self, state: LaneState) -> None:
        lane = make_lane(state=state)
        assert lane.apply_health(0.9, HealthConfig(), T0) is None
        assert lane.state is state

    def test_too_few_samples(self) -> None:
        lane = make_lane()
        assert lane.apply_health(None, HealthConfig(), T0) is None


class TestHealthScore:
    """Tests for the derived health score."""

    def test_never_succeeded(self) -> None:
        """Should penalise lanes without a success."""
        assert make_lane().health_score(T0) == 50.0

    def test_recent_success(self) -> None:
        lane = make_lane()
        lane.begin_dispatch(T0)
        lane.record_success(T0)
        assert lane.health_score(T0 + timedelta(hours=30)) == 100.0

    def test_stale_success(self) -> None:
        """Should subtract five points per whole day since the last success."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        lane.record_success(T0)
        assert lane.health_score(T0 + timedelta(days=3, hours=5)) == 85.0
        assert lane.health_score(T0 + timedelta(days=30)) == 60.0

    def test_failed_lane(self) -> None:
        """Should combine every penalty and clamp at zero."""
        lane = make_lane()
        lane.begin_dispatch(T0, records=4)
        lane.record_success(T0, records=1)
        lane.begin_dispatch(T0)
        fail(lane, can_retry=False)
        # success 20%, 1 retry (-10), failed (-20)
        assert lane.health_score(T0) == 0.0

    def test_monotonic_in_failures(self) -> None:
        """Should never rise as failures accumulate."""
        lane = make_lane()
        lane.begin_dispatch(T0)
        lane.record_success(T0)
        scores = [lane.health_score(T0)]
        for _ in range(3):
            lane.begin_dispatch(T0)
            fail(lane)
            scores.append(lane.health_score(T0))
        assert scores == sorted(scores, reverse=True)

    def test_snapshot(self) -> None:
        lane = make_lane()
        lane.begin_dispatch(T0, records=3, message_id="m1")
        lane.record_success(T0, records=2)
        snapshot = lane.snapshot(T0)
        assert snapshot.success_rate == 66.67
        assert snapshot.state is LaneState.COMPLETED
        assert snapshot.last_message_id == "m1"
