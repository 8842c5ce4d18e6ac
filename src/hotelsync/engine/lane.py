"""Per-(property, message kind) synchronization lane.

A lane owns the retry and health state of one property's message family.
All mutations go through the transition methods below; callers must hold
the lane's lock (see SyncOrchestrator) while calling them.

State machine:
    Idle/Completed -> Pending -> Running      dispatch begins
    Running -> Completed                      success
    Running -> RetryPending | Failed          failure (retry budget, kind)
    Failed/RetryPending -> Pending            operator reset
    * -> Degraded -> Running/Idle             sliding-window health overlay
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from hotelsync.core.config import HealthConfig, RetryConfig
from hotelsync.core.types import LaneState, MessageKind, ProcessingState
from hotelsync.engine.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

DEGRADED = "degraded"
RECOVERED = "recovered"


def backoff(
    retry_count: int,
    base: timedelta = timedelta(minutes=5),
    cap: timedelta = timedelta(minutes=60),
) -> timedelta:
    """Exponential retry delay: min(cap, base * 2^(n-1)).

    Args:
        retry_count: Number of failures so far (values below 1 count as 1).
        base: Delay after the first failure.
        cap: Upper bound.

    Returns:
        Delay before the next retry.
    """
    n = max(1, retry_count)
    # Cap the exponent so huge counts do not build enormous timedeltas
    return min(cap, base * (2 ** min(n - 1, 32)))


def failure_rate(outcomes: Sequence[ProcessingState], min_samples: int) -> float | None:
    """Failure rate over terminal message outcomes.

    Args:
        outcomes: Terminal states of recent outbound messages.
        min_samples: Minimum number of outcomes required.

    Returns:
        Fraction of failed outcomes, or None when there are too few samples.
    """
    if len(outcomes) < min_samples or not outcomes:
        return None
    failed = sum(1 for state in outcomes if state is ProcessingState.FAILED)
    return failed / len(outcomes)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class LaneSnapshot:
    """Read-only view of a lane for operators and dashboards."""

    property_id: str
    kind: MessageKind
    state: LaneState
    records_total: int
    records_processed: int
    retry_count: int
    max_retries: int
    consecutive_failures: int
    auto_retry_enabled: bool
    in_flight: bool
    success_rate: float
    health_score: float
    error_message: str | None
    last_message_id: str | None
    last_attempt_at: datetime | None
    last_success_at: datetime | None
    next_retry_at: datetime | None
    updated_at: datetime


@dataclass
class SyncLane:
    """Retry and health state of one (property, message kind) pair."""

    property_id: str
    kind: MessageKind
    state: LaneState = LaneState.IDLE
    records_total: int = 0
    records_processed: int = 0
    retry_count: int = 0
    max_retries: int = 3
    consecutive_failures: int = 0
    auto_retry_enabled: bool = True
    in_flight_records: int = 0
    error_message: str | None = None
    last_message_id: str | None = None
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    next_retry_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[str, MessageKind]:
        return (self.property_id, self.kind)

    @property
    def in_flight(self) -> bool:
        return self.in_flight_records > 0

    @property
    def success_rate(self) -> float:
        """Processed records as a percentage of dispatched records (0-100)."""
        if self.records_total <= 0:
            return 100.0
        return min(100.0, self.records_processed / self.records_total * 100)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def _set_state(self, state: LaneState, now: datetime) -> None:
        if state is not self.state:
            logger.info(
                "Lane %s/%s: %s -> %s", self.property_id, self.kind.value, self.state.value, state.value
            )
            self.state = state
        self.updated_at = now

    # === Transitions ===

    def begin_dispatch(self, now: datetime, records: int = 1, message_id: str | None = None) -> None:
        """Start a dispatch attempt.

        A Failed lane counts the attempt but keeps its state until an
        operator resets it.

        Args:
            now: Current time.
            records: Business records carried by the dispatch.
            message_id: MessageID being dispatched.
        """
        if self.state is LaneState.FAILED:
            logger.warning(
                "Lane %s/%s is failed; %s dispatched without a transition until an operator reset",
                self.property_id,
                self.kind.value,
                message_id,
            )
        elif self.state in (LaneState.IDLE, LaneState.COMPLETED):
            self._set_state(LaneState.PENDING, now)
        if self.state in (LaneState.PENDING, LaneState.RETRY_PENDING):
            self.next_retry_at = None
            self._set_state(LaneState.RUNNING, now)

        # Running and Degraded lanes accept concurrent dispatches as they are
        self.last_attempt_at = now
        self.records_total += records
        self.in_flight_records += records
        if message_id is not None:
            self.last_message_id = message_id
        self.updated_at = now

    def record_success(self, now: datetime, records: int = 1) -> None:
        """Apply a successful outcome.

        Late successes are absorbed: a Completed lane only gains counters and
        a Failed lane keeps its state until an operator resets it.
        """
        self.in_flight_records = max(0, self.in_flight_records - records)
        self.records_processed += records
        self.last_success_at = now

        if self.state is LaneState.FAILED:
            self.updated_at = now
            return

        self.consecutive_failures = 0
        self.retry_count = 0
        self.error_message = None
        self.next_retry_at = None
        if self.state is LaneState.DEGRADED:
            self.updated_at = now
        else:
            self._set_state(LaneState.COMPLETED, now)

    def record_failure(
        self,
        now: datetime,
        message: str,
        can_retry: bool,
        retry_delay_seconds: int,
        retry: RetryConfig,
        records: int = 1,
    ) -> bool:
        """Apply a failed outcome.

        Args:
            now: Current time.
            message: Human-readable failure message.
            can_retry: Whether the failure kind is retryable.
            retry_delay_seconds: Minimum delay recommended for the kind.
            retry: Backoff settings.
            records: Records carried by the failed dispatch.

        Returns:
            True when this failure moved the lane to Failed.
        """
        self.in_flight_records = max(0, self.in_flight_records - records)
        self.error_message = message

        if self.state is LaneState.FAILED:
            # Late failure against a failed lane changes no counters
            self.updated_at = now
            return False

        self.consecutive_failures += 1
        self.retry_count = min(self.retry_count + 1, self.max_retries)

        if can_retry and self.auto_retry_enabled and self.retry_count < self.max_retries:
            delay = max(
                backoff(
                    self.retry_count,
                    base=timedelta(minutes=retry.base_delay_minutes),
                    cap=timedelta(minutes=retry.max_delay_minutes),
                ),
                timedelta(seconds=retry_delay_seconds),
            )
            self.next_retry_at = now + delay
            self._set_state(LaneState.RETRY_PENDING, now)
            logger.warning(
                "Lane %s/%s: retry %d/%d scheduled at %s",
                self.property_id,
                self.kind.value,
                self.retry_count,
                self.max_retries,
                self.next_retry_at.isoformat(),
            )
            return False

        self.auto_retry_enabled = False
        self.next_retry_at = None
        self._set_state(LaneState.FAILED, now)
        return True

    def reset(self, now: datetime) -> None:
        """Operator reset of a Failed or RetryPending lane.

        Raises:
            InvalidTransitionError: If the lane is in any other state.
        """
        if self.state not in (LaneState.FAILED, LaneState.RETRY_PENDING):
            raise InvalidTransitionError("reset", self.state)
        self.retry_count = 0
        self.error_message = None
        self.next_retry_at = None
        self.auto_retry_enabled = True
        self._set_state(LaneState.PENDING, now)

    def set_auto_retry(self, enabled: bool, now: datetime, retry: RetryConfig) -> None:
        """Toggle automatic retries.

        Enabling on a Failed lane with retry budget left schedules a retry;
        disabling on a RetryPending lane leaves it Failed.

        Raises:
            InvalidTransitionError: If enabling on a Failed lane whose retry
                budget is exhausted (it needs a reset instead).
        """
        if enabled:
            if self.state is LaneState.FAILED:
                if self.retries_exhausted:
                    raise InvalidTransitionError("enable auto-retry on", self.state)
                self.next_retry_at = now + backoff(
                    self.retry_count,
                    base=timedelta(minutes=retry.base_delay_minutes),
                    cap=timedelta(minutes=retry.max_delay_minutes),
                )
                self._set_state(LaneState.RETRY_PENDING, now)
            self.auto_retry_enabled = True
        else:
            self.auto_retry_enabled = False
            self.next_retry_at = None
            if self.state is LaneState.RETRY_PENDING:
                self._set_state(LaneState.FAILED, now)
        self.updated_at = now

    def apply_health(self, rate: float | None, health: HealthConfig, now: datetime) -> str | None:
        """Enter or leave Degraded based on the sliding-window failure rate.

        Args:
            rate: Failure rate of the window, or None if too few samples.
            health: Thresholds.
            now: Current time.

        Returns:
            DEGRADED or RECOVERED when the overlay changed, None otherwise.
        """
        if rate is None or self.state in (LaneState.FAILED, LaneState.RETRY_PENDING):
            return None
        if self.state is not LaneState.DEGRADED and rate >= health.degrade_threshold:
            self._set_state(LaneState.DEGRADED, now)
            return DEGRADED
        if self.state is LaneState.DEGRADED and rate < health.recover_threshold:
            self._set_state(LaneState.RUNNING if self.in_flight else LaneState.IDLE, now)
            return RECOVERED
        return None

    # === Queries ===

    def is_retry_due(self, now: datetime) -> bool:
        return (
            self.state in (LaneState.RETRY_PENDING, LaneState.FAILED)
            and self.auto_retry_enabled
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )

    def health_score(self, now: datetime) -> float:
        """Derived health (0-100). Penalties apply in order to the running score."""
        score = 100.0
        score = min(score, self.success_rate)
        score -= min(30, self.retry_count * 10)
        if self.last_success_at is None:
            score -= 50
        else:
            days = (now - self.last_success_at).days
            if days > 1:
                score -= min(40, days * 5)
        if self.state is LaneState.FAILED:
            score -= 20
        return round(max(0.0, min(100.0, score)), 2)

    def snapshot(self, now: datetime) -> LaneSnapshot:
        return LaneSnapshot(
            property_id=self.property_id,
            kind=self.kind,
            state=self.state,
            records_total=self.records_total,
            records_processed=self.records_processed,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            consecutive_failures=self.consecutive_failures,
            auto_retry_enabled=self.auto_retry_enabled,
            in_flight=self.in_flight,
            success_rate=round(self.success_rate, 2),
            health_score=self.health_score(now),
            error_message=self.error_message,
            last_message_id=self.last_message_id,
            last_attempt_at=self.last_attempt_at,
            last_success_at=self.last_success_at,
            next_retry_at=self.next_retry_at,
            updated_at=self.updated_at,
        )
