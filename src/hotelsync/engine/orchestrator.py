"""Synchronization orchestrator.

This module provides:
- SyncOrchestrator: facade used by producers to dispatch messages and report
  outcomes, and by operators to inspect and reset lanes
- LaneLocks: per-lane in-process locks
- Escalation: notification handed to registered escalation handlers

Control flow for one outbound message:
1. begin_dispatch: ledger check, MessageRecord created, lane -> Running
2. mark_sent once the transport accepted the payload
3. report_outcome: success transition, or classify -> ErrorRecord -> failure
   transition, then the sliding-window health check

Every lane mutation runs under the lane's in-process lock and inside the
store's lane transaction, together with the message and error records it
depends on, so transitions of one lane are serialized and a failure leaves
the lane untouched.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from hotelsync.core.config import EngineConfig
from hotelsync.core.types import (
    Direction,
    LaneState,
    MessageKind,
    RateOperation,
    Severity,
)
from hotelsync.engine.dedup import DeduplicationLedger, MemoryDedupCache
from hotelsync.engine.errors import (
    Classification,
    DuplicateMessageError,
    ErrorClassifier,
    FailureSignal,
    UnknownLaneError,
    UnknownMessageError,
)
from hotelsync.engine.lane import DEGRADED, LaneSnapshot, failure_rate
from hotelsync.engine.messages import ErrorRecord, MessageRecord
from hotelsync.engine.rates import RateEntry, RatePolicy, RateResolver
from hotelsync.engine.store import SyncStore

logger = logging.getLogger(__name__)

LaneKey = tuple[str, MessageKind]


def utcnow() -> datetime:
    return datetime.now(UTC)


class EscalationReason(str, Enum):
    """Why an escalation was raised."""

    DEGRADED = "degraded"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    LANE_FAILED = "lane_failed"
    CRITICAL_ERROR = "critical_error"


@dataclass(frozen=True)
class Escalation:
    """Notification passed to escalation handlers."""

    reason: EscalationReason
    lane: LaneSnapshot
    message: str
    error: ErrorRecord | None = None


EscalationHandler = Callable[[Escalation], None]


@dataclass(frozen=True)
class DispatchDecision:
    """Result of begin_dispatch.

    Attributes:
        proceed: Always True; duplicates and Failed lanes are flagged in
            the other fields, never blocked.
        is_duplicate: The payload repeats content already sent in the TTL.
        first_message_id: MessageID that first carried the content.
        lane: Lane snapshot after the transition.
    """

    proceed: bool
    is_duplicate: bool
    first_message_id: str | None
    lane: LaneSnapshot


class LaneLocks:
    """Lazily created re-entrant lock per lane key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[LaneKey, threading.RLock] = {}

    def get(self, key: LaneKey) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, property_id: str, kind: MessageKind) -> Iterator[None]:
        with self.get((property_id, kind)):
            yield


class SyncOrchestrator:
    """Facade over lanes, the ledger, the classifier and the rate resolver.

    Usage:
        store = MemoryStore()
        orchestrator = SyncOrchestrator(store)

        decision = orchestrator.begin_dispatch("42", MessageKind.INVENTORY, fp, "msg-1")
        if decision.is_duplicate:
            ...  # annotate, the payload is still sent
        orchestrator.report_outcome("42", MessageKind.INVENTORY, "msg-1", success=True)
    """

    def __init__(
        self,
        store: SyncStore,
        ledger: DeduplicationLedger | None = None,
        classifier: ErrorClassifier | None = None,
        resolver: RateResolver | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Lane, message and error persistence.
            ledger: Deduplication ledger (in-memory when omitted).
            classifier: Failure classifier.
            resolver: Linked-rate resolver (tie-break from config when omitted).
            config: Engine configuration.
            clock: Source of the current UTC time (injectable for tests).
        """
        self._config = config or EngineConfig()
        self._store = store
        self._ledger = ledger or DeduplicationLedger(
            MemoryDedupCache(), ttl_seconds=self._config.dedup.ttl_seconds
        )
        self._classifier = classifier or ErrorClassifier()
        self._resolver = resolver or RateResolver(tie_break=self._config.rates.tie_break)
        self._clock = clock
        self._locks = LaneLocks()
        self._handlers: list[EscalationHandler] = []

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> SyncStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    def add_escalation_handler(self, handler: EscalationHandler) -> None:
        """Register a callable invoked on escalations.

        Handlers run synchronously after the lane transition is stored;
        exceptions they raise are logged and never reach the caller.
        """
        self._handlers.append(handler)

    # === Producer operations ===

    def begin_dispatch(
        self,
        property_id: str,
        kind: MessageKind,
        fingerprint: str,
        message_id: str,
        parent_message_id: str | None = None,
        batch_id: str | None = None,
        records: int = 1,
        message_size: int | None = None,
    ) -> DispatchDecision:
        """Start dispatching an outbound message.

        Consults the deduplication ledger, then records the message and moves
        the lane to Running in one lane transaction. Duplicates are flagged,
        never blocked. A Failed lane counts the attempt but stays Failed
        until an operator resets it.

        Args:
            property_id: Property the message belongs to.
            kind: Message kind.
            fingerprint: Content fingerprint of the serialized payload.
            message_id: Unique MessageID.
            parent_message_id: MessageID this message answers or retries.
            batch_id: Batch the message belongs to.
            records: Business records carried by the message.
            message_size: Payload size in bytes, when known.

        Returns:
            DispatchDecision; proceed is always True.

        Raises:
            DuplicateMessageError: If message_id was already recorded. A
                retry must carry a new MessageID and name the failed one as
                parent_message_id. Nothing is changed.
        """
        now = self.now()
        with self._locks.hold(property_id, kind):
            if self._store.get_message(message_id) is not None:
                raise DuplicateMessageError(message_id)

            dedup = self._ledger.check_and_record(fingerprint, message_id)
            record = MessageRecord(
                message_id=message_id,
                direction=Direction.OUTBOUND,
                kind=kind,
                property_id=property_id,
                content_fingerprint=fingerprint,
                parent_message_id=parent_message_id,
                batch_id=batch_id,
                record_count=records,
                message_size=message_size,
                created_at=now,
            )
            if dedup.first_message_id is not None:
                record.mark_duplicate(dedup.first_message_id)
                record.add_note(f"Duplicate of message {dedup.first_message_id}")

            with self._store.lane_transaction(property_id, kind, self._config.retry.max_retries) as lane:
                self._store.add_message(record)
                lane.begin_dispatch(now, records=records, message_id=message_id)
                if record.duplicate_of is not None:
                    lane.error_message = (
                        f"Duplicate content: message {message_id} repeats {record.duplicate_of}"
                    )
                snapshot = lane.snapshot(now)

        logger.debug("Dispatch %s started on lane %s/%s", message_id, property_id, kind.value)
        return DispatchDecision(
            proceed=True,
            is_duplicate=dedup.is_duplicate,
            first_message_id=dedup.first_message_id,
            lane=snapshot,
        )

    def mark_sent(self, message_id: str) -> MessageRecord:
        """Record that the transport accepted an outbound message."""
        return self._advance_message(message_id, MessageRecord.mark_sent)

    def mark_received(self, message_id: str) -> MessageRecord:
        """Record that the partner acknowledged an outbound message asynchronously."""
        return self._advance_message(message_id, MessageRecord.mark_received)

    def report_outcome(
        self,
        property_id: str,
        kind: MessageKind,
        message_id: str,
        success: bool,
        failure: BaseException | FailureSignal | str | None = None,
    ) -> LaneSnapshot:
        """Apply the outcome of a dispatch to its message and lane.

        The message update, its error record and the lane transition share
        one lane transaction, so a repeated report is seen as terminal and
        ignored.

        Args:
            property_id: Property of the lane.
            kind: Message kind of the lane.
            message_id: MessageID whose outcome is reported.
            success: Whether the partner accepted the message.
            failure: Failure description when success is False.

        Returns:
            Lane snapshot after the transition.

        Raises:
            UnknownMessageError: If message_id was never recorded.
        """
        now = self.now()
        classification: Classification | None = None
        error: ErrorRecord | None = None
        with self._locks.hold(property_id, kind):
            with self._store.lane_transaction(property_id, kind, self._config.retry.max_retries) as lane:
                record = self._require_message(message_id)
                if record.is_terminal:
                    logger.warning(
                        "Outcome for %s already recorded as %s; ignoring", message_id, record.state.value
                    )
                    return lane.snapshot(now)

                if success:
                    record.mark_processed(now)
                else:
                    classification = self._classifier.classify(
                        failure if failure is not None else "Dispatch failed"
                    )
                    record.mark_failed(now, notes=f"{classification.kind.value}: {classification.message}")
                    error = self._store.add_error(
                        ErrorRecord.from_classification(classification, message_id, property_id, kind, now)
                    )
                self._store.update_message(record)

                outcomes = self._store.recent_outcomes(property_id, kind, self._config.health.window_size)
                rate = failure_rate(outcomes, self._config.health.min_samples)
                moved_to_failed = False
                if classification is None:
                    lane.record_success(now, records=record.record_count)
                else:
                    moved_to_failed = lane.record_failure(
                        now,
                        message=classification.message,
                        can_retry=classification.can_retry,
                        retry_delay_seconds=classification.retry_delay_seconds,
                        retry=self._config.retry,
                        records=record.record_count,
                    )
                health_change = lane.apply_health(rate, self._config.health, now)
                consecutive = lane.consecutive_failures
                snapshot = lane.snapshot(now)

        if classification is not None:
            self._escalate_failure(snapshot, classification, error, moved_to_failed, consecutive)
        if health_change == DEGRADED:
            self._escalate(
                Escalation(
                    reason=EscalationReason.DEGRADED,
                    lane=snapshot,
                    message=f"Failure rate {rate:.0%} over the last {len(outcomes)} messages",
                )
            )
        return snapshot

    def record_inbound(
        self,
        property_id: str,
        kind: MessageKind,
        message_id: str,
        fingerprint: str,
        parent_message_id: str | None = None,
        message_size: int | None = None,
    ) -> MessageRecord:
        """Record a message received from the partner.

        Inbound messages start in the received state and are checked
        against the ledger like outbound ones. They do not move the lane.
        """
        now = self.now()
        dedup = self._ledger.check_and_record(fingerprint, message_id)
        record = MessageRecord(
            message_id=message_id,
            direction=Direction.INBOUND,
            kind=kind,
            property_id=property_id,
            content_fingerprint=fingerprint,
            parent_message_id=parent_message_id,
            message_size=message_size,
            created_at=now,
        )
        record.mark_received(now)
        if dedup.is_duplicate and dedup.first_message_id:
            record.mark_duplicate(dedup.first_message_id)
            record.add_note(f"Duplicate of message {dedup.first_message_id}")
        self._store.add_message(record)
        logger.info("Inbound %s message %s recorded for property %s", kind.value, message_id, property_id)
        return record

    def finish_inbound(self, message_id: str, success: bool, notes: str | None = None) -> MessageRecord:
        """Mark an inbound message processed or failed."""

        def finish(record: MessageRecord, now: datetime) -> None:
            if success:
                record.mark_processed(now)
                if notes:
                    record.add_note(notes)
            else:
                record.mark_failed(now, notes=notes)

        return self._advance_message(message_id, finish)

    def is_retry_due(self, property_id: str, kind: MessageKind) -> bool:
        """Whether the lane waits for a retry whose time has come."""
        lane = self._store.get_lane(property_id, kind)
        return lane is not None and lane.is_retry_due(self.now())

    def due_lanes(self) -> list[LaneSnapshot]:
        """Snapshots of every lane whose retry is due."""
        now = self.now()
        lanes = self._store.list_lanes(states=(LaneState.RETRY_PENDING, LaneState.FAILED))
        return [lane.snapshot(now) for lane in lanes if lane.is_retry_due(now)]

    def rate_policy(self, operation: RateOperation) -> RatePolicy:
        """Build the linked-rate policy for an operation from configuration."""
        return RatePolicy(
            operation=operation,
            external_handles_linked=self._config.rates.external_handles_linked,
            partner_supports_linked=self._config.rates.partner_supports_linked,
        )

    def resolve_rates(self, batch: Sequence[RateEntry], policy: RatePolicy) -> list[RateEntry]:
        """Resolve a rate batch under a linked-rate policy."""
        return self._resolver.resolve(batch, allow_linked=policy.allow_linked, is_creation=policy.is_creation)

    # === Operator operations ===

    def lane_snapshot(self, property_id: str, kind: MessageKind) -> LaneSnapshot | None:
        lane = self._store.get_lane(property_id, kind)
        return lane.snapshot(self.now()) if lane is not None else None

    def list_snapshots(
        self,
        states: Iterable[LaneState] | None = None,
        property_id: str | None = None,
    ) -> list[LaneSnapshot]:
        now = self.now()
        return [lane.snapshot(now) for lane in self._store.list_lanes(states=states, property_id=property_id)]

    def reset_lane(self, property_id: str, kind: MessageKind) -> LaneSnapshot:
        """Operator reset of a Failed or RetryPending lane.

        Raises:
            UnknownLaneError: If the lane does not exist.
            InvalidTransitionError: If the lane is in another state.
        """
        self._require_lane(property_id, kind)
        now = self.now()
        with self._locks.hold(property_id, kind):
            with self._store.lane_transaction(property_id, kind, self._config.retry.max_retries) as lane:
                lane.reset(now)
                snapshot = lane.snapshot(now)
        logger.info("Lane %s/%s reset by operator", property_id, kind.value)
        return snapshot

    def set_auto_retry(self, property_id: str, kind: MessageKind, enabled: bool) -> LaneSnapshot:
        """Enable or disable automatic retries for a lane.

        Raises:
            UnknownLaneError: If the lane does not exist.
            InvalidTransitionError: If enabling on a Failed lane with no
                retries left.
        """
        self._require_lane(property_id, kind)
        now = self.now()
        with self._locks.hold(property_id, kind):
            with self._store.lane_transaction(property_id, kind, self._config.retry.max_retries) as lane:
                lane.set_auto_retry(enabled, now, self._config.retry)
                snapshot = lane.snapshot(now)
        logger.info(
            "Auto-retry %s for lane %s/%s", "enabled" if enabled else "disabled", property_id, kind.value
        )
        return snapshot

    def resolve_error(self, error_id: int, notes: str | None = None) -> ErrorRecord:
        """Mark an error record resolved."""
        record = self._store.resolve_error(error_id, self.now(), notes)
        logger.info("Error %d resolved", error_id)
        return record

    # === Internals ===

    def _require_message(self, message_id: str) -> MessageRecord:
        record = self._store.get_message(message_id)
        if record is None:
            raise UnknownMessageError(message_id)
        return record

    def _require_lane(self, property_id: str, kind: MessageKind) -> None:
        if self._store.get_lane(property_id, kind) is None:
            raise UnknownLaneError(property_id, kind)

    def _advance_message(
        self, message_id: str, transition: Callable[[MessageRecord, datetime], None]
    ) -> MessageRecord:
        """Apply a record transition under the lock of the record's lane."""
        record = self._require_message(message_id)
        with self._locks.hold(record.property_id, record.kind):
            record = self._require_message(message_id)
            transition(record, self.now())
            self._store.update_message(record)
        return record

    def _escalate_failure(
        self,
        snapshot: LaneSnapshot,
        classification: Classification,
        error: ErrorRecord | None,
        moved_to_failed: bool,
        consecutive: int,
    ) -> None:
        if classification.severity is Severity.CRITICAL:
            logger.critical(
                "Critical %s error on lane %s/%s: %s",
                classification.kind.value,
                snapshot.property_id,
                snapshot.kind.value,
                classification.message,
            )
            self._escalate(
                Escalation(EscalationReason.CRITICAL_ERROR, snapshot, classification.message, error)
            )
        if consecutive == self._config.health.escalation_threshold:
            self._escalate(
                Escalation(
                    EscalationReason.CONSECUTIVE_FAILURES,
                    snapshot,
                    f"{consecutive} consecutive failures",
                    error,
                )
            )
        if moved_to_failed:
            logger.error(
                "Lane %s/%s failed after %d attempt(s) (%s); operator reset required",
                snapshot.property_id,
                snapshot.kind.value,
                snapshot.retry_count,
                classification.kind.value,
            )
            self._escalate(Escalation(EscalationReason.LANE_FAILED, snapshot, classification.message, error))

    def _escalate(self, escalation: Escalation) -> None:
        logger.warning(
            "Escalation %s for lane %s/%s: %s",
            escalation.reason.value,
            escalation.lane.property_id,
            escalation.lane.kind.value,
            escalation.message,
        )
        for handler in list(self._handlers):
            try:
                handler(escalation)
            except Exception:
                logger.exception("Escalation handler %r failed", handler)
