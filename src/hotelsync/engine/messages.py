"""Message history and error records.

MessageRecord tracks one message exchanged with the partner through its
processing states. ErrorRecord captures one classified failure until an
operator resolves it. Both are plain dataclasses; stores persist them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from hotelsync.core.types import Direction, ErrorKind, MessageKind, ProcessingState, Severity
from hotelsync.engine.errors import Classification, MessageStateError

# Allowed forward moves; FAILED is reachable from every non-terminal state
_NEXT_STATES: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.PENDING: frozenset(
        {ProcessingState.SENT, ProcessingState.RECEIVED, ProcessingState.PROCESSED}
    ),
    ProcessingState.SENT: frozenset({ProcessingState.RECEIVED, ProcessingState.PROCESSED}),
    ProcessingState.RECEIVED: frozenset({ProcessingState.PROCESSED}),
    ProcessingState.PROCESSED: frozenset(),
    ProcessingState.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class MessageRecord:
    """One message exchanged with the partner.

    Outbound messages move pending -> sent -> processed (received when the
    partner acknowledges asynchronously); inbound messages start at
    received. Any non-terminal state may move to failed. Once processed or
    failed, only processing_notes may change.
    """

    message_id: str
    direction: Direction
    kind: MessageKind
    property_id: str
    content_fingerprint: str
    parent_message_id: str | None = None
    batch_id: str | None = None
    state: ProcessingState = ProcessingState.PENDING
    is_duplicate: bool = False
    duplicate_of: str | None = None
    record_count: int = 1
    message_size: int | None = None
    processing_notes: str | None = None
    sent_at: datetime | None = None
    received_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def _advance(self, target: ProcessingState) -> None:
        if target is ProcessingState.FAILED:
            if self.is_terminal:
                raise MessageStateError(
                    f"Message {self.message_id} is already {self.state.value}; cannot mark failed"
                )
        elif target not in _NEXT_STATES[self.state]:
            raise MessageStateError(
                f"Message {self.message_id} cannot move from {self.state.value} to {target.value}"
            )
        self.state = target

    def mark_sent(self, now: datetime) -> None:
        self._advance(ProcessingState.SENT)
        self.sent_at = now

    def mark_received(self, now: datetime) -> None:
        self._advance(ProcessingState.RECEIVED)
        self.received_at = now

    def mark_processed(self, now: datetime) -> None:
        self._advance(ProcessingState.PROCESSED)
        self.processed_at = now

    def mark_failed(self, now: datetime, notes: str | None = None) -> None:
        self._advance(ProcessingState.FAILED)
        self.processed_at = now
        if notes:
            self.add_note(notes)

    def mark_duplicate(self, first_message_id: str) -> None:
        self.is_duplicate = True
        self.duplicate_of = first_message_id

    def add_note(self, note: str) -> None:
        """Append a line to processing_notes (allowed in every state)."""
        self.processing_notes = f"{self.processing_notes}\n{note}" if self.processing_notes else note


@dataclass
class ErrorRecord:
    """A classified failure awaiting (or after) operator resolution.

    Severity and can_retry are derived from the kind; they are stored so
    that operators can filter on them without re-deriving anything.
    """

    message_id: str
    property_id: str
    kind: MessageKind
    error_kind: ErrorKind
    severity: Severity
    can_retry: bool
    retry_delay_seconds: int
    requires_manual_intervention: bool
    message: str
    exception_type: str | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    @classmethod
    def from_classification(
        cls,
        classification: Classification,
        message_id: str,
        property_id: str,
        kind: MessageKind,
        now: datetime,
    ) -> ErrorRecord:
        """Build an error record for a classified failure."""
        return cls(
            message_id=message_id,
            property_id=property_id,
            kind=kind,
            error_kind=classification.kind,
            severity=classification.severity,
            can_retry=classification.can_retry,
            retry_delay_seconds=classification.retry_delay_seconds,
            requires_manual_intervention=classification.requires_manual_intervention,
            message=classification.message,
            exception_type=classification.exception_type,
            created_at=now,
        )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def resolve(self, now: datetime, notes: str | None = None) -> None:
        """Mark the error resolved.

        Raises:
            MessageStateError: If the error was already resolved.
        """
        if self.is_resolved:
            raise MessageStateError(f"Error {self.id} is already resolved")
        self.resolved_at = now
        self.resolution_notes = notes
