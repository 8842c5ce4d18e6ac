"""Database using SQLAlchemy with SQLite.

This module provides:
- Database: SyncStore implementation (lanes, message history, error records)
- SqlDedupCache: deduplication ledger entries stored in the same database
- Periodic cleanup of old messages, resolved errors and expired dedup entries
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotelsync.core.types import (
    Direction,
    ErrorKind,
    LaneState,
    MessageKind,
    ProcessingState,
    Severity,
)
from hotelsync.engine.errors import DuplicateMessageError, UnknownErrorRecordError, UnknownMessageError
from hotelsync.engine.lane import SyncLane
from hotelsync.engine.messages import ErrorRecord, MessageRecord
from hotelsync.server.models import Base, DedupEntryRow, ErrorRecordRow, MessageRecordRow, SyncLaneRow

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _lane_from_row(row: SyncLaneRow) -> SyncLane:
    return SyncLane(
        property_id=row.property_id,
        kind=MessageKind(row.message_kind),
        state=LaneState(row.state),
        records_total=row.records_total,
        records_processed=row.records_processed,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        consecutive_failures=row.consecutive_failures,
        auto_retry_enabled=row.auto_retry_enabled,
        in_flight_records=row.in_flight_records,
        error_message=row.error_message,
        last_message_id=row.last_message_id,
        last_attempt_at=as_utc(row.last_attempt_at),
        last_success_at=as_utc(row.last_success_at),
        next_retry_at=as_utc(row.next_retry_at),
        created_at=as_utc(row.created_at) or datetime.now(UTC),
        updated_at=as_utc(row.updated_at) or datetime.now(UTC),
    )


def _copy_lane_to_row(lane: SyncLane, row: SyncLaneRow) -> None:
    row.state = lane.state.value
    row.records_total = lane.records_total
    row.records_processed = lane.records_processed
    row.retry_count = lane.retry_count
    row.max_retries = lane.max_retries
    row.consecutive_failures = lane.consecutive_failures
    row.auto_retry_enabled = lane.auto_retry_enabled
    row.in_flight_records = lane.in_flight_records
    row.error_message = lane.error_message
    row.last_message_id = lane.last_message_id
    row.last_attempt_at = lane.last_attempt_at
    row.last_success_at = lane.last_success_at
    row.next_retry_at = lane.next_retry_at
    row.updated_at = lane.updated_at


def _message_from_row(row: MessageRecordRow) -> MessageRecord:
    return MessageRecord(
        message_id=row.message_id,
        direction=Direction(row.direction),
        kind=MessageKind(row.message_kind),
        property_id=row.property_id,
        content_fingerprint=row.content_fingerprint,
        parent_message_id=row.parent_message_id,
        batch_id=row.batch_id,
        state=ProcessingState(row.state),
        is_duplicate=row.is_duplicate,
        duplicate_of=row.duplicate_of,
        record_count=row.record_count,
        message_size=row.message_size,
        processing_notes=row.processing_notes,
        sent_at=as_utc(row.sent_at),
        received_at=as_utc(row.received_at),
        processed_at=as_utc(row.processed_at),
        created_at=as_utc(row.created_at) or datetime.now(UTC),
    )


def _copy_message_to_row(record: MessageRecord, row: MessageRecordRow) -> None:
    # content_fingerprint, identity and lineage are immutable after insert
    row.state = record.state.value
    row.is_duplicate = record.is_duplicate
    row.duplicate_of = record.duplicate_of
    row.message_size = record.message_size
    row.processing_notes = record.processing_notes
    row.sent_at = record.sent_at
    row.received_at = record.received_at
    row.processed_at = record.processed_at


def _error_from_row(row: ErrorRecordRow) -> ErrorRecord:
    return ErrorRecord(
        id=row.id,
        message_id=row.message_id,
        property_id=row.property_id,
        kind=MessageKind(row.message_kind),
        error_kind=ErrorKind(row.error_kind),
        severity=Severity(row.severity),
        can_retry=row.can_retry,
        retry_delay_seconds=row.retry_delay_seconds,
        requires_manual_intervention=row.requires_manual_intervention,
        message=row.message,
        exception_type=row.exception_type,
        created_at=as_utc(row.created_at) or datetime.now(UTC),
        resolved_at=as_utc(row.resolved_at),
        resolution_notes=row.resolution_notes,
    )


class Database:
    """SQLAlchemy database for lanes, message history and error records.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Returned objects are detached engine dataclasses, never ORM rows.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        Base.metadata.create_all(self._engine)

        # SQLite ignores SELECT ... FOR UPDATE; serialize lane writers in-process
        self._lane_lock = threading.RLock()
        # Session of the lane transaction open on each thread
        self._local = threading.local()

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        """Session joining this thread's lane transaction, or a new one.

        Inside a lane transaction changes are only flushed; the lane
        transaction commits or rolls them back with the lane row.
        """
        current: Session | None = getattr(self._local, "session", None)
        if current is not None:
            yield current
            current.flush()
            return
        with self._session() as session:
            yield session
            session.commit()

    # === Lane operations ===

    def _lane_row_for_update(
        self, session: Session, property_id: str, kind: MessageKind, max_retries: int
    ) -> SyncLaneRow:
        stmt = (
            select(SyncLaneRow)
            .where(SyncLaneRow.property_id == property_id, SyncLaneRow.message_kind == kind.value)
            .with_for_update()
        )
        row = session.execute(stmt).scalar_one_or_none()
        if row is not None:
            return row

        now = datetime.now(UTC)
        row = SyncLaneRow(
            property_id=property_id,
            message_kind=kind.value,
            state=LaneState.IDLE.value,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        try:
            session.flush()
        except IntegrityError:
            # Another writer created the lane first
            session.rollback()
            row = session.execute(stmt).scalar_one()
        else:
            logger.info("Created lane %s/%s", property_id, kind.value)
        return row

    @contextmanager
    def lane_transaction(
        self, property_id: str, kind: MessageKind, max_retries: int = 3
    ) -> Iterator[SyncLane]:
        """Find-or-create a lane, lock it and persist changes on clean exit.

        Message and error operations called by the same thread inside the
        block share its session, so they commit or roll back with the lane.

        Args:
            property_id: Property of the lane.
            kind: Message kind of the lane.
            max_retries: MaxRetries for a newly created lane.

        Yields:
            Detached SyncLane; mutations are written back when the block
            exits without an exception.
        """
        with self._lane_lock, self._session() as session:
            row = self._lane_row_for_update(session, property_id, kind, max_retries)
            lane = _lane_from_row(row)
            self._local.session = session
            try:
                yield lane
            finally:
                self._local.session = None
            _copy_lane_to_row(lane, row)
            session.commit()

    def get_lane(self, property_id: str, kind: MessageKind) -> SyncLane | None:
        """Get a lane by property and message kind.

        Returns:
            SyncLane if found, None otherwise.
        """
        with self._session() as session:
            stmt = select(SyncLaneRow).where(
                SyncLaneRow.property_id == property_id, SyncLaneRow.message_kind == kind.value
            )
            row = session.execute(stmt).scalar_one_or_none()
            return _lane_from_row(row) if row is not None else None

    def list_lanes(
        self,
        states: Iterable[LaneState] | None = None,
        property_id: str | None = None,
    ) -> list[SyncLane]:
        """List lanes, optionally filtered by state and property.

        Returns:
            Lanes ordered by property and message kind.
        """
        with self._session() as session:
            stmt = select(SyncLaneRow).order_by(SyncLaneRow.property_id, SyncLaneRow.message_kind)
            if states is not None:
                stmt = stmt.where(SyncLaneRow.state.in_([state.value for state in states]))
            if property_id is not None:
                stmt = stmt.where(SyncLaneRow.property_id == property_id)
            return [_lane_from_row(row) for row in session.execute(stmt).scalars().all()]

    # === Message operations ===

    def add_message(self, record: MessageRecord) -> None:
        """Insert a message record.

        Raises:
            DuplicateMessageError: If the MessageID already exists.
        """
        with self._scope() as session:
            if session.get(MessageRecordRow, record.message_id) is not None:
                raise DuplicateMessageError(record.message_id)
            row = MessageRecordRow(
                message_id=record.message_id,
                parent_message_id=record.parent_message_id,
                batch_id=record.batch_id,
                direction=record.direction.value,
                message_kind=record.kind.value,
                property_id=record.property_id,
                content_fingerprint=record.content_fingerprint,
                record_count=record.record_count,
                created_at=record.created_at,
            )
            _copy_message_to_row(record, row)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateMessageError(record.message_id) from e

    def update_message(self, record: MessageRecord) -> None:
        """Persist the mutable fields of a message record.

        Raises:
            UnknownMessageError: If the MessageID does not exist.
        """
        with self._scope() as session:
            row = session.get(MessageRecordRow, record.message_id)
            if row is None:
                raise UnknownMessageError(record.message_id)
            _copy_message_to_row(record, row)

    def get_message(self, message_id: str) -> MessageRecord | None:
        with self._scope() as session:
            row = session.get(MessageRecordRow, message_id)
            return _message_from_row(row) if row is not None else None

    def list_messages(
        self,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        batch_id: str | None = None,
        fingerprint: str | None = None,
        limit: int = 100,
    ) -> list[MessageRecord]:
        """List message records, newest first."""
        with self._session() as session:
            stmt = select(MessageRecordRow).order_by(MessageRecordRow.created_at.desc()).limit(limit)
            if property_id is not None:
                stmt = stmt.where(MessageRecordRow.property_id == property_id)
            if kind is not None:
                stmt = stmt.where(MessageRecordRow.message_kind == kind.value)
            if batch_id is not None:
                stmt = stmt.where(MessageRecordRow.batch_id == batch_id)
            if fingerprint is not None:
                stmt = stmt.where(MessageRecordRow.content_fingerprint == fingerprint)
            return [_message_from_row(row) for row in session.execute(stmt).scalars().all()]

    def message_thread(self, message_id: str) -> list[MessageRecord]:
        """Get the full thread (root, replies and retries) containing a message.

        Raises:
            UnknownMessageError: If the MessageID does not exist.
        """
        with self._session() as session:
            current = session.get(MessageRecordRow, message_id)
            if current is None:
                raise UnknownMessageError(message_id)

            seen = {current.message_id}
            while current.parent_message_id and current.parent_message_id not in seen:
                parent = session.get(MessageRecordRow, current.parent_message_id)
                if parent is None:
                    break
                seen.add(parent.message_id)
                current = parent

            thread = {current.message_id: current}
            frontier = [current.message_id]
            while frontier:
                stmt = select(MessageRecordRow).where(MessageRecordRow.parent_message_id.in_(frontier))
                children = [
                    row for row in session.execute(stmt).scalars().all() if row.message_id not in thread
                ]
                for row in children:
                    thread[row.message_id] = row
                frontier = [row.message_id for row in children]

            records = [_message_from_row(row) for row in thread.values()]
        return sorted(records, key=lambda record: record.created_at)

    def recent_outcomes(self, property_id: str, kind: MessageKind, limit: int) -> list[ProcessingState]:
        """Terminal states of the lane's most recent outbound messages."""
        with self._scope() as session:
            stmt = (
                select(MessageRecordRow.state)
                .where(
                    MessageRecordRow.property_id == property_id,
                    MessageRecordRow.message_kind == kind.value,
                    MessageRecordRow.direction == Direction.OUTBOUND.value,
                    MessageRecordRow.state.in_(
                        [ProcessingState.PROCESSED.value, ProcessingState.FAILED.value]
                    ),
                )
                .order_by(MessageRecordRow.processed_at.desc(), MessageRecordRow.created_at.desc())
                .limit(limit)
            )
            return [ProcessingState(state) for state in session.execute(stmt).scalars().all()]

    # === Error operations ===

    def add_error(self, record: ErrorRecord) -> ErrorRecord:
        """Insert an error record.

        Returns:
            The stored record with its id assigned.
        """
        with self._scope() as session:
            row = ErrorRecordRow(
                message_id=record.message_id,
                property_id=record.property_id,
                message_kind=record.kind.value,
                error_kind=record.error_kind.value,
                severity=record.severity.value,
                can_retry=record.can_retry,
                retry_delay_seconds=record.retry_delay_seconds,
                requires_manual_intervention=record.requires_manual_intervention,
                message=record.message,
                exception_type=record.exception_type,
                created_at=record.created_at,
                resolved_at=record.resolved_at,
                resolution_notes=record.resolution_notes,
            )
            session.add(row)
            session.flush()
            return _error_from_row(row)

    def get_error(self, error_id: int) -> ErrorRecord | None:
        with self._session() as session:
            row = session.get(ErrorRecordRow, error_id)
            return _error_from_row(row) if row is not None else None

    def list_errors(
        self,
        unresolved_only: bool = False,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        limit: int = 100,
    ) -> list[ErrorRecord]:
        """List error records, newest first."""
        with self._session() as session:
            stmt = (
                select(ErrorRecordRow)
                .order_by(ErrorRecordRow.created_at.desc(), ErrorRecordRow.id.desc())
                .limit(limit)
            )
            if unresolved_only:
                stmt = stmt.where(ErrorRecordRow.resolved_at.is_(None))
            if property_id is not None:
                stmt = stmt.where(ErrorRecordRow.property_id == property_id)
            if kind is not None:
                stmt = stmt.where(ErrorRecordRow.message_kind == kind.value)
            return [_error_from_row(row) for row in session.execute(stmt).scalars().all()]

    def resolve_error(self, error_id: int, now: datetime, notes: str | None = None) -> ErrorRecord:
        """Mark an error record resolved.

        Raises:
            UnknownErrorRecordError: If the error does not exist.
            MessageStateError: If it was already resolved.
        """
        with self._session() as session:
            row = session.get(ErrorRecordRow, error_id)
            if row is None:
                raise UnknownErrorRecordError(error_id)
            record = _error_from_row(row)
            record.resolve(now, notes)
            row.resolved_at = record.resolved_at
            row.resolution_notes = record.resolution_notes
            session.commit()
            return record

    # === Maintenance ===

    def cleanup(self, older_than_days: int, now: datetime | None = None) -> dict[str, int]:
        """Delete old terminal messages, resolved errors and expired dedup entries.

        Messages still referenced by an unresolved error are kept.

        Args:
            older_than_days: Retention period.
            now: Current time (defaults to now).

        Returns:
            Number of deleted rows per table.
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=older_than_days)
        with self._session() as session:
            errors = session.execute(
                delete(ErrorRecordRow).where(
                    ErrorRecordRow.resolved_at.is_not(None), ErrorRecordRow.resolved_at < cutoff
                )
            ).rowcount
            unresolved = exists().where(
                ErrorRecordRow.message_id == MessageRecordRow.message_id,
                ErrorRecordRow.resolved_at.is_(None),
            )
            messages = session.execute(
                delete(MessageRecordRow).where(
                    MessageRecordRow.state.in_(
                        [ProcessingState.PROCESSED.value, ProcessingState.FAILED.value]
                    ),
                    MessageRecordRow.created_at < cutoff,
                    ~unresolved,
                )
            ).rowcount
            dedup = session.execute(delete(DedupEntryRow).where(DedupEntryRow.expires_at <= now)).rowcount
            session.commit()

        counts = {"messages": messages or 0, "errors": errors or 0, "dedup_entries": dedup or 0}
        if any(counts.values()):
            logger.info(
                "Cleanup removed %d message(s), %d error(s), %d dedup entr(ies)",
                counts["messages"],
                counts["errors"],
                counts["dedup_entries"],
            )
        else:
            logger.debug("Cleanup: nothing older than %d days", older_than_days)
        return counts


class SqlDedupCache:
    """DedupCache stored in the dedup_entries table.

    get_or_set relies on the fingerprint primary key: of two concurrent
    inserts only one commits, the other reads the winner's MessageID.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = lambda: datetime.now(UTC)) -> None:
        self._db = db
        self._clock = clock

    def get_or_set(self, key: str, value: str, ttl_seconds: int) -> str | None:
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)
        entry = select(DedupEntryRow.message_id, DedupEntryRow.expires_at).where(
            DedupEntryRow.fingerprint == key
        )
        with self._db._session() as session:
            existing = session.execute(entry).one_or_none()
            if existing is not None:
                if as_utc(existing.expires_at) > now:  # type: ignore[operator]
                    return existing.message_id
                # Only an expired entry is replaced; a fresh one from a racing writer survives
                session.execute(
                    delete(DedupEntryRow).where(
                        DedupEntryRow.fingerprint == key, DedupEntryRow.expires_at <= now
                    )
                )
            session.add(DedupEntryRow(fingerprint=key, message_id=value, expires_at=expires_at))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                winner = session.execute(entry).one_or_none()
                if winner is None:
                    raise
                return winner.message_id
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        with self._db._session() as session:
            row = session.get(DedupEntryRow, key)
            if row is None:
                session.add(DedupEntryRow(fingerprint=key, message_id=value, expires_at=expires_at))
            else:
                row.message_id = value
                row.expires_at = expires_at
            session.commit()

    def delete(self, key: str) -> None:
        with self._db._session() as session:
            session.execute(delete(DedupEntryRow).where(DedupEntryRow.fingerprint == key))
            session.commit()
