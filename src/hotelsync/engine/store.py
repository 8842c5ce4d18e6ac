"""Persistence contract for the sync engine.

SyncStore is implemented by MemoryStore (below) and by the SQLAlchemy
Database in hotelsync.server.database. Stores hand out copies: mutating a
returned object never changes stored state until it is written back.
"""

from __future__ import annotations

import copy
import itertools
import threading
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime, timedelta
from typing import Protocol

from hotelsync.core.types import Direction, LaneState, MessageKind, ProcessingState
from hotelsync.engine.errors import DuplicateMessageError, UnknownErrorRecordError, UnknownMessageError
from hotelsync.engine.lane import SyncLane
from hotelsync.engine.messages import ErrorRecord, MessageRecord


class SyncStore(Protocol):
    """Storage operations used by the orchestrator and operator surfaces."""

    def lane_transaction(
        self, property_id: str, kind: MessageKind, max_retries: int = 3
    ) -> AbstractContextManager[SyncLane]:
        """Find-or-create a lane and write it back when the block exits cleanly.

        The lane row is locked for the duration of the block where the
        backend supports it. Message and error writes made by the same
        thread inside the block join the transaction: an exception inside
        the block discards them together with the lane changes.
        """
        ...

    def get_lane(self, property_id: str, kind: MessageKind) -> SyncLane | None: ...

    def list_lanes(
        self,
        states: Iterable[LaneState] | None = None,
        property_id: str | None = None,
    ) -> list[SyncLane]: ...

    def add_message(self, record: MessageRecord) -> None: ...

    def update_message(self, record: MessageRecord) -> None: ...

    def get_message(self, message_id: str) -> MessageRecord | None: ...

    def list_messages(
        self,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        batch_id: str | None = None,
        fingerprint: str | None = None,
        limit: int = 100,
    ) -> list[MessageRecord]: ...

    def message_thread(self, message_id: str) -> list[MessageRecord]: ...

    def recent_outcomes(
        self, property_id: str, kind: MessageKind, limit: int
    ) -> list[ProcessingState]: ...

    def add_error(self, record: ErrorRecord) -> ErrorRecord: ...

    def get_error(self, error_id: int) -> ErrorRecord | None: ...

    def list_errors(
        self,
        unresolved_only: bool = False,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        limit: int = 100,
    ) -> list[ErrorRecord]: ...

    def resolve_error(self, error_id: int, now: datetime, notes: str | None = None) -> ErrorRecord: ...

    def cleanup(self, older_than_days: int, now: datetime | None = None) -> dict[str, int]: ...


def thread_root(records: dict[str, MessageRecord], message_id: str) -> str:
    """Follow parent links up to the first message of a thread."""
    seen = {message_id}
    current = records[message_id]
    while current.parent_message_id and current.parent_message_id in records:
        if current.parent_message_id in seen:
            break
        seen.add(current.parent_message_id)
        current = records[current.parent_message_id]
    return current.message_id


class MemoryStore:
    """In-process SyncStore for tests and single-process runs.

    A single re-entrant lock guards every collection; copies go in and out
    so callers cannot mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._lanes: dict[tuple[str, MessageKind], SyncLane] = {}
        self._messages: dict[str, MessageRecord] = {}
        self._errors: dict[int, ErrorRecord] = {}
        self._error_ids = itertools.count(1)

    # === Lanes ===

    @contextmanager
    def lane_transaction(
        self, property_id: str, kind: MessageKind, max_retries: int = 3
    ) -> Iterator[SyncLane]:
        with self._lock:
            stored = self._lanes.get((property_id, kind))
            lane = (
                copy.deepcopy(stored)
                if stored is not None
                else SyncLane(property_id=property_id, kind=kind, max_retries=max_retries)
            )
            messages, errors = dict(self._messages), dict(self._errors)
            try:
                yield lane
            except BaseException:
                # Message and error writes made inside the block go with the lane
                self._messages, self._errors = messages, errors
                raise
            self._lanes[(property_id, kind)] = copy.deepcopy(lane)

    def get_lane(self, property_id: str, kind: MessageKind) -> SyncLane | None:
        with self._lock:
            lane = self._lanes.get((property_id, kind))
            return copy.deepcopy(lane) if lane is not None else None

    def list_lanes(
        self,
        states: Iterable[LaneState] | None = None,
        property_id: str | None = None,
    ) -> list[SyncLane]:
        wanted = set(states) if states is not None else None
        with self._lock:
            lanes = [
                copy.deepcopy(lane)
                for lane in self._lanes.values()
                if (wanted is None or lane.state in wanted)
                and (property_id is None or lane.property_id == property_id)
            ]
        return sorted(lanes, key=lambda lane: (lane.property_id, lane.kind.value))

    # === Messages ===

    def add_message(self, record: MessageRecord) -> None:
        with self._lock:
            if record.message_id in self._messages:
                raise DuplicateMessageError(record.message_id)
            self._messages[record.message_id] = copy.deepcopy(record)

    def update_message(self, record: MessageRecord) -> None:
        with self._lock:
            if record.message_id not in self._messages:
                raise UnknownMessageError(record.message_id)
            self._messages[record.message_id] = copy.deepcopy(record)

    def get_message(self, message_id: str) -> MessageRecord | None:
        with self._lock:
            record = self._messages.get(message_id)
            return copy.deepcopy(record) if record is not None else None

    def list_messages(
        self,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        batch_id: str | None = None,
        fingerprint: str | None = None,
        limit: int = 100,
    ) -> list[MessageRecord]:
        with self._lock:
            records = [
                copy.deepcopy(record)
                for record in self._messages.values()
                if (property_id is None or record.property_id == property_id)
                and (kind is None or record.kind is kind)
                and (batch_id is None or record.batch_id == batch_id)
                and (fingerprint is None or record.content_fingerprint == fingerprint)
            ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[:limit]

    def message_thread(self, message_id: str) -> list[MessageRecord]:
        with self._lock:
            if message_id not in self._messages:
                raise UnknownMessageError(message_id)
            root = thread_root(self._messages, message_id)
            thread_ids = {root}
            frontier = [root]
            while frontier:
                parent = frontier.pop()
                for record in self._messages.values():
                    if record.parent_message_id == parent and record.message_id not in thread_ids:
                        thread_ids.add(record.message_id)
                        frontier.append(record.message_id)
            thread = [copy.deepcopy(self._messages[mid]) for mid in thread_ids]
        return sorted(thread, key=lambda record: record.created_at)

    def recent_outcomes(
        self, property_id: str, kind: MessageKind, limit: int
    ) -> list[ProcessingState]:
        with self._lock:
            terminal = [
                record
                for record in self._messages.values()
                if record.property_id == property_id
                and record.kind is kind
                and record.direction is Direction.OUTBOUND
                and record.is_terminal
            ]
        terminal.sort(key=lambda record: record.processed_at or record.created_at, reverse=True)
        return [record.state for record in terminal[:limit]]

    # === Errors ===

    def add_error(self, record: ErrorRecord) -> ErrorRecord:
        with self._lock:
            stored = copy.deepcopy(record)
            stored.id = next(self._error_ids)
            self._errors[stored.id] = stored
            return copy.deepcopy(stored)

    def get_error(self, error_id: int) -> ErrorRecord | None:
        with self._lock:
            record = self._errors.get(error_id)
            return copy.deepcopy(record) if record is not None else None

    def list_errors(
        self,
        unresolved_only: bool = False,
        property_id: str | None = None,
        kind: MessageKind | None = None,
        limit: int = 100,
    ) -> list[ErrorRecord]:
        with self._lock:
            records = [
                copy.deepcopy(record)
                for record in self._errors.values()
                if (not unresolved_only or not record.is_resolved)
                and (property_id is None or record.property_id == property_id)
                and (kind is None or record.kind is kind)
            ]
        records.sort(key=lambda record: (record.created_at, record.id or 0), reverse=True)
        return records[:limit]

    def resolve_error(self, error_id: int, now: datetime, notes: str | None = None) -> ErrorRecord:
        with self._lock:
            stored = self._errors.get(error_id)
            if stored is None:
                raise UnknownErrorRecordError(error_id)
            record = copy.deepcopy(stored)
            record.resolve(now, notes)
            self._errors[error_id] = record
            return copy.deepcopy(record)

    # === Maintenance ===

    def cleanup(self, older_than_days: int, now: datetime | None = None) -> dict[str, int]:
        """Remove old terminal messages and resolved errors.

        Messages still referenced by an unresolved error are kept.

        Returns:
            Number of removed entries per collection.
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(days=older_than_days)
        with self._lock:
            old_errors = [
                eid
                for eid, record in self._errors.items()
                if record.resolved_at is not None and record.resolved_at < cutoff
            ]
            for eid in old_errors:
                del self._errors[eid]
            pinned = {record.message_id for record in self._errors.values() if not record.is_resolved}
            old_messages = [
                mid
                for mid, record in self._messages.items()
                if record.is_terminal and record.created_at < cutoff and mid not in pinned
            ]
            for mid in old_messages:
                del self._messages[mid]
        return {"messages": len(old_messages), "errors": len(old_errors)}
