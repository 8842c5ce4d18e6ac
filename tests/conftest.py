"""Shared fixtures for hotelsync tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from hotelsync.core.config import EngineConfig
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.engine.store import MemoryStore


class Clock:
    """Deterministic UTC clock advanced by hand."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def orchestrator(store: MemoryStore, clock: Clock) -> SyncOrchestrator:
    return SyncOrchestrator(store, config=EngineConfig(), clock=clock)
