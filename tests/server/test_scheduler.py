"""Tests for the retry and retention scheduler."""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hotelsync.core.types import MessageKind
from hotelsync.engine.errors import PartnerTimeoutError
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.server.database import Database
from hotelsync.server.scheduler import RetryScheduler

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def now() -> list[datetime]:
    return [T0]


@pytest.fixture
def orchestrator(db: Database, now: list[datetime]) -> SyncOrchestrator:
    return SyncOrchestrator(db, clock=lambda: now[0])


def time_out(orchestrator: SyncOrchestrator, message_id: str = "m1") -> None:
    orchestrator.begin_dispatch("42", MessageKind.INVENTORY, f"fp-{message_id}", message_id)
    orchestrator.report_outcome(
        "42", MessageKind.INVENTORY, message_id, success=False, failure=PartnerTimeoutError("timed out")
    )


class TestPollDueLanes:
    """Tests for the retry poll."""

    def test_calls_back_due_lanes(self, orchestrator: SyncOrchestrator, now: list[datetime]) -> None:
        """Should hand lanes to the callback only once their retry is due."""
        callback = MagicMock()
        scheduler = RetryScheduler(orchestrator, retry_callback=callback)
        time_out(orchestrator)

        assert scheduler.poll_due_lanes() == 0
        callback.assert_not_called()

        now[0] = T0 + timedelta(minutes=5)

        assert scheduler.poll_due_lanes() == 1
        lane = callback.call_args.args[0]
        assert lane.property_id == "42"
        assert lane.kind is MessageKind.INVENTORY
        assert lane.retry_count == 1

    def test_callback_errors_are_contained(self, orchestrator: SyncOrchestrator, now: list[datetime]) -> None:
        """Should keep polling when a callback raises."""
        callback = MagicMock(side_effect=RuntimeError("producer down"))
        scheduler = RetryScheduler(orchestrator, retry_callback=callback)
        time_out(orchestrator, "m1")
        orchestrator.begin_dispatch("7", MessageKind.RATES, "fp-r", "r1")
        orchestrator.report_outcome("7", MessageKind.RATES, "r1", success=False, failure="timed out")
        now[0] = T0 + timedelta(hours=1)

        assert scheduler.poll_due_lanes() == 2
        assert callback.call_count == 2

    def test_default_callback_logs(self, orchestrator: SyncOrchestrator, now: list[datetime]) -> None:
        scheduler = RetryScheduler(orchestrator)
        time_out(orchestrator)
        now[0] = T0 + timedelta(minutes=5)
        assert scheduler.poll_due_lanes() == 1


class TestRunCleanup:
    def test_uses_retention(self, db: Database, orchestrator: SyncOrchestrator, now: list[datetime]) -> None:
        """Should delete terminal messages older than the retention period."""
        orchestrator.begin_dispatch("42", MessageKind.INVENTORY, "fp", "m1")
        orchestrator.report_outcome("42", MessageKind.INVENTORY, "m1", success=True)
        scheduler = RetryScheduler(orchestrator, retention_days=7)

        now[0] = T0 + timedelta(days=6)
        assert scheduler.run_cleanup()["messages"] == 0

        now[0] = T0 + timedelta(days=8)
        assert scheduler.run_cleanup()["messages"] == 1
        assert db.get_message("m1") is None


class TestRetryScheduler:
    """Tests for RetryScheduler lifecycle."""

    def test_init_default_values(self, orchestrator: SyncOrchestrator) -> None:
        """Should have sensible defaults."""
        scheduler = RetryScheduler(orchestrator)
        assert scheduler._poll_seconds == 60
        assert scheduler._retention_days == 30
        assert scheduler._hour == 3
        assert scheduler._minute == 0
        assert scheduler.running is False

    def test_start_creates_scheduler(self, orchestrator: SyncOrchestrator) -> None:
        """Should register the poll and cleanup jobs."""
        scheduler = RetryScheduler(orchestrator, poll_seconds=30)
        scheduler.start()
        try:
            assert scheduler.running is True
            assert scheduler._scheduler.running
            assert {job.id for job in scheduler._scheduler.get_jobs()} == {"retry_poll", "retention_cleanup"}
        finally:
            scheduler.stop()

    def test_stop_stops_scheduler(self, orchestrator: SyncOrchestrator) -> None:
        scheduler = RetryScheduler(orchestrator)
        scheduler.start()
        scheduler.stop()
        assert scheduler.running is False

    def test_start_idempotent(self, orchestrator: SyncOrchestrator) -> None:
        """Should ignore a second start."""
        scheduler = RetryScheduler(orchestrator)
        scheduler.start()
        try:
            first = scheduler._scheduler
            scheduler.start()
            assert scheduler._scheduler is first
        finally:
            scheduler.stop()

    def test_poll_job_handles_exception(self, orchestrator: SyncOrchestrator) -> None:
        """Should log and swallow errors from the scheduled poll."""
        scheduler = RetryScheduler(orchestrator)
        with patch.object(scheduler, "poll_due_lanes", side_effect=RuntimeError("db locked")):
            scheduler._poll_job()

    def test_cleanup_job_handles_exception(self, orchestrator: SyncOrchestrator) -> None:
        scheduler = RetryScheduler(orchestrator)
        with patch.object(scheduler, "run_cleanup", side_effect=RuntimeError("disk full")):
            scheduler._cleanup_job()
