"""Scheduler for retries and maintenance tasks.

This module provides:
- Interval polling of lanes whose retry is due, handed to a retry callback
- Automatic daily cleanup of old messages, resolved errors and dedup entries
- Manual run functions for CLI/API usage
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from hotelsync.engine.lane import LaneSnapshot
    from hotelsync.engine.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

RetryCallback = Callable[["LaneSnapshot"], None]


def log_due_lane(lane: LaneSnapshot) -> None:
    """Default retry callback: report the lane so a producer can redispatch."""
    logger.info(
        "Retry due for lane %s/%s (attempt %d/%d)",
        lane.property_id,
        lane.kind.value,
        lane.retry_count + 1,
        lane.max_retries,
    )


class RetryScheduler:
    """Background jobs driving lane retries and retention.

    Runs:
    - Retry poll every `poll_seconds`
    - Cleanup daily at `hour`:`minute`
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        retry_callback: RetryCallback | None = None,
        poll_seconds: int = 60,
        retention_days: int = 30,
        hour: int = 3,
        minute: int = 0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator: Orchestrator whose lanes are polled.
            retry_callback: Called once per due lane on every poll.
            poll_seconds: Seconds between retry polls.
            retention_days: Retention for messages and resolved errors.
            hour: Hour to run the cleanup job (0-23).
            minute: Minute to run the cleanup job (0-59).
        """
        self._orchestrator = orchestrator
        self._retry_callback = retry_callback or log_due_lane
        self._poll_seconds = poll_seconds
        self._retention_days = retention_days
        self._hour = hour
        self._minute = minute
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def poll_due_lanes(self) -> int:
        """Hand every due lane to the retry callback.

        Returns:
            Number of due lanes found.
        """
        due = self._orchestrator.due_lanes()
        for lane in due:
            try:
                self._retry_callback(lane)
            except Exception:
                logger.exception("Retry callback failed for lane %s/%s", lane.property_id, lane.kind.value)
        if due:
            logger.info("Retry poll: %d lane(s) due", len(due))
        return len(due)

    def run_cleanup(self) -> dict[str, int]:
        """Run the retention cleanup immediately (manual trigger)."""
        return self._orchestrator.store.cleanup(self._retention_days, now=self._orchestrator.now())

    def _poll_job(self) -> None:
        """Job function for the scheduled retry poll."""
        try:
            self.poll_due_lanes()
        except Exception:
            logger.exception("Error during scheduled retry poll")

    def _cleanup_job(self) -> None:
        """Job function for the scheduled cleanup."""
        logger.info("Starting scheduled cleanup (retention: %d days)", self._retention_days)
        try:
            self.run_cleanup()
        except Exception:
            logger.exception("Error during scheduled cleanup")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()

        self._scheduler.add_job(
            self._poll_job,
            trigger=IntervalTrigger(seconds=self._poll_seconds),
            id="retry_poll",
            name="Retry poll",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._cleanup_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            id="retention_cleanup",
            name="Daily retention cleanup",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Retry scheduler started (poll every %ds, cleanup daily at %02d:%02d, retention: %d days)",
            self._poll_seconds,
            self._hour,
            self._minute,
            self._retention_days,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Retry scheduler stopped")
