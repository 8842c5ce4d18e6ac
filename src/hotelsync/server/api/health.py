"""Health check API route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from hotelsync.core.types import LaneState
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.server.api.deps import get_orchestrator
from hotelsync.server.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """Check server health and summarize lane states."""
    lanes = orchestrator.list_snapshots()
    failed = sum(1 for lane in lanes if lane.state is LaneState.FAILED)
    degraded = sum(1 for lane in lanes if lane.state is LaneState.DEGRADED)
    return HealthResponse(
        status="ok" if failed == 0 and degraded == 0 else "degraded",
        lanes=len(lanes),
        failed_lanes=failed,
        degraded_lanes=degraded,
    )
