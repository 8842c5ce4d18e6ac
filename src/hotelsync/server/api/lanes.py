"""Lane inspection and control API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from hotelsync.core.types import LaneState, MessageKind
from hotelsync.engine.errors import InvalidTransitionError, UnknownLaneError
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.server.api.deps import get_orchestrator
from hotelsync.server.schemas import AutoRetryRequest, LaneResponse, lane_to_response

router = APIRouter(prefix="/api/lanes", tags=["lanes"])


@router.get("", response_model=list[LaneResponse])
def list_lanes(
    state: LaneState | None = None,
    property_id: str | None = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> list[LaneResponse]:
    """List lanes, optionally filtered by state and property."""
    states = [state] if state is not None else None
    return [lane_to_response(lane) for lane in orchestrator.list_snapshots(states, property_id)]


@router.get("/{property_id}/{kind}", response_model=LaneResponse)
def get_lane(
    property_id: str,
    kind: MessageKind,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> LaneResponse:
    """Get one lane with its derived health score."""
    lane = orchestrator.lane_snapshot(property_id, kind)
    if lane is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Lane not found: {property_id}/{kind.value}",
        )
    return lane_to_response(lane)


@router.post("/{property_id}/{kind}/reset", response_model=LaneResponse)
def reset_lane(
    property_id: str,
    kind: MessageKind,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> LaneResponse:
    """Reset a failed or retry-pending lane."""
    try:
        lane = orchestrator.reset_lane(property_id, kind)
    except UnknownLaneError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return lane_to_response(lane)


@router.post("/{property_id}/{kind}/auto-retry", response_model=LaneResponse)
def set_auto_retry(
    property_id: str,
    kind: MessageKind,
    request: AutoRetryRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> LaneResponse:
    """Enable or disable automatic retries for a lane."""
    try:
        lane = orchestrator.set_auto_retry(property_id, kind, request.enabled)
    except UnknownLaneError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return lane_to_response(lane)
