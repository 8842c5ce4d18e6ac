"""Error record API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hotelsync.core.types import MessageKind
from hotelsync.engine.errors import MessageStateError, UnknownErrorRecordError
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.engine.store import SyncStore
from hotelsync.server.api.deps import get_db, get_orchestrator
from hotelsync.server.schemas import ErrorResponse, ResolveErrorRequest, error_to_response

router = APIRouter(prefix="/api/errors", tags=["errors"])


@router.get("", response_model=list[ErrorResponse])
def list_errors(
    unresolved: bool = False,
    property_id: str | None = None,
    kind: MessageKind | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: SyncStore = Depends(get_db),
) -> list[ErrorResponse]:
    """List error records, newest first."""
    errors = db.list_errors(unresolved_only=unresolved, property_id=property_id, kind=kind, limit=limit)
    return [error_to_response(error) for error in errors]


@router.post("/{error_id}/resolve", response_model=ErrorResponse)
def resolve_error(
    error_id: int,
    request: ResolveErrorRequest | None = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ErrorResponse:
    """Mark an error record resolved."""
    notes = request.notes if request else None
    try:
        error = orchestrator.resolve_error(error_id, notes)
    except UnknownErrorRecordError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except MessageStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return error_to_response(error)
