"""Message history API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from hotelsync.engine.errors import UnknownMessageError
from hotelsync.engine.store import SyncStore
from hotelsync.server.api.deps import get_db
from hotelsync.server.schemas import MessageThreadResponse, message_to_response

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/{message_id}", response_model=MessageThreadResponse)
def get_message(
    message_id: str,
    db: SyncStore = Depends(get_db),
) -> MessageThreadResponse:
    """Get a message and every message of its thread."""
    record = db.get_message(message_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Message not found: {message_id}",
        )
    try:
        thread = db.message_thread(message_id)
    except UnknownMessageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return MessageThreadResponse(
        message=message_to_response(record),
        thread=[message_to_response(item) for item in thread],
    )
