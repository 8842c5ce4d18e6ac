"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Request

from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.engine.store import SyncStore


def get_db(request: Request) -> SyncStore:
    """Get the store from app state."""
    db: SyncStore = request.app.state.db
    return db


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the orchestrator from app state."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator
