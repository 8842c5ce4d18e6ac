"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from hotelsync.server.api import errors, health, lanes, messages

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(lanes.router)
router.include_router(errors.router)
router.include_router(messages.router)
