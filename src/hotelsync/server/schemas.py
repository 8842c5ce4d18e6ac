"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from hotelsync.engine.lane import LaneSnapshot
from hotelsync.engine.messages import ErrorRecord, MessageRecord


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# === Lane schemas ===


class LaneResponse(BaseModel):
    """Lane snapshot in responses."""

    property_id: str
    message_kind: str
    state: str
    records_total: int
    records_processed: int
    retry_count: int
    max_retries: int
    consecutive_failures: int
    auto_retry_enabled: bool
    in_flight: bool
    success_rate: float
    health_score: float
    error_message: str | None
    last_message_id: str | None
    last_attempt_at: str | None
    last_success_at: str | None
    next_retry_at: str | None
    updated_at: str


class AutoRetryRequest(BaseModel):
    """Request body for toggling auto-retry."""

    enabled: bool


# === Error schemas ===


class ErrorResponse(BaseModel):
    """Error record in responses."""

    id: int
    message_id: str
    property_id: str
    message_kind: str
    error_kind: str
    severity: str
    can_retry: bool
    retry_delay_seconds: int
    requires_manual_intervention: bool
    message: str
    exception_type: str | None
    created_at: str
    resolved_at: str | None
    resolution_notes: str | None


class ResolveErrorRequest(BaseModel):
    """Request body for resolving an error."""

    notes: str | None = None


# === Message schemas ===


class MessageResponse(BaseModel):
    """Message record in responses."""

    message_id: str
    parent_message_id: str | None
    batch_id: str | None
    direction: str
    message_kind: str
    property_id: str
    content_fingerprint: str
    state: str
    is_duplicate: bool
    duplicate_of: str | None
    record_count: int
    message_size: int | None
    processing_notes: str | None
    sent_at: str | None
    received_at: str | None
    processed_at: str | None
    created_at: str


class MessageThreadResponse(BaseModel):
    """A message together with the rest of its thread."""

    message: MessageResponse
    thread: list[MessageResponse]


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    lanes: int = 0
    failed_lanes: int = 0
    degraded_lanes: int = 0


# === Converters ===


def lane_to_response(lane: LaneSnapshot) -> LaneResponse:
    """Convert LaneSnapshot to response model."""
    return LaneResponse(
        property_id=lane.property_id,
        message_kind=lane.kind.value,
        state=lane.state.value,
        records_total=lane.records_total,
        records_processed=lane.records_processed,
        retry_count=lane.retry_count,
        max_retries=lane.max_retries,
        consecutive_failures=lane.consecutive_failures,
        auto_retry_enabled=lane.auto_retry_enabled,
        in_flight=lane.in_flight,
        success_rate=lane.success_rate,
        health_score=lane.health_score,
        error_message=lane.error_message,
        last_message_id=lane.last_message_id,
        last_attempt_at=_iso(lane.last_attempt_at),
        last_success_at=_iso(lane.last_success_at),
        next_retry_at=_iso(lane.next_retry_at),
        updated_at=lane.updated_at.isoformat(),
    )


def error_to_response(error: ErrorRecord) -> ErrorResponse:
    """Convert ErrorRecord to response model."""
    if error.id is None:
        raise ValueError(f"Error record for message {error.message_id} has not been stored")
    return ErrorResponse(
        id=error.id,
        message_id=error.message_id,
        property_id=error.property_id,
        message_kind=error.kind.value,
        error_kind=error.error_kind.value,
        severity=error.severity.value,
        can_retry=error.can_retry,
        retry_delay_seconds=error.retry_delay_seconds,
        requires_manual_intervention=error.requires_manual_intervention,
        message=error.message,
        exception_type=error.exception_type,
        created_at=error.created_at.isoformat(),
        resolved_at=_iso(error.resolved_at),
        resolution_notes=error.resolution_notes,
    )


def message_to_response(record: MessageRecord) -> MessageResponse:
    """Convert MessageRecord to response model."""
    return MessageResponse(
        message_id=record.message_id,
        parent_message_id=record.parent_message_id,
        batch_id=record.batch_id,
        direction=record.direction.value,
        message_kind=record.kind.value,
        property_id=record.property_id,
        content_fingerprint=record.content_fingerprint,
        state=record.state.value,
        is_duplicate=record.is_duplicate,
        duplicate_of=record.duplicate_of,
        record_count=record.record_count,
        message_size=record.message_size,
        processing_notes=record.processing_notes,
        sent_at=_iso(record.sent_at),
        received_at=_iso(record.received_at),
        processed_at=_iso(record.processed_at),
        created_at=record.created_at.isoformat(),
    )
