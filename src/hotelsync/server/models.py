"""SQLAlchemy models for hotelsync.

This module defines the database schema using SQLAlchemy ORM:
- sync_lanes: one row per (property_id, message_kind)
- message_records: message history keyed by message_id
- error_records: classified failures referencing message_records
- dedup_entries: deduplication ledger entries keyed by fingerprint
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncLaneRow(Base):
    """Persisted state of a synchronization lane."""

    __tablename__ = "sync_lanes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="idle")
    records_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    auto_retry_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    in_flight_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("property_id", "message_kind", name="uq_sync_lanes_property_kind"),
        Index("idx_sync_lanes_state", "state"),
        Index("idx_sync_lanes_next_retry", "next_retry_at"),
    )


class MessageRecordRow(Base):
    """Persisted message history entry."""

    __tablename__ = "message_records"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    message_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content_fingerprint: Mapped[str] = mapped_column(String(128), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duplicate_of: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    message_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_message_records_fingerprint", "content_fingerprint"),
        Index("idx_message_records_batch", "batch_id"),
        Index("idx_message_records_parent", "parent_message_id"),
        Index("idx_message_records_lane", "property_id", "message_kind", "direction", "state"),
    )


class ErrorRecordRow(Base):
    """Persisted classified failure."""

    __tablename__ = "error_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("message_records.message_id", ondelete="CASCADE"), nullable=False
    )
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    error_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    can_retry: Mapped[bool] = mapped_column(Boolean, nullable=False)
    retry_delay_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    requires_manual_intervention: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    exception_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_error_records_message", "message_id"),
        Index("idx_error_records_unresolved", "resolved_at"),
    )


class DedupEntryRow(Base):
    """Deduplication ledger entry."""

    __tablename__ = "dedup_entries"

    fingerprint: Mapped[str] = mapped_column(String(128), primary_key=True)
    message_id: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_dedup_entries_expires", "expires_at"),)
