"""Async validation result and processing log models."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from entval.database import Base, JSONType


class AsyncValidationResult(Base):
    """One row per (record_id, rule_id) - latest outcome of an async rule."""

    __tablename__ = "async_validation_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    record_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tenant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # PENDING|PASS|FAIL|WARNING|ERROR
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    external_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    active_entitlements_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # SHA256 of the record content the row was enqueued for
    source_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("record_id", "rule_id", name="uq_async_validation_record_rule"),
        Index("idx_async_validation_status_created", "status", "created_at"),
        Index("idx_async_validation_tenant", "tenant_name"),
        Index("idx_async_validation_updated", "updated_at"),
    )


class ProcessingLog(Base):
    """Background worker runs - one row per run."""

    __tablename__ = "async_validation_processing_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    records_queued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False)  # running|completed|failed
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_processing_log_started", "started_at"),)
