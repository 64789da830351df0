"""Job queue models: jobs, dependency edges and job logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, StringUUID, TimestampMixin, UUIDMixin, utcnow

JOB_TYPES = (
    "brand_onboard",
    "normalize",
    "embed",
    "sample",
    "score",
    "assemble_report",
)
JOB_STATUSES = ("queued", "running", "complete", "failed")
JOB_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

DEFAULT_PRIORITY = 5
DEFAULT_MAX_RETRIES = 3


class Job(Base, UUIDMixin, TimestampMixin):
    """A unit of deferred, typed work for one brand and one pipeline stage."""

    __tablename__ = "jobs"
    __table_args__ = (
        UniqueConstraint("type", "idempotency_key", name="uq_jobs_type_idempotency_key"),
        CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_count_within_max"),
        CheckConstraint("priority >= 1 AND priority <= 10", name="ck_jobs_priority_range"),
        Index("ix_jobs_claim_order", "status", "type", "priority", "created_at"),
    )

    brand_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("brands.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=DEFAULT_PRIORITY, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_MAX_RETRIES, nullable=False
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    retries_from: Mapped[str | None] = mapped_column(
        StringUUID(),
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.type}:{self.status}>"


class JobDependency(Base, UUIDMixin):
    """Edge declaring that ``job_id`` may only run after ``depends_on_job_id`` completes."""

    __tablename__ = "job_dependencies"
    __table_args__ = (
        UniqueConstraint("job_id", "depends_on_job_id", name="uq_job_dependencies_edge"),
        CheckConstraint("job_id != depends_on_job_id", name="ck_job_dependencies_no_self"),
    )

    job_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    depends_on_job_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class JobLog(Base, UUIDMixin):
    """Append-only job audit entry."""

    __tablename__ = "job_logs"

    job_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[str] = mapped_column(String(10), default="INFO", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    log_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
