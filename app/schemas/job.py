"""Job queue API schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JobType = Literal[
    "brand_onboard",
    "normalize",
    "embed",
    "sample",
    "score",
    "assemble_report",
]
JobStatus = Literal["queued", "running", "complete", "failed"]
QueueHealth = Literal["healthy", "backlogged", "unhealthy"]


class CamelModel(BaseModel):
    """Base schema exchanged as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class EnqueueRequest(CamelModel):
    """Schema for enqueueing a job."""

    brand_id: str = Field(min_length=1)
    type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=5, ge=1, le=10)
    depends_on: list[str] = Field(default_factory=list)
    idempotency_key: str | None = Field(default=None, max_length=255)
    max_retries: int = Field(default=3, ge=0, le=10)


class JobResponse(CamelModel):
    """Schema for a job row."""

    id: str
    brand_id: str
    type: str
    status: str
    payload: dict[str, Any]
    priority: int
    retry_count: int
    max_retries: int
    idempotency_key: str | None = None
    retries_from: str | None = None
    progress: int | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class EnqueueResponse(CamelModel):
    job_id: str
    job: JobResponse


class NextJobResponse(CamelModel):
    job: JobResponse | None = None


class JobUpdateRequest(CamelModel):
    """Schema for reporting job progress or outcome."""

    status: Literal["running", "complete", "failed"]
    result: dict[str, Any] | None = None
    error_message: str | None = None
    progress: int | None = Field(default=None, ge=0, le=100)


class JobUpdateResponse(CamelModel):
    job: JobResponse


class RetryRequest(CamelModel):
    job_id: str = Field(min_length=1)
    reason: str | None = None


class RetryResponse(CamelModel):
    new_job_id: str
    job: JobResponse


class CancelResponse(CamelModel):
    job_id: str
    status: str
    message: str


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class JobListResponse(CamelModel):
    jobs: list[JobResponse]
    pagination: Pagination


class QueueStatsResponse(CamelModel):
    """Counts by status and by type, plus a coarse health signal."""

    by_status: dict[str, int]
    by_type: dict[str, dict[str, int]]
    total: int
    queue_health: QueueHealth


class JobLogEntry(CamelModel):
    level: str
    message: str
    metadata: dict[str, Any] | None = None
    created_at: datetime
