"""Job queue API endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.api.v1.jobs.constants import (
    BRAND_NOT_FOUND_DETAIL,
    CANCEL_NOT_QUEUED_DETAIL,
    DEFAULT_JOB_LIMIT,
    DEPENDENCY_NOT_FOUND_DETAIL,
    DUPLICATE_JOB_DETAIL,
    JOB_ALREADY_FINISHED_DETAIL,
    JOB_CANCELLED_MESSAGE,
    JOB_NOT_FOUND_DETAIL,
    MAX_JOB_LIMIT,
    RETRY_EXHAUSTED_DETAIL,
    RETRY_NOT_FAILED_DETAIL,
)
from app.core.exceptions import (
    BrandNotFoundError,
    DuplicateJobError,
    JobNotFoundError,
    JobStateError,
    RetryExhaustedError,
    ValidationError,
)
from app.dependencies import QueueManager
from app.schemas.job import (
    CancelResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobListResponse,
    JobLogEntry,
    JobResponse,
    JobStatus,
    JobType,
    JobUpdateRequest,
    JobUpdateResponse,
    NextJobResponse,
    Pagination,
    QueueStatsResponse,
    RetryRequest,
    RetryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _unprocessable(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": exc.message, **exc.details},
    )


def _job_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=JOB_NOT_FOUND_DETAIL)


@router.post(
    "/enqueue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue job",
    description="Create a queued job, optionally gated on other jobs and deduplicated by key.",
    responses={status.HTTP_409_CONFLICT: {"description": DUPLICATE_JOB_DETAIL}},
)
async def enqueue_job(request: EnqueueRequest, queue: QueueManager) -> Any:
    """Enqueue a job for a brand."""
    try:
        job = await queue.enqueue(
            request.brand_id,
            request.type,
            request.payload,
            priority=request.priority,
            depends_on=request.depends_on,
            idempotency_key=request.idempotency_key,
            max_retries=request.max_retries,
        )
    except DuplicateJobError as exc:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": DUPLICATE_JOB_DETAIL, "existingJobId": exc.existing_job_id},
        )
    except BrandNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BRAND_NOT_FOUND_DETAIL) from exc
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=DEPENDENCY_NOT_FOUND_DETAIL,
        ) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc

    return EnqueueResponse(job_id=job.id, job=JobResponse.model_validate(job))


@router.get(
    "/next",
    response_model=NextJobResponse,
    summary="Claim next job",
    description="Atomically claim the highest-priority ready job among the requested types.",
)
async def claim_next_job(
    queue: QueueManager,
    types: str = Query(..., description="Comma-separated job types"),
) -> NextJobResponse:
    """Claim the next ready job, or return an empty result."""
    job_types = [item.strip() for item in types.split(",") if item.strip()]
    try:
        job = await queue.claim_next(job_types)
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return NextJobResponse(job=JobResponse.model_validate(job) if job else None)


@router.put(
    "/job-{job_id}",
    response_model=JobUpdateResponse,
    summary="Update job",
    description="Report progress or the final outcome of a running job.",
)
async def update_job(job_id: str, request: JobUpdateRequest, queue: QueueManager) -> JobUpdateResponse:
    """Update job status, result, error or progress."""
    try:
        job = await queue.update(
            job_id,
            request.status,
            result=request.result,
            error_message=request.error_message,
            progress=request.progress,
        )
    except JobNotFoundError as exc:
        raise _job_not_found() from exc
    except JobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=JOB_ALREADY_FINISHED_DETAIL) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return JobUpdateResponse(job=JobResponse.model_validate(job))


@router.post(
    "/retry",
    response_model=RetryResponse,
    summary="Retry failed job",
    description="Enqueue a new job row that retries a failed job, up to its retry ceiling.",
)
async def retry_job(request: RetryRequest, queue: QueueManager) -> RetryResponse:
    """Retry a failed job."""
    try:
        retry = await queue.retry(request.job_id, reason=request.reason)
    except JobNotFoundError as exc:
        raise _job_not_found() from exc
    except RetryExhaustedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=RETRY_EXHAUSTED_DETAIL) from exc
    except JobStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=RETRY_NOT_FAILED_DETAIL) from exc
    return RetryResponse(new_job_id=retry.id, job=JobResponse.model_validate(retry))


@router.delete(
    "/job-{job_id}",
    response_model=CancelResponse,
    summary="Cancel job",
    description="Cancel a job that has not been claimed yet.",
)
async def cancel_job(job_id: str, queue: QueueManager) -> CancelResponse:
    """Cancel a queued job."""
    try:
        job = await queue.cancel(job_id)
    except JobNotFoundError as exc:
        raise _job_not_found() from exc
    except JobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=CANCEL_NOT_QUEUED_DETAIL) from exc
    return CancelResponse(job_id=job.id, status=job.status, message=JOB_CANCELLED_MESSAGE)


@router.get(
    "/job-{job_id}/logs",
    response_model=list[JobLogEntry],
    summary="Job log",
    description="Return the log entries recorded for a job, oldest first.",
)
async def get_job_logs(job_id: str, queue: QueueManager) -> list[JobLogEntry]:
    try:
        entries = await queue.list_logs(job_id)
    except JobNotFoundError as exc:
        raise _job_not_found() from exc
    return [JobLogEntry.model_validate(entry) for entry in entries]


@router.get(
    "/jobs",
    response_model=JobListResponse,
    summary="List jobs",
    description="Paginated job listing, newest first, filterable by brand, type and status.",
)
async def list_jobs(
    queue: QueueManager,
    brand_id: str | None = Query(default=None, alias="brandId"),
    job_type: JobType | None = Query(default=None, alias="type"),
    job_status: JobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=DEFAULT_JOB_LIMIT, ge=1, le=MAX_JOB_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> JobListResponse:
    """List jobs with pagination."""
    page = await queue.list_jobs(
        brand_id=brand_id,
        job_type=job_type,
        status=job_status,
        limit=limit,
        offset=offset,
    )
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in page.jobs],
        pagination=Pagination(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        ),
    )


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Queue statistics",
    description="Job counts by status and type with a coarse queue health signal.",
)
async def get_queue_stats(queue: QueueManager) -> QueueStatsResponse:
    """Return queue statistics."""
    stats = await queue.queue_stats()
    return QueueStatsResponse(
        by_status=stats.by_status,
        by_type=stats.by_type,
        total=stats.total,
        queue_health=stats.queue_health,
    )
