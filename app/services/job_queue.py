"""Job queue manager: enqueue, claim, update, retry and cancel over the job store."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import ConflictError, SessionFactory, db_read, db_write
from app.core.exceptions import (
    BrandNotFoundError,
    DuplicateJobError,
    JobNotFoundError,
    JobStateError,
    RetryExhaustedError,
    ValidationError,
)
from app.models.base import utcnow
from app.models.job import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    JOB_LOG_LEVELS,
    JOB_STATUSES,
    JOB_TYPES,
    Job,
)
from app.repositories.job_repository import JobRepository
from app.schemas.payloads import dump_job_payload, parse_job_payload

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"
LEASE_EXPIRED_MESSAGE = "Job lease expired"
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200
BACKLOG_THRESHOLD = 100
FAILURE_RATIO_THRESHOLD = 0.2


@dataclass(slots=True)
class JobPage:
    jobs: list[Job]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.jobs) < self.total


@dataclass(slots=True)
class QueueStats:
    by_status: dict[str, int]
    by_type: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_status.values())

    @property
    def queue_health(self) -> str:
        queued = self.by_status.get("queued", 0)
        failed = self.by_status.get("failed", 0)
        if failed > queued * FAILURE_RATIO_THRESHOLD:
            return "unhealthy"
        if queued > BACKLOG_THRESHOLD:
            return "backlogged"
        return "healthy"


def _validate_job_types(job_types: Sequence[str]) -> list[str]:
    types = list(dict.fromkeys(t for t in job_types if t))
    if not types:
        raise ValidationError("At least one job type is required")
    unknown = [t for t in types if t not in JOB_TYPES]
    if unknown:
        raise ValidationError(f"Unknown job types: {', '.join(unknown)}", {"unknown": unknown})
    return types


class JobQueueManager:
    """Queue operations; the job store is the only shared state."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        repository: JobRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._repo = repository or JobRepository()

    async def _write(self, fn, *, operation_name: str):
        return await db_write(
            fn,
            operation_name=operation_name,
            session_factory=self._session_factory,
        )

    async def _read(self, fn, *, operation_name: str):
        return await db_read(
            fn,
            operation_name=operation_name,
            session_factory=self._session_factory,
        )

    async def _load(self, session: AsyncSession, job_id: str) -> Job:
        job = await self._repo.get(session, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def enqueue(
        self,
        brand_id: str,
        job_type: str,
        payload: Mapping[str, Any] | None = None,
        *,
        priority: int = DEFAULT_PRIORITY,
        depends_on: Sequence[str] | None = None,
        idempotency_key: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Job:
        """Create a queued job.

        Raises:
            ValidationError: unknown type, bad priority or payload.
            BrandNotFoundError: brand does not exist.
            JobNotFoundError: a declared dependency does not exist.
            DuplicateJobError: ``(job_type, idempotency_key)`` already used.
        """
        _validate_job_types([job_type])
        if not brand_id:
            raise ValidationError("brand_id is required")
        if not 1 <= priority <= 10:
            raise ValidationError("priority must be between 1 and 10", {"priority": priority})
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0", {"max_retries": max_retries})
        stored_payload = dump_job_payload(parse_job_payload(job_type, dict(payload or {})))
        dependencies = list(dict.fromkeys(depends_on or []))

        async def _enqueue(session: AsyncSession) -> Job:
            if not await self._repo.brand_exists(session, brand_id):
                raise BrandNotFoundError(brand_id)
            if idempotency_key:
                existing = await self._repo.find_by_idempotency_key(
                    session, job_type=job_type, idempotency_key=idempotency_key
                )
                if existing is not None:
                    raise DuplicateJobError(job_type, idempotency_key, existing.id)
            missing = await self._repo.missing_job_ids(session, dependencies)
            if missing:
                raise JobNotFoundError(missing[0])

            job = await self._repo.insert(
                session,
                brand_id=brand_id,
                job_type=job_type,
                payload=stored_payload,
                priority=priority,
                max_retries=max_retries,
                depends_on=dependencies,
                idempotency_key=idempotency_key,
            )
            self._repo.add_log(
                session,
                job_id=job.id,
                level="INFO",
                message="Job enqueued",
                metadata={"priority": priority, "depends_on": dependencies},
            )
            return job

        try:
            job = await self._write(_enqueue, operation_name="job_enqueue")
        except ConflictError:
            # Lost an insert race on the idempotency constraint.
            if not idempotency_key:
                raise
            existing = await self.find_by_idempotency_key(job_type, idempotency_key)
            if existing is None:
                raise
            raise DuplicateJobError(job_type, idempotency_key, existing.id) from None

        logger.info(
            "Job enqueued",
            extra={
                "job_id": job.id,
                "job_type": job_type,
                "brand_id": brand_id,
                "priority": priority,
                "depends_on": dependencies,
            },
        )
        return job

    async def find_by_idempotency_key(self, job_type: str, idempotency_key: str) -> Job | None:
        async def _find(session: AsyncSession) -> Job | None:
            return await self._repo.find_by_idempotency_key(
                session, job_type=job_type, idempotency_key=idempotency_key
            )

        return await self._read(_find, operation_name="job_find_by_idempotency_key")

    async def get_job(self, job_id: str) -> Job:
        async def _get(session: AsyncSession) -> Job:
            return await self._load(session, job_id)

        return await self._read(_get, operation_name="job_get")

    async def claim_next(self, job_types: Sequence[str]) -> Job | None:
        """Claim the best dependency-satisfied queued job among ``job_types``."""
        types = _validate_job_types(job_types)

        async def _claim(session: AsyncSession) -> Job | None:
            job = await self._repo.claim_next(session, job_types=types, now=utcnow())
            if job is not None:
                self._repo.add_log(session, job_id=job.id, level="INFO", message="Job claimed")
            return job

        job = await self._write(_claim, operation_name="job_claim_next")
        if job is not None:
            logger.info(
                "Job claimed",
                extra={"job_id": job.id, "job_type": job.type, "brand_id": job.brand_id},
            )
        return job

    async def update(
        self,
        job_id: str,
        status: str,
        *,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
        progress: int | None = None,
    ) -> Job:
        """Record progress or an outcome for a job.

        Only running jobs accept updates. A job reaches ``running`` through
        ``claim_next`` alone, so queued jobs cannot skip their dependencies, and a
        job failed by the lease reaper or by cancel stays failed even if a slow
        worker reports later.
        """
        if status not in JOB_STATUSES or status == "queued":
            raise ValidationError(f"Unsupported status update: {status}", {"status": status})

        async def _update(session: AsyncSession) -> tuple[Job, list[str]]:
            job = await self._load(session, job_id)
            if job.status != "running":
                raise JobStateError(job_id, job.status, f"mark {status}")

            now = utcnow()
            ready: list[str] = []
            if status == "running":
                job.status = "running"
                job.started_at = job.started_at or now
                if progress is not None:
                    job.progress = progress
            elif status == "complete":
                job.status = "complete"
                job.result = result
                job.error_message = None
                job.progress = 100
                job.completed_at = now
                self._repo.add_log(session, job_id=job.id, level="INFO", message="Job completed")
                await session.flush()
                ready = await self._repo.ready_dependents(session, job.id)
            else:
                job.status = "failed"
                job.error_message = error_message or "Job failed"
                if result is not None:
                    job.result = result
                job.completed_at = now
                self._repo.add_log(
                    session,
                    job_id=job.id,
                    level="ERROR",
                    message=job.error_message,
                    metadata={
                        "retry_count": job.retry_count,
                        "max_retries": job.max_retries,
                        "retry_permitted": job.retry_count < job.max_retries,
                    },
                )
            await session.flush()
            return job, ready

        job, ready = await self._write(_update, operation_name="job_update")

        if status == "complete":
            logger.info(
                "Job completed",
                extra={"job_id": job.id, "job_type": job.type, "ready_dependents": ready},
            )
        elif status == "failed":
            logger.warning(
                "Job failed",
                extra={
                    "job_id": job.id,
                    "job_type": job.type,
                    "error": job.error_message,
                    "retry_permitted": job.retry_count < job.max_retries,
                },
            )
        return job

    async def retry(self, job_id: str, *, reason: str | None = None) -> Job:
        """Create a new job row that retries a failed job.

        The original row is left untouched. The new row references it through
        ``retries_from``, carries ``retry_count + 1``, is one priority level
        ahead of the original and inherits its dependency edges.
        """

        async def _retry(session: AsyncSession) -> Job:
            original = await self._load(session, job_id)
            if original.status != "failed":
                raise JobStateError(job_id, original.status, "retry")
            if original.retry_count >= original.max_retries:
                raise RetryExhaustedError(job_id, original.retry_count, original.max_retries)

            dependencies = await self._repo.dependency_ids(session, original.id)
            retry_job = await self._repo.insert(
                session,
                brand_id=original.brand_id,
                job_type=original.type,
                payload=dict(original.payload or {}),
                priority=max(1, original.priority - 1),
                max_retries=original.max_retries,
                depends_on=dependencies,
                retry_count=original.retry_count + 1,
                retries_from=original.id,
            )
            self._repo.add_log(
                session,
                job_id=original.id,
                level="INFO",
                message="Retry scheduled",
                metadata={"new_job_id": retry_job.id, "reason": reason},
            )
            self._repo.add_log(
                session,
                job_id=retry_job.id,
                level="INFO",
                message="Job enqueued as retry",
                metadata={"retries_from": original.id, "reason": reason},
            )
            return retry_job

        retry_job = await self._write(_retry, operation_name="job_retry")
        logger.info(
            "Job retry enqueued",
            extra={
                "job_id": job_id,
                "new_job_id": retry_job.id,
                "retry_count": retry_job.retry_count,
                "reason": reason,
            },
        )
        return retry_job

    async def cancel(self, job_id: str) -> Job:
        """Cancel a queued job by failing it with a cancellation reason."""

        async def _cancel(session: AsyncSession) -> Job:
            job = await self._load(session, job_id)
            if job.status != "queued":
                raise JobStateError(job_id, job.status, "cancel")
            job.status = "failed"
            job.error_message = CANCELLED_MESSAGE
            job.completed_at = utcnow()
            self._repo.add_log(session, job_id=job.id, level="WARN", message=CANCELLED_MESSAGE)
            await session.flush()
            return job

        job = await self._write(_cancel, operation_name="job_cancel")
        logger.info("Job cancelled", extra={"job_id": job.id, "job_type": job.type})
        return job

    async def list_jobs(
        self,
        *,
        brand_id: str | None = None,
        job_type: str | None = None,
        status: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> JobPage:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        offset = max(0, int(offset))

        async def _list(session: AsyncSession) -> JobPage:
            jobs, total = await self._repo.list_jobs(
                session,
                brand_id=brand_id,
                job_type=job_type,
                status=status,
                limit=limit,
                offset=offset,
            )
            return JobPage(jobs=jobs, total=total, limit=limit, offset=offset)

        return await self._read(_list, operation_name="job_list")

    async def queue_stats(self) -> QueueStats:
        async def _stats(session: AsyncSession) -> list[tuple[str, str, int]]:
            return await self._repo.count_by_type_and_status(session)

        rows = await self._read(_stats, operation_name="job_queue_stats")
        by_status = {status: 0 for status in JOB_STATUSES}
        by_type: dict[str, dict[str, int]] = {}
        for job_type, status, count in rows:
            by_status[status] = by_status.get(status, 0) + count
            by_type.setdefault(job_type, {s: 0 for s in JOB_STATUSES})[status] = count
        return QueueStats(by_status=by_status, by_type=by_type)

    async def append_log(
        self,
        job_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if level not in JOB_LOG_LEVELS:
            raise ValidationError(f"Unsupported log level: {level}", {"level": level})

        async def _append(session: AsyncSession) -> None:
            await self._load(session, job_id)
            self._repo.add_log(
                session, job_id=job_id, level=level, message=message, metadata=metadata
            )

        await self._write(_append, operation_name="job_log_append")

    async def list_logs(self, job_id: str) -> list[dict[str, Any]]:
        async def _logs(session: AsyncSession) -> list[dict[str, Any]]:
            await self._load(session, job_id)
            entries = await self._repo.list_logs(session, job_id)
            return [
                {
                    "level": entry.level,
                    "message": entry.message,
                    "metadata": entry.log_metadata,
                    "created_at": entry.created_at,
                }
                for entry in entries
            ]

        return await self._read(_logs, operation_name="job_log_list")

    async def fail_stale_running(
        self,
        max_running_seconds: Mapping[str, float],
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Fail ``running`` jobs that outlived their type's lease bound.

        Covers runners that crashed after claiming; returns the failed job ids.
        """
        reference = now or utcnow()

        async def _reap(session: AsyncSession) -> list[str]:
            reaped: list[str] = []
            for job_type, bound_seconds in max_running_seconds.items():
                cutoff = reference - timedelta(seconds=bound_seconds)
                for job in await self._repo.running_started_before(
                    session, job_type=job_type, cutoff=cutoff
                ):
                    job.status = "failed"
                    job.error_message = LEASE_EXPIRED_MESSAGE
                    job.completed_at = reference
                    self._repo.add_log(
                        session,
                        job_id=job.id,
                        level="ERROR",
                        message=LEASE_EXPIRED_MESSAGE,
                        metadata={"lease_seconds": bound_seconds},
                    )
                    reaped.append(job.id)
            await session.flush()
            return reaped

        reaped = await self._write(_reap, operation_name="job_fail_stale_running")
        if reaped:
            logger.warning("Failed stale running jobs", extra={"job_ids": reaped})
        return reaped


_job_queue_manager: JobQueueManager | None = None


def get_job_queue_manager() -> JobQueueManager:
    """Get the shared queue manager bound to the application database."""
    global _job_queue_manager
    if _job_queue_manager is None:
        _job_queue_manager = JobQueueManager()
    return _job_queue_manager
