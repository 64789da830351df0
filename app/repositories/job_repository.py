"""SQL operations over jobs, dependency edges and job logs.

Every method takes the caller's session; transaction boundaries belong to the
queue manager.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.models.brand import Brand
from app.models.job import Job, JobDependency, JobLog

logger = logging.getLogger(__name__)

MAX_CLAIM_CANDIDATES = 3


def _unsatisfied_dependency_clause():
    """EXISTS clause matching jobs with at least one dependency that is not complete."""
    upstream = aliased(Job)
    return exists(
        select(JobDependency.id)
        .join(upstream, upstream.id == JobDependency.depends_on_job_id)
        .where(
            JobDependency.job_id == Job.id,
            upstream.status != "complete",
        )
        .correlate(Job)
    )


class JobRepository:
    """Query helpers for the job store."""

    async def get(self, session: AsyncSession, job_id: str) -> Job | None:
        return await session.get(Job, job_id)

    async def brand_exists(self, session: AsyncSession, brand_id: str) -> bool:
        result = await session.execute(select(Brand.id).where(Brand.id == brand_id))
        return result.scalar_one_or_none() is not None

    async def find_by_idempotency_key(
        self,
        session: AsyncSession,
        *,
        job_type: str,
        idempotency_key: str,
    ) -> Job | None:
        result = await session.execute(
            select(Job).where(
                Job.type == job_type,
                Job.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    async def missing_job_ids(self, session: AsyncSession, job_ids: Sequence[str]) -> list[str]:
        """Return the ids in ``job_ids`` that have no job row."""
        if not job_ids:
            return []
        result = await session.execute(select(Job.id).where(Job.id.in_(list(job_ids))))
        found = set(result.scalars().all())
        return [job_id for job_id in job_ids if job_id not in found]

    async def insert(
        self,
        session: AsyncSession,
        *,
        brand_id: str,
        job_type: str,
        payload: dict[str, Any],
        priority: int,
        max_retries: int,
        depends_on: Sequence[str] = (),
        idempotency_key: str | None = None,
        retry_count: int = 0,
        retries_from: str | None = None,
    ) -> Job:
        """Insert a queued job and its dependency edges."""
        job = Job(
            brand_id=brand_id,
            type=job_type,
            status="queued",
            payload=payload,
            priority=priority,
            max_retries=max_retries,
            retry_count=retry_count,
            idempotency_key=idempotency_key,
            retries_from=retries_from,
        )
        session.add(job)
        await session.flush()

        for upstream_id in dict.fromkeys(depends_on):
            session.add(JobDependency(job_id=job.id, depends_on_job_id=upstream_id))
        if depends_on:
            await session.flush()
        return job

    async def dependency_ids(self, session: AsyncSession, job_id: str) -> list[str]:
        result = await session.execute(
            select(JobDependency.depends_on_job_id)
            .where(JobDependency.job_id == job_id)
            .order_by(JobDependency.created_at.asc())
        )
        return list(result.scalars().all())

    async def claim_next(
        self,
        session: AsyncSession,
        *,
        job_types: Sequence[str],
        now: datetime,
    ) -> Job | None:
        """Atomically move the best claimable job to ``running``.

        Candidates are locked with SKIP LOCKED and the status flip is a
        conditional UPDATE, so a row can only be claimed once even when the
        store does not support row locks.
        """
        for _ in range(MAX_CLAIM_CANDIDATES):
            result = await session.execute(
                select(Job)
                .where(
                    Job.status == "queued",
                    Job.type.in_(list(job_types)),
                    ~_unsatisfied_dependency_clause(),
                )
                .order_by(Job.priority.asc(), Job.created_at.asc(), Job.id.asc())
                .limit(1)
                .with_for_update(skip_locked=True, of=Job)
            )
            candidate = result.scalar_one_or_none()
            if candidate is None:
                return None

            claimed = await session.execute(
                update(Job)
                .where(Job.id == candidate.id, Job.status == "queued")
                .values(status="running", started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 1:
                await session.refresh(candidate)
                return candidate

            logger.debug("Claim race lost, trying next candidate", extra={"job_id": candidate.id})
        return None

    async def ready_dependents(self, session: AsyncSession, job_id: str) -> list[str]:
        """Return queued dependents of ``job_id`` whose dependencies are all complete."""
        result = await session.execute(
            select(Job.id)
            .join(JobDependency, JobDependency.job_id == Job.id)
            .where(
                JobDependency.depends_on_job_id == job_id,
                Job.status == "queued",
                ~_unsatisfied_dependency_clause(),
            )
            .order_by(Job.priority.asc(), Job.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_jobs(
        self,
        session: AsyncSession,
        *,
        brand_id: str | None,
        job_type: str | None,
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Job], int]:
        filters = []
        if brand_id:
            filters.append(Job.brand_id == brand_id)
        if job_type:
            filters.append(Job.type == job_type)
        if status:
            filters.append(Job.status == status)

        total = await session.scalar(select(func.count()).select_from(Job).where(*filters))
        result = await session.execute(
            select(Job)
            .where(*filters)
            .order_by(Job.created_at.desc(), Job.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def count_by_type_and_status(self, session: AsyncSession) -> list[tuple[str, str, int]]:
        result = await session.execute(
            select(Job.type, Job.status, func.count(Job.id)).group_by(Job.type, Job.status)
        )
        return [(str(job_type), str(status), int(count)) for job_type, status, count in result.all()]

    async def running_started_before(
        self,
        session: AsyncSession,
        *,
        job_type: str,
        cutoff: datetime,
    ) -> list[Job]:
        result = await session.execute(
            select(Job)
            .where(
                Job.status == "running",
                Job.type == job_type,
                Job.started_at < cutoff,
            )
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    def add_log(
        self,
        session: AsyncSession,
        *,
        job_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> JobLog:
        entry = JobLog(job_id=job_id, level=level, message=message, log_metadata=metadata)
        session.add(entry)
        return entry

    async def list_logs(self, session: AsyncSession, job_id: str) -> list[JobLog]:
        result = await session.execute(
            select(JobLog)
            .where(JobLog.job_id == job_id)
            .order_by(JobLog.created_at.asc(), JobLog.id.asc())
        )
        return list(result.scalars().all())
