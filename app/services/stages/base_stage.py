"""Base class for stage workers dispatched by the job runner."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import monotonic
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import SessionFactory, db_read
from app.core.exceptions import BrandNotFoundError, DuplicateJobError, ValidationError
from app.models.brand import Brand
from app.schemas.payloads import parse_job_payload

if TYPE_CHECKING:
    from app.models.job import Job
    from app.services.job_queue import JobQueueManager

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")

NEXT_STAGE_PRIORITY = 4


@dataclass(slots=True)
class JobContext:
    """Snapshot of a claimed job handed to a stage worker."""

    job_id: str
    brand_id: str
    job_type: str
    payload: dict[str, Any]
    priority: int = 5
    retry_count: int = 0
    max_retries: int = 3
    attempt: int = 1

    @classmethod
    def from_job(cls, job: Job) -> JobContext:
        return cls(
            job_id=job.id,
            brand_id=job.brand_id,
            job_type=job.type,
            payload=dict(job.payload or {}),
            priority=job.priority,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
        )


@dataclass(slots=True)
class BrandSnapshot:
    id: str
    name: str
    domain: str | None
    competitors: list[str]


async def load_brand(
    brand_id: str,
    *,
    session_factory: SessionFactory | None = None,
) -> BrandSnapshot:
    """Load a brand or raise BrandNotFoundError."""

    async def _load(session: AsyncSession) -> BrandSnapshot:
        brand = await session.get(Brand, brand_id)
        if brand is None:
            raise BrandNotFoundError(brand_id)
        return BrandSnapshot(
            id=brand.id,
            name=brand.name,
            domain=brand.domain,
            competitors=[c for c in (brand.competitors or []) if c],
        )

    return await db_read(_load, operation_name="brand_load", session_factory=session_factory)


class BaseStage(ABC, Generic[PayloadT]):
    """Abstract base for all stage workers.

    Subclasses:
    1. Set ``job_type`` (and ``next_job_type`` when the stage hands off)
    2. Implement ``_execute`` returning the job result
    3. Optionally implement ``_next_payload`` for the hand-off job
    4. Optionally override ``health_check``
    """

    job_type: ClassVar[str]
    next_job_type: ClassVar[str | None] = None

    def __init__(
        self,
        *,
        queue: JobQueueManager | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        if queue is None:
            from app.services.job_queue import get_job_queue_manager

            queue = get_job_queue_manager()
        self.queue = queue
        self.session_factory = session_factory

    async def run(self, context: JobContext) -> dict[str, Any]:
        """Validate, execute and hand off to the next stage; returns the job result."""
        job_info = {
            "job_id": context.job_id,
            "job_type": self.job_type,
            "brand_id": context.brand_id,
            "attempt": context.attempt,
        }
        started = monotonic()
        logger.info("Stage started", extra=job_info)

        payload = self._parse_payload(context)
        result = await self._execute(context, payload)

        next_payload = self._next_payload(context, payload, result)
        if self.next_job_type and next_payload is not None:
            result["next_job_id"] = await self._enqueue_next(context, next_payload)

        logger.info(
            "Stage completed",
            extra={**job_info, "duration_ms": round((monotonic() - started) * 1000, 2)},
        )
        return result

    async def health_check(self) -> bool:
        """Liveness probe for this stage's collaborators."""
        return True

    def _parse_payload(self, context: JobContext) -> PayloadT:
        if context.job_type != self.job_type:
            raise ValidationError(
                f"{self.job_type} worker cannot run {context.job_type} job",
                {"job_id": context.job_id},
            )
        return parse_job_payload(context.job_type, context.payload)  # type: ignore[return-value]

    @abstractmethod
    async def _execute(self, context: JobContext, payload: PayloadT) -> dict[str, Any]:
        """Override with stage-specific logic."""

    def _next_payload(
        self,
        context: JobContext,
        payload: PayloadT,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Payload for the hand-off job, or None to stop the pipeline here."""
        return None

    async def _enqueue_next(self, context: JobContext, payload: dict[str, Any]) -> str:
        """Enqueue the next stage depending on this job; safe to repeat."""
        assert self.next_job_type is not None
        idempotency_key = f"{self.next_job_type}:after:{context.job_id}"
        try:
            job = await self.queue.enqueue(
                context.brand_id,
                self.next_job_type,
                payload,
                priority=NEXT_STAGE_PRIORITY,
                depends_on=[context.job_id],
                idempotency_key=idempotency_key,
            )
        except DuplicateJobError as exc:
            logger.info(
                "Next stage already enqueued",
                extra={"job_id": context.job_id, "next_job_id": exc.existing_job_id},
            )
            return exc.existing_job_id
        return job.id
