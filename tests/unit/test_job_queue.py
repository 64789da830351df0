"""Queue manager behavior against an in-memory SQLite job store."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.exceptions import (
    BrandNotFoundError,
    DuplicateJobError,
    JobNotFoundError,
    JobStateError,
    RetryExhaustedError,
    ValidationError,
)
from app.models import Base, Brand
from app.models.base import utcnow
from app.services.job_queue import CANCELLED_MESSAGE, LEASE_EXPIRED_MESSAGE, JobQueueManager

SCORE_PAYLOAD = {"include_competitor_analysis": False}


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def queue(session_factory: async_sessionmaker[AsyncSession]) -> JobQueueManager:
    return JobQueueManager(session_factory=session_factory)


@pytest_asyncio.fixture
async def brand_id(session_factory: async_sessionmaker[AsyncSession]) -> str:
    async with session_factory() as session:
        brand = Brand(name="Acme", domain="acme.com", competitors=["Globex"])
        session.add(brand)
        await session.commit()
        return brand.id


@pytest.mark.asyncio
async def test_dependent_job_waits_for_upstream_completion(
    queue: JobQueueManager, brand_id: str
) -> None:
    upstream = await queue.enqueue(brand_id, "normalize", {"raw_page_ids": ["p1"]})
    dependent = await queue.enqueue(
        brand_id, "embed", {"content_ids": ["c1"]}, depends_on=[upstream.id]
    )

    assert await queue.claim_next(["embed"]) is None

    claimed = await queue.claim_next(["normalize", "embed"])
    assert claimed is not None and claimed.id == upstream.id
    assert claimed.status == "running"
    assert claimed.started_at is not None

    assert await queue.claim_next(["embed"]) is None

    await queue.update(upstream.id, "complete", result={"processed": 1})
    ready = await queue.claim_next(["embed"])
    assert ready is not None and ready.id == dependent.id


@pytest.mark.asyncio
async def test_dependent_of_failed_job_stays_blocked(queue: JobQueueManager, brand_id: str) -> None:
    upstream = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.enqueue(brand_id, "assemble_report", {}, depends_on=[upstream.id])

    await queue.claim_next(["score"])
    await queue.update(upstream.id, "failed", error_message="boom")

    assert await queue.claim_next(["assemble_report"]) is None


@pytest.mark.asyncio
async def test_unclaimed_jobs_reject_status_updates(queue: JobQueueManager, brand_id: str) -> None:
    upstream = await queue.enqueue(brand_id, "normalize", {"raw_page_ids": ["p1"]})
    dependent = await queue.enqueue(
        brand_id, "embed", {"content_ids": ["c1"]}, depends_on=[upstream.id]
    )

    for status in ("running", "complete", "failed"):
        with pytest.raises(JobStateError):
            await queue.update(dependent.id, status)

    stored = await queue.get_job(dependent.id)
    assert stored.status == "queued"
    assert stored.started_at is None
    assert (await queue.get_job(upstream.id)).status == "queued"
    assert await queue.claim_next(["embed"]) is None


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_job(queue: JobQueueManager, brand_id: str) -> None:
    enqueued = {(await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)).id for _ in range(3)}

    results = await asyncio.gather(*(queue.claim_next(["score"]) for _ in range(6)))

    claimed = [job.id for job in results if job is not None]
    assert len(claimed) == 3
    assert set(claimed) == enqueued


@pytest.mark.asyncio
async def test_claim_order_is_priority_then_age(queue: JobQueueManager, brand_id: str) -> None:
    low = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, priority=5)
    first_urgent = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, priority=2)
    second_urgent = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, priority=2)

    claimed = [await queue.claim_next(["score"]) for _ in range(4)]

    assert [job.id if job else None for job in claimed] == [
        first_urgent.id,
        second_urgent.id,
        low.id,
        None,
    ]


@pytest.mark.asyncio
async def test_claim_next_rejects_unknown_types(queue: JobQueueManager) -> None:
    with pytest.raises(ValidationError):
        await queue.claim_next(["crawl"])
    with pytest.raises(ValidationError):
        await queue.claim_next([])


@pytest.mark.asyncio
async def test_idempotency_key_is_unique_per_type(queue: JobQueueManager, brand_id: str) -> None:
    first = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, idempotency_key="run-1")

    with pytest.raises(DuplicateJobError) as exc_info:
        await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, idempotency_key="run-1")

    assert exc_info.value.existing_job_id == first.id
    other_type = await queue.enqueue(brand_id, "assemble_report", {}, idempotency_key="run-1")
    assert other_type.id != first.id


@pytest.mark.asyncio
async def test_enqueue_validation(queue: JobQueueManager, brand_id: str) -> None:
    with pytest.raises(BrandNotFoundError):
        await queue.enqueue("missing-brand", "score", SCORE_PAYLOAD)
    with pytest.raises(JobNotFoundError):
        await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, depends_on=["missing-job"])
    with pytest.raises(ValidationError):
        await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, priority=11)
    with pytest.raises(ValidationError):
        await queue.enqueue(brand_id, "normalize", {"raw_page_ids": []})
    with pytest.raises(ValidationError):
        await queue.enqueue(brand_id, "crawl", {})


@pytest.mark.asyncio
async def test_payload_is_stored_validated_and_snake_case(
    queue: JobQueueManager, brand_id: str
) -> None:
    job = await queue.enqueue(brand_id, "embed", {"contentIds": ["c1"], "chunkSize": 300})

    stored = await queue.get_job(job.id)
    assert stored.payload == {"content_ids": ["c1"], "chunk_size": 300, "chunk_overlap": 50}


@pytest.mark.asyncio
async def test_retry_creates_new_row_until_ceiling(queue: JobQueueManager, brand_id: str) -> None:
    upstream = await queue.enqueue(brand_id, "sample", {})
    original = await queue.enqueue(
        brand_id, "score", SCORE_PAYLOAD, priority=3, depends_on=[upstream.id]
    )
    await queue.cancel(original.id)

    current = original
    for expected_retry_count in (1, 2, 3):
        retry = await queue.retry(current.id, reason="manual")
        assert retry.id != current.id
        assert retry.status == "queued"
        assert retry.retry_count == expected_retry_count
        assert retry.retries_from == current.id
        assert retry.payload == original.payload
        await queue.cancel(retry.id)
        current = retry

    assert current.priority == 1
    with pytest.raises(RetryExhaustedError):
        await queue.retry(current.id)

    untouched = await queue.get_job(original.id)
    assert untouched.status == "failed"
    assert untouched.retry_count == 0


@pytest.mark.asyncio
async def test_retry_inherits_dependencies(queue: JobQueueManager, brand_id: str) -> None:
    upstream = await queue.enqueue(brand_id, "sample", {})
    original = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD, depends_on=[upstream.id])
    await queue.cancel(original.id)

    retry = await queue.retry(original.id)
    assert await queue.claim_next(["score"]) is None

    await queue.claim_next(["sample"])
    await queue.update(upstream.id, "complete", result={})
    claimed = await queue.claim_next(["score"])
    assert claimed is not None and claimed.id == retry.id


@pytest.mark.asyncio
async def test_retry_requires_failed_status(queue: JobQueueManager, brand_id: str) -> None:
    job = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)

    with pytest.raises(JobStateError):
        await queue.retry(job.id)
    with pytest.raises(JobNotFoundError):
        await queue.retry("missing-job")


@pytest.mark.asyncio
async def test_cancel_only_applies_to_queued_jobs(queue: JobQueueManager, brand_id: str) -> None:
    queued = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    running = await queue.enqueue(brand_id, "assemble_report", {})
    await queue.claim_next(["assemble_report"])

    cancelled = await queue.cancel(queued.id)
    assert cancelled.status == "failed"
    assert cancelled.error_message == CANCELLED_MESSAGE

    with pytest.raises(JobStateError):
        await queue.cancel(running.id)
    with pytest.raises(JobStateError):
        await queue.cancel(queued.id)


@pytest.mark.asyncio
async def test_terminal_jobs_reject_further_updates(queue: JobQueueManager, brand_id: str) -> None:
    job = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.claim_next(["score"])
    await queue.update(job.id, "complete", result={"overall_score": 70})

    with pytest.raises(JobStateError):
        await queue.update(job.id, "failed", error_message="late report")
    with pytest.raises(ValidationError):
        await queue.update(job.id, "queued")

    stored = await queue.get_job(job.id)
    assert stored.status == "complete"
    assert stored.progress == 100
    assert stored.result == {"overall_score": 70}


@pytest.mark.asyncio
async def test_running_update_records_progress(queue: JobQueueManager, brand_id: str) -> None:
    job = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.claim_next(["score"])

    updated = await queue.update(job.id, "running", progress=40)

    assert updated.status == "running"
    assert updated.progress == 40


@pytest.mark.asyncio
async def test_job_log_records_lifecycle(queue: JobQueueManager, brand_id: str) -> None:
    job = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.claim_next(["score"])
    await queue.append_log(job.id, "DEBUG", "Stage attempt 1", {"attempt": 1})
    await queue.update(job.id, "failed", error_message="bad input")

    entries = await queue.list_logs(job.id)

    assert [(entry["level"], entry["message"]) for entry in entries] == [
        ("INFO", "Job enqueued"),
        ("INFO", "Job claimed"),
        ("DEBUG", "Stage attempt 1"),
        ("ERROR", "bad input"),
    ]
    assert entries[-1]["metadata"]["retry_permitted"] is True

    with pytest.raises(ValidationError):
        await queue.append_log(job.id, "TRACE", "nope")
    with pytest.raises(JobNotFoundError):
        await queue.list_logs("missing-job")


@pytest.mark.asyncio
async def test_list_jobs_filters_and_paginates(queue: JobQueueManager, brand_id: str) -> None:
    for _ in range(3):
        await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.enqueue(brand_id, "assemble_report", {})

    page = await queue.list_jobs(brand_id=brand_id, job_type="score", limit=2)

    assert page.total == 3
    assert len(page.jobs) == 2
    assert page.has_more is True
    assert all(job.type == "score" for job in page.jobs)

    last_page = await queue.list_jobs(brand_id=brand_id, limit=2, offset=2)
    assert last_page.total == 4
    assert last_page.has_more is False


@pytest.mark.asyncio
async def test_queue_stats_and_health(queue: JobQueueManager, brand_id: str) -> None:
    for _ in range(10):
        await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    failed = await queue.enqueue(brand_id, "assemble_report", {})
    await queue.claim_next(["assemble_report"])
    await queue.update(failed.id, "failed", error_message="boom")

    stats = await queue.queue_stats()

    assert stats.by_status == {"queued": 10, "running": 0, "complete": 0, "failed": 1}
    assert stats.by_type["score"]["queued"] == 10
    assert stats.by_type["assemble_report"]["failed"] == 1
    assert stats.total == 11
    assert stats.queue_health == "healthy"

    for _ in range(2):
        extra = await queue.enqueue(brand_id, "assemble_report", {})
        await queue.claim_next(["assemble_report"])
        await queue.update(extra.id, "failed", error_message="boom")
    assert (await queue.queue_stats()).queue_health == "unhealthy"


@pytest.mark.asyncio
async def test_fail_stale_running_reaps_jobs_past_their_lease(
    queue: JobQueueManager, brand_id: str
) -> None:
    job = await queue.enqueue(brand_id, "score", SCORE_PAYLOAD)
    await queue.claim_next(["score"])
    later = utcnow() + timedelta(seconds=120)

    assert await queue.fail_stale_running({"score": 600}, now=later) == []

    reaped = await queue.fail_stale_running({"score": 60, "embed": 60}, now=later)

    assert reaped == [job.id]
    stored = await queue.get_job(job.id)
    assert stored.status == "failed"
    assert stored.error_message == LEASE_EXPIRED_MESSAGE
    with pytest.raises(JobStateError):
        await queue.update(job.id, "complete", result={})
