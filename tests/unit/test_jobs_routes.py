"""Unit tests for job queue API routes."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.core.exceptions import (
    BrandNotFoundError,
    DuplicateJobError,
    JobNotFoundError,
    JobStateError,
    RetryExhaustedError,
    ValidationError,
)
from app.main import create_app
from app.services.job_queue import JobPage, QueueStats, get_job_queue_manager

PREFIX = "/api/v1/jobs"
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


def _job(job_id: str = "job-1", **overrides: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "id": job_id,
        "brand_id": "brand-1",
        "type": "score",
        "status": "queued",
        "payload": {"include_competitor_analysis": False},
        "priority": 5,
        "retry_count": 0,
        "max_retries": 3,
        "idempotency_key": None,
        "retries_from": None,
        "progress": None,
        "error_message": None,
        "result": None,
        "created_at": NOW,
        "started_at": None,
        "completed_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class _FakeQueue:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    def _raise_if_set(self) -> None:
        if self.error is not None:
            raise self.error

    async def enqueue(self, brand_id: str, job_type: str, payload: dict[str, Any], **kwargs: Any):
        self.calls.append(("enqueue", {"brand_id": brand_id, "type": job_type, **kwargs}))
        self._raise_if_set()
        return _job(brand_id=brand_id, type=job_type, priority=kwargs["priority"])

    async def claim_next(self, job_types: list[str]):
        self.calls.append(("claim_next", job_types))
        self._raise_if_set()
        return _job(status="running", started_at=NOW) if "score" in job_types else None

    async def update(self, job_id: str, status: str, **kwargs: Any):
        self.calls.append(("update", {"job_id": job_id, "status": status, **kwargs}))
        self._raise_if_set()
        return _job(job_id, status=status, result=kwargs.get("result"))

    async def retry(self, job_id: str, *, reason: str | None = None):
        self.calls.append(("retry", {"job_id": job_id, "reason": reason}))
        self._raise_if_set()
        return _job("job-2", retry_count=1, retries_from=job_id, priority=4)

    async def cancel(self, job_id: str):
        self._raise_if_set()
        return _job(job_id, status="failed", error_message="Job cancelled by user")

    async def list_logs(self, job_id: str):
        self._raise_if_set()
        return [{"level": "INFO", "message": "Job enqueued", "metadata": None, "created_at": NOW}]

    async def list_jobs(self, **kwargs: Any):
        self.calls.append(("list_jobs", kwargs))
        return JobPage(jobs=[_job("job-1"), _job("job-2")], total=5, limit=kwargs["limit"], offset=kwargs["offset"])

    async def queue_stats(self):
        return QueueStats(
            by_status={"queued": 3, "running": 1, "complete": 4, "failed": 0},
            by_type={"score": {"queued": 3, "running": 1, "complete": 4, "failed": 0}},
        )


@pytest.fixture
def fake_queue() -> _FakeQueue:
    return _FakeQueue()


@pytest.fixture
def client(fake_queue: _FakeQueue) -> Iterator[TestClient]:
    original_environment = settings.environment
    settings.environment = "production"
    app = create_app()
    app.dependency_overrides[get_job_queue_manager] = lambda: fake_queue
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        settings.environment = original_environment


def test_enqueue_returns_created_job(client: TestClient, fake_queue: _FakeQueue) -> None:
    response = client.post(
        f"{PREFIX}/enqueue",
        json={
            "brandId": "brand-1",
            "type": "score",
            "payload": {"includeCompetitorAnalysis": True},
            "priority": 2,
            "dependsOn": ["job-0"],
            "idempotencyKey": "score:brand-1",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["jobId"] == "job-1"
    assert body["job"]["status"] == "queued"
    assert body["job"]["priority"] == 2
    _, kwargs = fake_queue.calls[0]
    assert kwargs["depends_on"] == ["job-0"]
    assert kwargs["idempotency_key"] == "score:brand-1"


def test_enqueue_duplicate_returns_existing_job_id(client: TestClient, fake_queue: _FakeQueue) -> None:
    fake_queue.error = DuplicateJobError("score", "score:brand-1", "job-existing")

    response = client.post(f"{PREFIX}/enqueue", json={"brandId": "brand-1", "type": "score"})

    assert response.status_code == 409
    assert response.json() == {
        "detail": "Job with this idempotency key already exists",
        "existingJobId": "job-existing",
    }


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (BrandNotFoundError("brand-1"), 404),
        (JobNotFoundError("job-0"), 404),
        (ValidationError("Invalid payload for score job", {"job_type": "score"}), 422),
    ],
)
def test_enqueue_error_mapping(
    client: TestClient,
    fake_queue: _FakeQueue,
    error: Exception,
    status_code: int,
) -> None:
    fake_queue.error = error

    response = client.post(f"{PREFIX}/enqueue", json={"brandId": "brand-1", "type": "score"})

    assert response.status_code == status_code


def test_enqueue_rejects_unknown_type_and_priority(client: TestClient) -> None:
    assert client.post(f"{PREFIX}/enqueue", json={"brandId": "b", "type": "crawl"}).status_code == 422
    assert (
        client.post(f"{PREFIX}/enqueue", json={"brandId": "b", "type": "score", "priority": 0}).status_code
        == 422
    )


def test_claim_next_parses_types(client: TestClient, fake_queue: _FakeQueue) -> None:
    response = client.get(f"{PREFIX}/next", params={"types": "embed, score"})

    assert response.status_code == 200
    assert response.json()["job"]["status"] == "running"
    assert fake_queue.calls[-1] == ("claim_next", ["embed", "score"])

    empty = client.get(f"{PREFIX}/next", params={"types": "embed"})
    assert empty.json() == {"job": None}


def test_update_job_reports_completion(client: TestClient, fake_queue: _FakeQueue) -> None:
    response = client.put(
        f"{PREFIX}/job-job-1",
        json={"status": "complete", "result": {"overallScore": 71}},
    )

    assert response.status_code == 200
    assert response.json()["job"]["status"] == "complete"
    _, kwargs = fake_queue.calls[-1]
    assert kwargs["job_id"] == "job-1"
    assert kwargs["result"] == {"overallScore": 71}


def test_update_finished_job_conflicts(client: TestClient, fake_queue: _FakeQueue) -> None:
    fake_queue.error = JobStateError("job-1", "complete", "mark failed")

    response = client.put(f"{PREFIX}/job-job-1", json={"status": "failed"})

    assert response.status_code == 409


def test_retry_returns_new_job(client: TestClient, fake_queue: _FakeQueue) -> None:
    response = client.post(f"{PREFIX}/retry", json={"jobId": "job-1", "reason": "manual"})

    assert response.status_code == 200
    body = response.json()
    assert body["newJobId"] == "job-2"
    assert body["job"]["retriesFrom"] == "job-1"
    assert body["job"]["retryCount"] == 1


@pytest.mark.parametrize(
    ("error", "status_code", "detail"),
    [
        (JobNotFoundError("job-1"), 404, "Job not found"),
        (RetryExhaustedError("job-1", 3, 3), 400, "Maximum retries exceeded"),
    ],
)
def test_retry_error_mapping(
    client: TestClient,
    fake_queue: _FakeQueue,
    error: Exception,
    status_code: int,
    detail: str,
) -> None:
    fake_queue.error = error

    response = client.post(f"{PREFIX}/retry", json={"jobId": "job-1"})

    assert response.status_code == status_code
    assert response.json()["detail"] == detail


def test_cancel_queued_job(client: TestClient) -> None:
    response = client.delete(f"{PREFIX}/job-job-1")

    assert response.status_code == 200
    assert response.json() == {"jobId": "job-1", "status": "failed", "message": "Job cancelled"}


def test_cancel_running_job_conflicts(client: TestClient, fake_queue: _FakeQueue) -> None:
    fake_queue.error = JobStateError("job-1", "running", "cancel")

    assert client.delete(f"{PREFIX}/job-job-1").status_code == 409


def test_job_logs(client: TestClient) -> None:
    response = client.get(f"{PREFIX}/job-job-1/logs")

    assert response.status_code == 200
    assert response.json()[0]["message"] == "Job enqueued"


def test_list_jobs_paginates(client: TestClient, fake_queue: _FakeQueue) -> None:
    response = client.get(
        f"{PREFIX}/jobs",
        params={"brandId": "brand-1", "type": "score", "status": "queued", "limit": 2},
    )

    assert response.status_code == 200
    body = response.json()
    assert [job["id"] for job in body["jobs"]] == ["job-1", "job-2"]
    assert body["pagination"] == {"total": 5, "limit": 2, "offset": 0, "hasMore": True}
    _, kwargs = fake_queue.calls[-1]
    assert kwargs == {
        "brand_id": "brand-1",
        "job_type": "score",
        "status": "queued",
        "limit": 2,
        "offset": 0,
    }


def test_list_jobs_rejects_large_limit(client: TestClient) -> None:
    assert client.get(f"{PREFIX}/jobs", params={"limit": 500}).status_code == 422


def test_queue_stats(client: TestClient) -> None:
    response = client.get(f"{PREFIX}/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 8
    assert body["queueHealth"] == "healthy"
    assert body["byType"]["score"]["complete"] == 4
