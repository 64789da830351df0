"""Unit tests for the runner health endpoint."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from app.config import settings
from app.main import create_app


class _FakeStatusStore:
    def __init__(self, snapshots: list[dict[str, Any]]) -> None:
        self._snapshots = snapshots

    async def list_snapshots(self) -> list[dict[str, Any]]:
        return self._snapshots


def _snapshot(runner_id: str, *, active: int, healthy: dict[str, bool | None]) -> dict[str, Any]:
    return {
        "runner_id": runner_id,
        "running": True,
        "active_executions": [
            {"job_id": f"{runner_id}-{i}", "job_type": "score", "attempt": 1, "state": "running"}
            for i in range(active)
        ],
        "stages": {job_type: {"healthy": value} for job_type, value in healthy.items()},
    }


def _get_runner_health(monkeypatch: Any, snapshots: list[dict[str, Any]]) -> dict[str, Any]:
    original_environment = settings.environment
    settings.environment = "production"
    try:
        monkeypatch.setattr(
            "app.main.get_runner_status_store",
            lambda: _FakeStatusStore(snapshots),
        )
        with TestClient(create_app()) as client:
            response = client.get("/health/runners")
    finally:
        settings.environment = original_environment

    assert response.status_code == 200
    return response.json()


def test_health_runners_aggregates_live_snapshots(monkeypatch: Any) -> None:
    """Runner health endpoint sums active jobs and sorts runners."""
    payload = _get_runner_health(
        monkeypatch,
        [
            _snapshot("job-runner-bbbb", active=1, healthy={"score": True}),
            _snapshot("job-runner-aaaa", active=2, healthy={"embed": True, "sample": None}),
        ],
    )

    assert payload["status"] == "healthy"
    assert payload["runner_count"] == 2
    assert payload["active_jobs"] == 3
    assert payload["unhealthy_stages"] == []
    assert [runner["runner_id"] for runner in payload["runners"]] == [
        "job-runner-aaaa",
        "job-runner-bbbb",
    ]


def test_health_runners_reports_degraded_stages(monkeypatch: Any) -> None:
    payload = _get_runner_health(
        monkeypatch,
        [
            _snapshot("job-runner-aaaa", active=0, healthy={"embed": False, "score": True}),
            _snapshot("job-runner-bbbb", active=0, healthy={"embed": False}),
        ],
    )

    assert payload["status"] == "degraded"
    assert payload["unhealthy_stages"] == ["embed"]


def test_health_runners_without_runners_is_degraded(monkeypatch: Any) -> None:
    payload = _get_runner_health(monkeypatch, [])

    assert payload["status"] == "degraded"
    assert payload["runner_count"] == 0
