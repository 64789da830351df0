"""Redis client helpers."""

import json
import logging
from typing import Any, Awaitable, cast

from redis.asyncio import Redis

from app.config import settings

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None

RUNNER_STATUS_KEY_PREFIX = "geoscore:runner:"


class RunnerStatusStore:
    """Short-lived runner status snapshots keyed by runner id."""

    def __init__(self, client: Redis, *, ttl_seconds: int) -> None:
        self._client = client
        self._ttl_seconds = max(1, ttl_seconds)

    async def publish(self, runner_id: str, snapshot: dict[str, Any]) -> None:
        """Store a snapshot that expires unless refreshed."""
        await cast(
            Awaitable[Any],
            self._client.set(
                f"{RUNNER_STATUS_KEY_PREFIX}{runner_id}",
                json.dumps(snapshot, default=str),
                ex=self._ttl_seconds,
            ),
        )

    async def remove(self, runner_id: str) -> None:
        await cast(Awaitable[int], self._client.delete(f"{RUNNER_STATUS_KEY_PREFIX}{runner_id}"))

    async def list_snapshots(self) -> list[dict[str, Any]]:
        """Return every live runner snapshot."""
        snapshots: list[dict[str, Any]] = []
        async for key in self._client.scan_iter(match=f"{RUNNER_STATUS_KEY_PREFIX}*"):
            raw = await cast(Awaitable[str | None], self._client.get(key))
            if not raw:
                continue
            try:
                snapshots.append(json.loads(raw))
            except ValueError:
                logger.warning("Skipping malformed runner snapshot", extra={"key": str(key)})
        return snapshots


def get_redis_client() -> Redis:
    """Get a shared Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def get_runner_status_store() -> RunnerStatusStore:
    """Get runner status operations on the shared Redis client."""
    return RunnerStatusStore(
        get_redis_client(),
        ttl_seconds=settings.runner_status_ttl_seconds,
    )


async def close_redis() -> None:
    """Close Redis client connections."""
    global _redis_client
    if _redis_client is None:
        return

    await _redis_client.aclose()
    _redis_client = None
    logger.info("Redis connection closed")
