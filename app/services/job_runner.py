"""Job runner: claims queued jobs and executes them on stage workers.

Execution state kept here (active executions, health) is local to this runner
instance. Other runners coordinate only through the job store's atomic claim.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field, replace
from datetime import datetime
from time import monotonic
from typing import Any, Protocol

from app.core.exceptions import (
    JobStateError,
    NotFoundError,
    RetryExhaustedError,
    StageTimeoutError,
    ValidationError,
)
from app.core.ids import generate_runner_id
from app.core.redis import RunnerStatusStore
from app.models.base import utcnow
from app.services.job_queue import JobQueueManager
from app.services.runner_config import RunnerConfig
from app.services.stages.base_stage import JobContext

logger = logging.getLogger(__name__)

SHUTDOWN_ERROR_MESSAGE = "runner shutdown"
TERMINAL_ERRORS: tuple[type[Exception], ...] = (
    ValidationError,
    NotFoundError,
    RetryExhaustedError,
)


class StageWorker(Protocol):
    job_type: str

    async def run(self, context: JobContext) -> dict[str, Any]: ...

    async def health_check(self) -> bool: ...


@dataclass(slots=True)
class ActiveExecution:
    context: JobContext
    task: asyncio.Task[None]
    started_at: float = field(default_factory=monotonic)
    attempt: int = 1
    state: str = "running"


@dataclass(slots=True)
class StageHealth:
    healthy: bool
    checked_at: datetime
    detail: str | None = None


def is_terminal_error(exc: BaseException) -> bool:
    """Errors that no amount of retrying will fix."""
    return isinstance(exc, TERMINAL_ERRORS)


class JobRunner:
    """Polls the queue and runs claimed jobs with timeouts, retries and backoff."""

    def __init__(
        self,
        *,
        queue: JobQueueManager,
        stages: Mapping[str, StageWorker],
        config: RunnerConfig | None = None,
        status_store: RunnerStatusStore | None = None,
        runner_id: str | None = None,
    ) -> None:
        self.config = config or RunnerConfig()
        missing = [job_type for job_type in self.config.stages if job_type not in stages]
        if missing:
            raise ValueError(f"No stage worker registered for: {', '.join(missing)}")

        self.runner_id = runner_id or generate_runner_id()
        self._queue = queue
        self._stages = {job_type: stages[job_type] for job_type in self.config.stages}
        self._status_store = status_store
        self._executions: dict[str, ActiveExecution] = {}
        self._health: dict[str, StageHealth] = {}
        self._health_tasks: dict[str, asyncio.Task[None]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._accepting = False

    @property
    def job_types(self) -> list[str]:
        return list(self._stages)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def active_count(self) -> int:
        return len(self._executions)

    def active_count_for(self, job_type: str) -> int:
        return sum(1 for e in self._executions.values() if e.context.job_type == job_type)

    def available_slots(self) -> int:
        return max(0, self.config.total_concurrency - self.active_count)

    def _types_with_capacity(self) -> list[str]:
        return [
            job_type
            for job_type, stage_config in self.config.stages.items()
            if self.active_count_for(job_type) < stage_config.concurrency
        ]

    # Lifecycle

    async def start(self) -> None:
        """Start the polling loop and per-type health checks."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._accepting = True
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"{self.runner_id}-loop")
        self._health_tasks = {
            job_type: asyncio.create_task(
                self._health_loop(job_type),
                name=f"{self.runner_id}-health-{job_type}",
            )
            for job_type in self._stages
        }
        logger.info(
            "Job runner started",
            extra={
                "runner_id": self.runner_id,
                "job_types": self.job_types,
                "total_concurrency": self.config.total_concurrency,
            },
        )

    async def wait(self) -> None:
        """Block until the polling loop exits."""
        if self._loop_task is not None:
            await self._loop_task

    async def stop(self) -> None:
        """Graceful shutdown.

        Stops claiming, gives in-flight executions the grace period to finish,
        then cancels the rest and fails their jobs with ``runner shutdown``.
        """
        self._accepting = False
        self._stop_event.set()

        health_tasks = list(self._health_tasks.values())
        for task in health_tasks:
            task.cancel()
        await asyncio.gather(*health_tasks, return_exceptions=True)
        self._health_tasks = {}

        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        pending = [execution.task for execution in self._executions.values()]
        if pending:
            logger.info(
                "Waiting for active executions",
                extra={
                    "runner_id": self.runner_id,
                    "active": len(pending),
                    "grace_seconds": self.config.shutdown_grace_seconds,
                },
            )
            _, still_running = await asyncio.wait(
                pending, timeout=self.config.shutdown_grace_seconds
            )
            forced = [
                execution
                for execution in list(self._executions.values())
                if execution.task in still_running
            ]
            for execution in forced:
                execution.task.cancel()
            await asyncio.gather(*(e.task for e in forced), return_exceptions=True)
            for execution in forced:
                logger.warning(
                    "Execution cancelled at shutdown",
                    extra={"runner_id": self.runner_id, "job_id": execution.context.job_id},
                )
                await self._finish(execution.context, "failed", error_message=SHUTDOWN_ERROR_MESSAGE)
            self._executions.clear()

        await self._withdraw_status()
        logger.info("Job runner stopped", extra={"runner_id": self.runner_id})

    async def _wait_for_stop(self, timeout: float) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, timeout))

    # Polling

    async def _run_loop(self) -> None:
        polls = 0
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
                polls += 1
                every = self.config.reaper_every_polls
                if every and polls % every == 0:
                    await self.reap_stale_jobs()
                await self._publish_status()
            except Exception:
                logger.exception("Job runner loop error", extra={"runner_id": self.runner_id})
                await self._wait_for_stop(self.config.loop_error_delay_seconds)
                continue
            await self._wait_for_stop(self.config.poll_interval_seconds)

    async def poll_once(self) -> int:
        """Claim and dispatch as many jobs as free capacity allows; returns the count."""
        slots = self.available_slots()
        if slots <= 0 or not self._accepting:
            return 0

        claimed = 0
        budget = min(slots, self.config.max_batch_size)
        while claimed < budget and self._accepting:
            job_types = self._types_with_capacity()
            if not job_types:
                break
            job = await self._queue.claim_next(job_types)
            if job is None:
                break
            self._dispatch(JobContext.from_job(job))
            claimed += 1

        if claimed:
            logger.debug(
                "Dispatched claimed jobs",
                extra={"runner_id": self.runner_id, "claimed": claimed, "active": self.active_count},
            )
        return claimed

    def _dispatch(self, context: JobContext) -> None:
        task = asyncio.create_task(
            self._execute(context),
            name=f"{self.runner_id}-{context.job_type}-{context.job_id}",
        )
        self._executions[context.job_id] = ActiveExecution(context=context, task=task)
        task.add_done_callback(lambda _: self._executions.pop(context.job_id, None))

    # Execution

    async def _execute(self, context: JobContext) -> None:
        stage = self._stages[context.job_type]
        stage_config = self.config.stages[context.job_type]
        max_attempts = stage_config.max_attempts(context.max_retries)
        execution = self._executions.get(context.job_id)
        log_extra = {
            "runner_id": self.runner_id,
            "job_id": context.job_id,
            "job_type": context.job_type,
            "max_attempts": max_attempts,
        }
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            if execution is not None:
                execution.attempt = attempt
                execution.state = "running"
            try:
                result = await asyncio.wait_for(
                    stage.run(replace(context, attempt=attempt)),
                    timeout=stage_config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = StageTimeoutError(context.job_type, stage_config.timeout_seconds)
            except Exception as exc:
                last_error = exc
            else:
                await self._finish(context, "complete", result=result)
                return

            if is_terminal_error(last_error):
                logger.warning(
                    "Stage failed with terminal error",
                    extra={**log_extra, "attempt": attempt, "error": str(last_error)},
                )
                break
            if attempt >= max_attempts:
                break

            delay = stage_config.backoff_delay(attempt, self.config.base_backoff_seconds)
            if execution is not None:
                execution.state = "retrying"
            logger.warning(
                "Stage attempt failed, retrying",
                extra={
                    **log_extra,
                    "attempt": attempt,
                    "retry_in_seconds": delay,
                    "error": str(last_error),
                    "error_class": type(last_error).__name__,
                },
            )
            await self._log_to_job(
                context.job_id,
                "WARN",
                f"Attempt {attempt} failed: {last_error}",
                {"attempt": attempt, "retry_in_seconds": delay},
            )
            await asyncio.sleep(delay)

        logger.error(
            "Job failed permanently",
            extra={**log_extra, "error": str(last_error)},
        )
        await self._finish(
            context,
            "failed",
            error_message=str(last_error) if last_error else "Job failed",
        )

    async def _finish(
        self,
        context: JobContext,
        status: str,
        *,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        try:
            await self._queue.update(
                context.job_id,
                status,
                result=result,
                error_message=error_message,
            )
        except JobStateError as exc:
            # Reaped or otherwise finalized elsewhere; the stored status wins.
            logger.warning(
                "Job already finalized, outcome dropped",
                extra={"job_id": context.job_id, "status": status, "stored_status": exc.status},
            )
        except Exception:
            logger.exception(
                "Failed to record job outcome",
                extra={"job_id": context.job_id, "status": status},
            )

    async def _log_to_job(
        self,
        job_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._queue.append_log(job_id, level, message, metadata)
        except Exception:
            logger.warning("Failed to append job log", extra={"job_id": job_id})

    async def reap_stale_jobs(self) -> list[str]:
        """Fail jobs left running past their lease bound by any runner."""
        return await self._queue.fail_stale_running(self.config.lease_bounds())

    # Health

    async def _health_loop(self, job_type: str) -> None:
        interval = self.config.stages[job_type].health_check_interval_seconds
        while not self._stop_event.is_set():
            await self.check_stage_health(job_type)
            await self._wait_for_stop(interval)

    async def check_stage_health(self, job_type: str) -> StageHealth:
        """Run one health probe; a failure marks the stage degraded but never pauses it."""
        stage_config = self.config.stages[job_type]
        detail: str | None = None
        try:
            healthy = bool(
                await asyncio.wait_for(
                    self._stages[job_type].health_check(),
                    timeout=stage_config.health_check_timeout_seconds,
                )
            )
        except asyncio.TimeoutError:
            healthy, detail = False, "health check timed out"
        except Exception as exc:
            healthy, detail = False, str(exc)

        health = StageHealth(healthy=healthy, checked_at=utcnow(), detail=detail)
        previous = self._health.get(job_type)
        self._health[job_type] = health
        if not healthy:
            logger.warning(
                "Stage health degraded",
                extra={"runner_id": self.runner_id, "job_type": job_type, "detail": detail},
            )
        elif previous is not None and not previous.healthy:
            logger.info(
                "Stage health recovered",
                extra={"runner_id": self.runner_id, "job_type": job_type},
            )
        return health

    def status(self) -> dict[str, Any]:
        """Snapshot of this runner for health reporting."""
        now = monotonic()
        stages: dict[str, Any] = {}
        for job_type, stage_config in self.config.stages.items():
            health = self._health.get(job_type)
            stages[job_type] = {
                "active": self.active_count_for(job_type),
                "concurrency": stage_config.concurrency,
                "healthy": health.healthy if health else None,
                "health_detail": health.detail if health else None,
                "health_checked_at": health.checked_at.isoformat() if health else None,
            }
        return {
            "runner_id": self.runner_id,
            "running": self.is_running,
            "accepting": self._accepting,
            "degraded": any(h is not None and not h.healthy for h in self._health.values()),
            "active_executions": [
                {
                    "job_id": execution.context.job_id,
                    "job_type": execution.context.job_type,
                    "attempt": execution.attempt,
                    "state": execution.state,
                    "elapsed_seconds": round(now - execution.started_at, 2),
                }
                for execution in self._executions.values()
            ],
            "stages": stages,
            "reported_at": utcnow().isoformat(),
        }

    async def _publish_status(self) -> None:
        if self._status_store is None:
            return
        try:
            await self._status_store.publish(self.runner_id, self.status())
        except Exception as exc:
            logger.warning(
                "Failed to publish runner status",
                extra={"runner_id": self.runner_id, "error": str(exc)},
            )

    async def _withdraw_status(self) -> None:
        if self._status_store is None:
            return
        try:
            await self._status_store.remove(self.runner_id)
        except Exception as exc:
            logger.warning(
                "Failed to remove runner status",
                extra={"runner_id": self.runner_id, "error": str(exc)},
            )
