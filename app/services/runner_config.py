"""Per-job-type execution policy for the job runner."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from app.config import Settings, settings


@dataclass(frozen=True, slots=True)
class StageRuntimeConfig:
    """Concurrency, timeout and retry policy for one job type."""

    job_type: str
    concurrency: int
    timeout_seconds: float
    max_retries: int
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    health_check_interval_seconds: float = 30.0
    health_check_timeout_seconds: float = 5.0

    def max_attempts(self, job_max_retries: int | None = None) -> int:
        """Attempts per execution: one initial call plus the allowed retries.

        A job row may lower, but never raise, the type's retry ceiling.
        """
        retries = self.max_retries
        if job_max_retries is not None:
            retries = min(retries, max(0, job_max_retries))
        return retries + 1

    def backoff_delay(self, attempt: int, base_delay_seconds: float) -> float:
        """Delay after failed ``attempt`` (1-based)."""
        delay = base_delay_seconds * self.backoff_multiplier ** max(0, attempt - 1)
        return min(delay, self.max_backoff_seconds)

    def lease_seconds(self, base_delay_seconds: float, grace_seconds: float) -> float:
        """Longest time a healthy runner can keep a job of this type running."""
        attempts = self.max_attempts()
        backoff_total = sum(
            self.backoff_delay(attempt, base_delay_seconds) for attempt in range(1, attempts)
        )
        return self.timeout_seconds * attempts + backoff_total + grace_seconds


DEFAULT_STAGE_CONFIGS: dict[str, StageRuntimeConfig] = {
    "brand_onboard": StageRuntimeConfig(
        job_type="brand_onboard",
        concurrency=2,
        timeout_seconds=300,
        max_retries=3,
        max_backoff_seconds=60,
        health_check_interval_seconds=30,
        health_check_timeout_seconds=5,
    ),
    "normalize": StageRuntimeConfig(
        job_type="normalize",
        concurrency=3,
        timeout_seconds=180,
        max_retries=3,
        max_backoff_seconds=60,
        health_check_interval_seconds=30,
        health_check_timeout_seconds=5,
    ),
    "embed": StageRuntimeConfig(
        job_type="embed",
        concurrency=2,
        timeout_seconds=600,
        max_retries=2,
        max_backoff_seconds=120,
        health_check_interval_seconds=60,
        health_check_timeout_seconds=10,
    ),
    "sample": StageRuntimeConfig(
        job_type="sample",
        concurrency=1,
        timeout_seconds=1800,
        max_retries=2,
        max_backoff_seconds=300,
        health_check_interval_seconds=60,
        health_check_timeout_seconds=15,
    ),
    "score": StageRuntimeConfig(
        job_type="score",
        concurrency=3,
        timeout_seconds=120,
        max_retries=3,
        max_backoff_seconds=60,
        health_check_interval_seconds=30,
        health_check_timeout_seconds=5,
    ),
    "assemble_report": StageRuntimeConfig(
        job_type="assemble_report",
        concurrency=2,
        timeout_seconds=300,
        max_retries=2,
        max_backoff_seconds=120,
        health_check_interval_seconds=30,
        health_check_timeout_seconds=10,
    ),
}


@dataclass(slots=True)
class RunnerConfig:
    """Process-wide runner settings plus the per-type policies it serves."""

    stages: dict[str, StageRuntimeConfig] = field(
        default_factory=lambda: dict(DEFAULT_STAGE_CONFIGS)
    )
    poll_interval_seconds: float = 5.0
    max_batch_size: int = 5
    shutdown_grace_seconds: float = 30.0
    base_backoff_seconds: float = 1.0
    loop_error_delay_seconds: float = 5.0
    reaper_every_polls: int = 12

    @property
    def total_concurrency(self) -> int:
        return sum(stage.concurrency for stage in self.stages.values())

    def lease_bounds(self) -> dict[str, float]:
        return {
            job_type: stage.lease_seconds(self.base_backoff_seconds, self.shutdown_grace_seconds)
            for job_type, stage in self.stages.items()
        }

    @classmethod
    def from_settings(
        cls,
        app_settings: Settings = settings,
        *,
        job_types: Iterable[str] | None = None,
    ) -> RunnerConfig:
        """Build a config for ``job_types`` (all types when omitted)."""
        selected = list(job_types) if job_types else list(DEFAULT_STAGE_CONFIGS)
        unknown = [job_type for job_type in selected if job_type not in DEFAULT_STAGE_CONFIGS]
        if unknown:
            raise ValueError(f"Unknown job types: {', '.join(unknown)}")

        overrides = app_settings.get_runner_concurrency_overrides()
        stages = {
            job_type: (
                replace(DEFAULT_STAGE_CONFIGS[job_type], concurrency=overrides[job_type])
                if job_type in overrides
                else DEFAULT_STAGE_CONFIGS[job_type]
            )
            for job_type in selected
        }
        return cls(
            stages=stages,
            poll_interval_seconds=max(0.05, app_settings.runner_poll_interval_seconds),
            max_batch_size=max(1, app_settings.runner_max_batch_size),
            shutdown_grace_seconds=max(0.0, app_settings.runner_shutdown_grace_seconds),
            base_backoff_seconds=max(0.0, app_settings.runner_base_backoff_seconds),
            loop_error_delay_seconds=max(0.05, app_settings.runner_loop_error_delay_seconds),
            reaper_every_polls=max(0, app_settings.runner_reaper_every_polls),
        )
