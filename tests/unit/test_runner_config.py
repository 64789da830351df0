"""Unit tests for per-type runner policies."""

from __future__ import annotations

import pytest

from app.config import Settings
from app.services.runner_config import DEFAULT_STAGE_CONFIGS, RunnerConfig, StageRuntimeConfig


def _stage(**overrides: object) -> StageRuntimeConfig:
    values: dict[str, object] = {
        "job_type": "score",
        "concurrency": 2,
        "timeout_seconds": 10,
        "max_retries": 3,
        "max_backoff_seconds": 5,
    }
    values.update(overrides)
    return StageRuntimeConfig(**values)  # type: ignore[arg-type]


def test_max_attempts_is_one_plus_lowest_retry_ceiling() -> None:
    stage = _stage(max_retries=3)

    assert stage.max_attempts() == 4
    assert stage.max_attempts(1) == 2
    assert stage.max_attempts(10) == 4
    assert stage.max_attempts(0) == 1


def test_backoff_grows_exponentially_and_is_capped() -> None:
    stage = _stage(max_backoff_seconds=5)

    assert [stage.backoff_delay(attempt, 1.0) for attempt in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]


def test_lease_covers_all_attempts_backoff_and_grace() -> None:
    stage = _stage(timeout_seconds=10, max_retries=2, max_backoff_seconds=60)

    # 3 attempts x 10s + backoff 1s + 2s + 30s grace
    assert stage.lease_seconds(1.0, 30.0) == pytest.approx(63.0)


def test_default_table_covers_every_job_type() -> None:
    assert set(DEFAULT_STAGE_CONFIGS) == {
        "brand_onboard",
        "normalize",
        "embed",
        "sample",
        "score",
        "assemble_report",
    }
    assert DEFAULT_STAGE_CONFIGS["sample"].concurrency == 1


def test_from_settings_applies_overrides_and_selection() -> None:
    app_settings = Settings(
        runner_concurrency_overrides="embed:4, score:x, bogus",
        runner_poll_interval_seconds=2.5,
        runner_max_batch_size=0,
    )

    config = RunnerConfig.from_settings(app_settings, job_types=["embed", "score"])

    assert list(config.stages) == ["embed", "score"]
    assert config.stages["embed"].concurrency == 4
    assert config.stages["score"].concurrency == DEFAULT_STAGE_CONFIGS["score"].concurrency
    assert config.poll_interval_seconds == 2.5
    assert config.max_batch_size == 1
    assert config.total_concurrency == 4 + DEFAULT_STAGE_CONFIGS["score"].concurrency


def test_from_settings_rejects_unknown_types() -> None:
    with pytest.raises(ValueError, match="Unknown job types"):
        RunnerConfig.from_settings(Settings(), job_types=["crawl"])
