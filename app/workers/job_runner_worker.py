"""Job runner worker process entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import suppress

from app.core.database import close_db
from app.core.logging import setup_logging
from app.core.redis import close_redis, get_runner_status_store
from app.models.job import JOB_TYPES
from app.services.job_queue import get_job_queue_manager
from app.services.job_runner import JobRunner
from app.services.runner_config import RunnerConfig
from app.services.stages.registry import build_stage_workers

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--type",
        dest="job_types",
        action="append",
        choices=["all", *JOB_TYPES],
        help="Job type to process. Repeat to select multiple types.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between queue polls (defaults to settings).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum jobs claimed per poll (defaults to settings).",
    )
    return parser.parse_args(argv)


def resolve_job_types(selected: list[str] | None) -> list[str]:
    """Resolve requested job types to a deterministic ordered list."""
    if not selected or "all" in selected:
        return list(JOB_TYPES)
    return list(dict.fromkeys(selected))


def build_runner_config(
    job_types: list[str],
    *,
    poll_interval: float | None = None,
    batch_size: int | None = None,
) -> RunnerConfig:
    config = RunnerConfig.from_settings(job_types=job_types)
    if poll_interval is not None:
        config.poll_interval_seconds = max(0.05, poll_interval)
    if batch_size is not None:
        config.max_batch_size = max(1, batch_size)
    return config


async def run_runner(*, config: RunnerConfig) -> None:
    """Start a runner and block until a shutdown signal arrives."""
    setup_logging()

    queue = get_job_queue_manager()
    runner = JobRunner(
        queue=queue,
        stages=build_stage_workers(list(config.stages), queue=queue),
        config=config,
        status_store=get_runner_status_store(),
    )
    await runner.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _request_stop() -> None:
        if not stop_event.is_set():
            logger.info("Shutdown signal received", extra={"runner_id": runner.runner_id})
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_stop)

    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping job runner process", extra={"runner_id": runner.runner_id})
        await runner.stop()
        await close_redis()
        await close_db()


def main(argv: list[str] | None = None) -> int:
    """Run the worker process."""
    args = parse_args(argv)
    config = build_runner_config(
        resolve_job_types(args.job_types),
        poll_interval=args.poll_interval,
        batch_size=args.batch_size,
    )
    try:
        asyncio.run(run_runner(config=config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
