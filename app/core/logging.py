"""Logging setup: one readable line per record, structured extras appended as JSON."""

import json
import logging
import sys

from app.config import settings

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}

# Pulled out of the extras and shown as tags so runner output can be grepped per job.
CONTEXT_TAGS = (("runner_id", "runner"), ("job_id", "job"))


class JobContextFormatter(logging.Formatter):
    """Render ``time | LEVEL | logger | [tags] message {extras}``.

    Example:
        2026-01-15 10:30:45 | WARNING  | app.services.job_runner | [runner=job-runner-1a2b3c4d job=c9x...] Stage attempt failed, retrying {"attempt": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }

        tags = [f"{label}={extras.pop(key)}" for key, label in CONTEXT_TAGS if key in extras]
        message = f"[{' '.join(tags)}] {record.message}" if tags else record.message
        line = f"{self.formatTime(record, self.datefmt)} | {record.levelname:<8} | {record.name} | {message}"

        if extras:
            try:
                line = f"{line} {json.dumps(extras, default=str, ensure_ascii=False, sort_keys=True)}"
            except (TypeError, ValueError):
                line = f"{line} {extras!r}"

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


def resolve_level(level: str | int | None = None) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName((level or settings.log_level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int | None = None) -> None:
    """Attach the console handler to the ``app`` logger; safe to call repeatedly."""
    app_logger = logging.getLogger("app")
    log_level = resolve_level(level)
    app_logger.setLevel(log_level)

    if any(isinstance(h.formatter, JobContextFormatter) for h in app_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JobContextFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    app_logger.addHandler(handler)
    app_logger.propagate = False
