"""Identifier helpers for database rows and runner processes."""

from __future__ import annotations

import secrets
import threading
import time

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_state_lock = threading.Lock()
_last_millis = 0
_sequence = 0


def _base36(value: int) -> str:
    digits: list[str] = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def _next_sequence(now_millis: int) -> int:
    global _last_millis, _sequence

    with _state_lock:
        _sequence = _sequence + 1 if now_millis == _last_millis else 0
        _last_millis = now_millis
        return _sequence


def generate_cuid(length: int = 24) -> str:
    """Generate a sortable lowercase identifier with a `c` prefix.

    Layout is `c` + base36 milliseconds + 4-char base36 sequence + random fill,
    truncated to ``length`` characters.
    """
    now_millis = int(time.time() * 1000)
    prefix = _base36(now_millis) + _base36(_next_sequence(now_millis)).rjust(4, "0")
    body_len = max(length - 1, 8)
    fill = "".join(secrets.choice(_BASE36) for _ in range(max(body_len - len(prefix), 0)))
    return f"c{(prefix + fill)[:body_len]}"


def generate_runner_id(prefix: str = "job-runner") -> str:
    """Return a process-unique runner identifier such as `job-runner-1a2b3c4d`."""
    return f"{prefix}-{secrets.token_hex(4)}"
