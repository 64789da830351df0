"""Database kernel utilities for short-lived read/write operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from time import monotonic
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_context

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")

SessionFactory = async_sessionmaker[AsyncSession]

_CONNECTION_ERROR_MARKERS = (
    "connection is closed",
    "underlying connection is closed",
    "server closed the connection unexpectedly",
    "connection was closed",
    "could not serialize access",
    "deadlock detected",
)


class DbKernelError(RuntimeError):
    """Base error for DB kernel operations."""


class TransientDbError(DbKernelError):
    """Transient DB failure that can usually be retried."""


class ConflictError(DbKernelError):
    """Write conflict (usually integrity/unique constraint)."""


class PermanentDbError(DbKernelError):
    """Non-transient DB failure."""


def is_transient_connection_error(exc: BaseException) -> bool:
    """Return True when an exception likely came from a dropped connection or lock conflict."""
    if isinstance(exc, (InterfaceError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True

    lowered = str(exc).lower()
    return any(marker in lowered for marker in _CONNECTION_ERROR_MARKERS)


def _translate_error(exc: Exception) -> Exception:
    # Application errors raised inside the callback pass through untouched.
    if not isinstance(exc, (DBAPIError, OSError)) and not is_transient_connection_error(exc):
        return exc
    if isinstance(exc, IntegrityError):
        return ConflictError(str(exc))
    if is_transient_connection_error(exc):
        return TransientDbError(str(exc))
    return PermanentDbError(str(exc))


def _elapsed_ms(started: float) -> float:
    return round((monotonic() - started) * 1000, 2)


async def db_read(
    fn: Callable[[AsyncSession], Awaitable[_ResultT]],
    *,
    operation_name: str,
    session_factory: SessionFactory | None = None,
) -> _ResultT:
    """Execute a read operation in a short-lived session."""
    started = monotonic()
    try:
        async with get_session_context(
            commit_on_exit=False, session_factory=session_factory
        ) as session:
            result = await fn(session)
        logger.debug(
            "DB read operation completed",
            extra={"operation": operation_name, "duration_ms": _elapsed_ms(started)},
        )
        return result
    except Exception as exc:
        translated = _translate_error(exc)
        if translated is exc:
            raise
        logger.warning(
            "DB read operation failed",
            extra={
                "operation": operation_name,
                "duration_ms": _elapsed_ms(started),
                "failure_class": type(translated).__name__,
            },
        )
        raise translated from exc


async def db_write_no_retry(
    fn: Callable[[AsyncSession], Awaitable[_ResultT]],
    *,
    operation_name: str,
    session_factory: SessionFactory | None = None,
) -> _ResultT:
    """Execute a write operation in a short-lived session without retries."""
    return await db_write(
        fn,
        operation_name=operation_name,
        attempts=1,
        session_factory=session_factory,
    )


async def db_write(
    fn: Callable[[AsyncSession], Awaitable[_ResultT]],
    *,
    operation_name: str,
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    session_factory: SessionFactory | None = None,
) -> _ResultT:
    """Execute a write operation, retrying transient failures with linear backoff."""
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    started = monotonic()
    for attempt in range(1, attempts + 1):
        try:
            async with get_session_context(
                commit_on_exit=False, session_factory=session_factory
            ) as session:
                result = await fn(session)
                await session.commit()
            logger.debug(
                "DB write operation completed",
                extra={
                    "operation": operation_name,
                    "duration_ms": _elapsed_ms(started),
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
            return result
        except Exception as exc:
            translated = _translate_error(exc)
            if translated is exc:
                raise
            is_retryable = isinstance(translated, TransientDbError) and attempt < attempts
            logger.warning(
                "DB write operation failed",
                extra={
                    "operation": operation_name,
                    "duration_ms": _elapsed_ms(started),
                    "failure_class": type(translated).__name__,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "will_retry": is_retryable,
                },
            )
            if not is_retryable:
                raise translated from exc
            await asyncio.sleep(base_delay_seconds * attempt)

    raise RuntimeError(f"DB write retry loop exhausted unexpectedly: {operation_name}")
