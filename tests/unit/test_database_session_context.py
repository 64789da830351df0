"""Unit tests for database session context finalization behavior."""

from __future__ import annotations

from typing import Any

import pytest

from app.core.database import get_session_context


class _FakeSessionContextManager:
    def __init__(self, session: "_FakeSession") -> None:
        self._session = session

    async def __aenter__(self) -> "_FakeSession":
        return self._session

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None


class _FakeSessionMaker:
    def __init__(self, session: "_FakeSession") -> None:
        self._session = session

    def __call__(self) -> _FakeSessionContextManager:
        return _FakeSessionContextManager(self._session)


class _FakeSession:
    def __init__(self) -> None:
        self.new: set[object] = set()
        self.dirty: set[object] = set()
        self.deleted: set[object] = set()
        self.commit_calls = 0
        self.rollback_calls = 0
        self.rollback_error: Exception | None = None

    async def commit(self) -> None:
        self.commit_calls += 1

    async def rollback(self) -> None:
        self.rollback_calls += 1
        if self.rollback_error is not None:
            raise self.rollback_error


@pytest.mark.asyncio
async def test_get_session_context_commits_on_exit_by_default() -> None:
    session = _FakeSession()

    async with get_session_context(session_factory=_FakeSessionMaker(session)) as active:  # type: ignore[arg-type]
        assert active is session

    assert session.commit_calls == 1
    assert session.rollback_calls == 0


@pytest.mark.asyncio
async def test_get_session_context_non_committing_mode_rejects_pending_changes() -> None:
    session = _FakeSession()
    session.new.add(object())

    with pytest.raises(RuntimeError, match="pending ORM changes"):
        async with get_session_context(
            commit_on_exit=False,
            session_factory=_FakeSessionMaker(session),  # type: ignore[arg-type]
        ):
            pass

    assert session.commit_calls == 0
    assert session.rollback_calls == 1


@pytest.mark.asyncio
async def test_get_session_context_rolls_back_and_reraises_body_errors() -> None:
    session = _FakeSession()
    session.rollback_error = RuntimeError("connection already gone")

    with pytest.raises(ValueError, match="boom"):
        async with get_session_context(session_factory=_FakeSessionMaker(session)):  # type: ignore[arg-type]
            raise ValueError("boom")

    assert session.commit_calls == 0
    assert session.rollback_calls == 1
