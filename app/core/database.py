"""Async SQLAlchemy database setup."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def _has_pending_state(session: AsyncSession) -> bool:
    return bool(session.new or session.dirty or session.deleted)


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        logger.warning("Rollback also failed (connection likely closed)")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection; commits on success."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except InterfaceError as e:
            if not session.in_transaction() and not _has_pending_state(session):
                logger.debug("Session connection already closed during cleanup, ignoring")
                return
            logger.warning("Database interface error with active transaction, rolling back", extra={"error": repr(e)})
            await _rollback_quietly(session)
            raise
        except Exception as e:
            logger.warning("Database session error, rolling back", extra={"error": repr(e)})
            await _rollback_quietly(session)
            raise


@asynccontextmanager
async def get_session_context(
    *,
    commit_on_exit: bool = True,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session as context manager for non-DI usage."""
    factory = session_factory or async_session_maker
    async with factory() as session:
        try:
            yield session
            if commit_on_exit:
                await session.commit()
            elif _has_pending_state(session):
                raise RuntimeError(
                    "Session has pending ORM changes but commit_on_exit=False. "
                    "Commit explicitly or use commit_on_exit=True."
                )
        except Exception as e:
            logger.warning("Database session error, rolling back", extra={"error": repr(e)})
            await _rollback_quietly(session)
            raise


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    logger.info("Initializing database tables")
    import app.models  # noqa: F401  registers mappers
    from app.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    logger.info("Closing database connections")
    await engine.dispose()
