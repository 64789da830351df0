"""Base model and mixins for SQLAlchemy models."""

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator

from app.core.ids import generate_cuid

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class StringUUID(TypeDecorator):
    """String identifier type for CUID values."""

    impl = String(32)
    cache_ok = True

    def process_result_value(self, value, dialect):
        if value is not None:
            return str(value)
        return value

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return value


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UUIDMixin:
    """Mixin that adds a CUID-style string primary key."""

    id: Mapped[str] = mapped_column(
        StringUUID(),
        primary_key=True,
        default=generate_cuid,
    )


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps.

    Values are set client-side as well so rows created in the same transaction
    keep a stable creation order.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )
