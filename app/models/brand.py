"""Brand model."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Brand(Base, UUIDMixin, TimestampMixin):
    """A tracked brand whose visibility is measured."""

    __tablename__ = "brands"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    competitors: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Brand {self.name}>"
