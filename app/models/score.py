"""GeoScore records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, StringUUID, TimestampMixin, UUIDMixin


class BrandScore(Base, UUIDMixin, TimestampMixin):
    """Composite visibility score with its six components and evidence."""

    __tablename__ = "brand_scores"

    brand_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("brands.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[str | None] = mapped_column(
        StringUUID(),
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )

    overall_score: Mapped[int] = mapped_column(Integer, nullable=False)
    presence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    accuracy_score: Mapped[int] = mapped_column(Integer, nullable=False)
    salience_score: Mapped[int] = mapped_column(Integer, nullable=False)
    authority_score: Mapped[int] = mapped_column(Integer, nullable=False)
    freshness_score: Mapped[int] = mapped_column(Integer, nullable=False)
    robustness_score: Mapped[int] = mapped_column(Integer, nullable=False)

    breakdown_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    competitor_comparison: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    evidence_pointers: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    score_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    scoring_method: Mapped[str] = mapped_column(String(50), default="geo_v1", nullable=False)
