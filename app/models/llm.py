"""Language-model response records produced by the sampling stage."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, StringUUID, TimestampMixin, UUIDMixin


class LLMResponse(Base, UUIDMixin, TimestampMixin):
    """One model answer to one prompt paraphrase for a brand."""

    __tablename__ = "llm_reports"

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
        index=True,
    )
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt_key: Mapped[str] = mapped_column(String(50), nullable=False)
    intent: Mapped[str | None] = mapped_column(String(50), nullable=True)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    response_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_estimate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    paraphrase_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
