"""Crawled page, normalized content, claim, chunk and embedding models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, StringUUID, TimestampMixin, UUIDMixin

CLAIM_TYPES = (
    "company_info",
    "product_feature",
    "service_claim",
    "location",
    "contact",
    "other",
)
CHUNK_TYPES = ("title", "heading", "paragraph", "claim", "metadata")


class RawPage(Base, UUIDMixin, TimestampMixin):
    """A crawled page whose HTML lives in blob storage."""

    __tablename__ = "raw_pages"

    brand_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("brands.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PageContent(Base, UUIDMixin, TimestampMixin):
    """Normalized content extracted from one raw page."""

    __tablename__ = "page_contents"

    brand_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("brands.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    raw_page_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("raw_pages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    title: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    main_content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    headings: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    links: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    images: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    meta_tags: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)
    structured_data: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    extraction_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class Claim(Base, UUIDMixin, TimestampMixin):
    """A short factual assertion extracted from page content."""

    __tablename__ = "claims"

    content_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("page_contents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    brand_id: Mapped[str] = mapped_column(StringUUID(), nullable=False, index=True)
    claim_text: Mapped[str] = mapped_column(Text, nullable=False)
    claim_type: Mapped[str] = mapped_column(String(30), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source_selector: Mapped[str | None] = mapped_column(String(255), nullable=True)
    extractor: Mapped[str] = mapped_column(String(50), nullable=False)


class ContentChunk(Base, UUIDMixin, TimestampMixin):
    """Text fragment of a content entry, sized for embedding."""

    __tablename__ = "content_chunks"

    content_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("page_contents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_type: Mapped[str] = mapped_column(String(20), nullable=False)


class Embedding(Base, UUIDMixin, TimestampMixin):
    """Vector for exactly one chunk."""

    __tablename__ = "embeddings"

    chunk_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("content_chunks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False)
    vector: Mapped[list[float]] = mapped_column(JSONType, nullable=False)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
