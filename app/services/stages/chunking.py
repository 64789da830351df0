"""Split normalized page content into embeddable chunks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.integrations.embeddings import estimate_tokens

TITLE_CHUNK_INDEX = -1
DESCRIPTION_CHUNK_INDEX = -2
HEADING_CHUNK_OFFSET = 10


@dataclass(slots=True)
class ChunkDraft:
    chunk_index: int
    chunk_text: str
    token_count: int
    chunk_type: str


def word_windows(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Overlapping windows of ``chunk_size`` words advancing by ``chunk_size - overlap``."""
    words = text.split()
    if not words:
        return []
    step = max(1, chunk_size - overlap)
    windows: list[str] = []
    for start in range(0, len(words), step):
        windows.append(" ".join(words[start : start + chunk_size]))
        if start + chunk_size >= len(words):
            break
    return windows


def build_chunks(
    *,
    main_content: str | None,
    title: str | None = None,
    description: str | None = None,
    headings: list[dict[str, Any]] | None = None,
    chunk_size: int = 500,
    overlap: int = 50,
) -> list[ChunkDraft]:
    """Chunks for one page.

    Body windows are numbered from 0; the title, description and headings get
    their own negative indexes so they never collide with body chunks.
    """
    drafts = [
        ChunkDraft(index, window, estimate_tokens(window), "paragraph")
        for index, window in enumerate(word_windows(main_content or "", chunk_size, overlap))
    ]

    if title and title.strip():
        text = title.strip()
        drafts.append(ChunkDraft(TITLE_CHUNK_INDEX, text, estimate_tokens(text), "title"))
    if description and description.strip():
        text = description.strip()
        drafts.append(ChunkDraft(DESCRIPTION_CHUNK_INDEX, text, estimate_tokens(text), "metadata"))

    for position, heading in enumerate(headings or []):
        text = str(heading.get("text") or "").strip()
        if text:
            drafts.append(
                ChunkDraft(
                    -(position + HEADING_CHUNK_OFFSET),
                    text,
                    estimate_tokens(text),
                    "heading",
                )
            )
    return drafts
