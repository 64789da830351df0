"""Embed stage: chunk page content and store one vector per chunk."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.db_kernel import db_read, db_write
from app.core.exceptions import APIKeyMissingError, ExternalServiceError, NotFoundError, ValidationError
from app.integrations.embeddings import EmbeddingsClient, resolve_provider
from app.models.content import ContentChunk, Embedding, PageContent
from app.schemas.payloads import EmbedPayload
from app.services.stages.base_stage import BaseStage, JobContext
from app.services.stages.chunking import ChunkDraft, build_chunks

logger = logging.getLogger(__name__)

MAX_REPORTED_FAILURES = 20


@dataclass(slots=True)
class StoredChunk:
    id: str
    text: str


@dataclass(slots=True)
class ChunkOutcome:
    chunk_id: str
    embedded: bool
    cost: float = 0.0
    error: str | None = None


class EmbedStage(BaseStage[EmbedPayload]):
    """Chunk content, embed chunks in rate-limited batches, hand off to sample."""

    job_type = "embed"
    next_job_type = "sample"

    def __init__(
        self,
        *,
        embeddings_client_factory: Callable[[str | None], EmbeddingsClient] = EmbeddingsClient,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.embeddings_client_factory = embeddings_client_factory
        self.batch_size = max(1, batch_size or settings.embed_batch_size)
        self.batch_delay_seconds = (
            settings.embed_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )

    async def health_check(self) -> bool:
        try:
            self.embeddings_client_factory(None)
        except APIKeyMissingError:
            return False
        return True

    async def _execute(self, context: JobContext, payload: EmbedPayload) -> dict[str, Any]:
        provider = resolve_provider(payload.provider)
        contents = await self._load_contents(context.brand_id, payload.content_ids)
        if not contents:
            raise NotFoundError(
                "None of the requested contents exist for this brand",
                {"content_ids": payload.content_ids[:MAX_REPORTED_FAILURES]},
            )

        drafts_by_content = {
            content.id: build_chunks(
                main_content=content.main_content,
                title=content.title,
                description=content.description,
                headings=content.headings,
                chunk_size=payload.chunk_size,
                overlap=payload.chunk_overlap,
            )
            for content in contents
        }
        if not any(drafts_by_content.values()):
            raise ValidationError(
                "Requested contents have no text to embed",
                {"content_ids": list(drafts_by_content)[:MAX_REPORTED_FAILURES]},
            )
        chunks = await self._replace_chunks(drafts_by_content)

        outcomes: list[ChunkOutcome] = []
        async with self.embeddings_client_factory(provider.name) as client:
            for batch_number, start in enumerate(range(0, len(chunks), self.batch_size)):
                if batch_number > 0 and self.batch_delay_seconds > 0:
                    await asyncio.sleep(self.batch_delay_seconds)
                batch = chunks[start : start + self.batch_size]
                try:
                    embedded = await client.embed([chunk.text for chunk in batch])
                except ExternalServiceError as exc:
                    logger.warning(
                        "Embedding batch failed",
                        extra={
                            "job_id": context.job_id,
                            "batch": batch_number,
                            "size": len(batch),
                            "error": str(exc),
                        },
                    )
                    outcomes.extend(ChunkOutcome(chunk.id, False, 0.0, str(exc)) for chunk in batch)
                    continue

                per_chunk_cost = embedded.cost / len(batch)
                await self._store_embeddings(batch, embedded.vectors, provider.name, provider.model, per_chunk_cost)
                outcomes.extend(ChunkOutcome(chunk.id, True, per_chunk_cost) for chunk in batch)

        succeeded = [o for o in outcomes if o.embedded]
        failed = [o for o in outcomes if not o.embedded]
        if not succeeded:
            raise ExternalServiceError(f"{provider.api} embeddings", "no chunks could be embedded")

        total_cost = sum(o.cost for o in succeeded)
        logger.info(
            "Chunks embedded",
            extra={
                "job_id": context.job_id,
                "chunks": len(chunks),
                "embedded": len(succeeded),
                "failed": len(failed),
                "cost": total_cost,
            },
        )
        return {
            "contents_processed": len(contents),
            "chunks_created": len(chunks),
            "embedded": len(succeeded),
            "failed": len(failed),
            "provider": provider.name,
            "model": provider.model,
            "total_cost": round(total_cost, 8),
            "failures": [
                {"chunk_id": o.chunk_id, "error": o.error} for o in failed[:MAX_REPORTED_FAILURES]
            ],
        }

    def _next_payload(
        self,
        context: JobContext,
        payload: EmbedPayload,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        return {"profile": "standard", "source": "embed"}

    async def _load_contents(self, brand_id: str, content_ids: list[str]) -> list[PageContent]:
        async def _load(session: AsyncSession) -> list[PageContent]:
            result = await session.execute(
                select(PageContent).where(
                    PageContent.brand_id == brand_id,
                    PageContent.id.in_(content_ids),
                )
            )
            by_id = {content.id: content for content in result.scalars().all()}
            return [by_id[cid] for cid in dict.fromkeys(content_ids) if cid in by_id]

        return await db_read(_load, operation_name="page_contents_load", session_factory=self.session_factory)

    async def _replace_chunks(self, drafts_by_content: dict[str, list[ChunkDraft]]) -> list[StoredChunk]:
        """Drop chunks from an earlier attempt, then store the fresh ones."""

        async def _persist(session: AsyncSession) -> list[StoredChunk]:
            content_ids = list(drafts_by_content)
            stale_chunks = select(ContentChunk.id).where(ContentChunk.content_id.in_(content_ids))
            await session.execute(delete(Embedding).where(Embedding.chunk_id.in_(stale_chunks)))
            await session.execute(delete(ContentChunk).where(ContentChunk.content_id.in_(content_ids)))

            rows = [
                ContentChunk(
                    content_id=content_id,
                    chunk_index=draft.chunk_index,
                    chunk_text=draft.chunk_text,
                    token_count=draft.token_count,
                    chunk_type=draft.chunk_type,
                )
                for content_id, drafts in drafts_by_content.items()
                for draft in drafts
            ]
            session.add_all(rows)
            await session.flush()
            return [StoredChunk(row.id, row.chunk_text) for row in rows]

        return await db_write(_persist, operation_name="content_chunks_replace", session_factory=self.session_factory)

    async def _store_embeddings(
        self,
        chunks: list[StoredChunk],
        vectors: list[list[float]],
        provider_name: str,
        model_name: str,
        per_chunk_cost: float,
    ) -> None:
        async def _persist(session: AsyncSession) -> None:
            session.add_all(
                Embedding(
                    chunk_id=chunk.id,
                    provider=provider_name,
                    model_name=model_name,
                    dimensions=len(vector),
                    vector=vector,
                    cost=per_chunk_cost,
                )
                for chunk, vector in zip(chunks, vectors, strict=True)
            )

        await db_write(_persist, operation_name="embeddings_store", session_factory=self.session_factory)
