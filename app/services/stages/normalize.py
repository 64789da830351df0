"""Normalize stage: raw crawled pages to page content and claims."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import SessionFactory, db_read, db_write
from app.core.exceptions import ExternalServiceError, NotFoundError, ValidationError
from app.integrations.blob_storage import BlobStorageClient
from app.models.content import Claim, ContentChunk, Embedding, PageContent, RawPage
from app.schemas.payloads import NormalizePayload
from app.services.stages.base_stage import BaseStage, JobContext, load_brand
from app.services.stages.claims import ExtractedClaim, extract_claims
from app.services.stages.content_extraction import ExtractedPage, extract_page_content

logger = logging.getLogger(__name__)

MAX_REPORTED_FAILURES = 20


@dataclass(slots=True)
class RawPageRef:
    id: str
    url: str
    storage_path: str


class NormalizeStage(BaseStage[NormalizePayload]):
    """Fetch stored HTML, extract content and claims, hand off to embed."""

    job_type = "normalize"
    next_job_type = "embed"

    def __init__(
        self,
        *,
        blob_client_factory: Callable[[], BlobStorageClient] = BlobStorageClient,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.blob_client_factory = blob_client_factory

    async def health_check(self) -> bool:
        async with self.blob_client_factory() as blob:
            return await blob.ping()

    async def _execute(self, context: JobContext, payload: NormalizePayload) -> dict[str, Any]:
        brand = await load_brand(context.brand_id, session_factory=self.session_factory)
        pages = await self._load_raw_pages(context.brand_id, payload.raw_page_ids)
        if not pages:
            raise NotFoundError(
                "None of the requested raw pages exist for this brand",
                {"raw_page_ids": payload.raw_page_ids[:MAX_REPORTED_FAILURES]},
            )

        fetched = 0
        content_ids: list[str] = []
        claims_extracted = 0
        failures: list[dict[str, str]] = []

        async with self.blob_client_factory() as blob:
            for page in pages:
                try:
                    html = await blob.get_text(page.storage_path)
                except ExternalServiceError as exc:
                    logger.warning(
                        "Raw page fetch failed, skipping",
                        extra={"job_id": context.job_id, "raw_page_id": page.id, "error": str(exc)},
                    )
                    failures.append({"raw_page_id": page.id, "error": str(exc)})
                    continue
                fetched += 1

                try:
                    extracted = extract_page_content(html, page.url)
                    claims = extract_claims(extracted, brand.name)
                    content_id = await self._persist_page(context.brand_id, page, extracted, claims)
                except Exception as exc:
                    logger.warning(
                        "Page normalization failed, skipping",
                        extra={"job_id": context.job_id, "raw_page_id": page.id, "error": str(exc)},
                    )
                    failures.append({"raw_page_id": page.id, "error": str(exc)})
                    continue

                content_ids.append(content_id)
                claims_extracted += len(claims)

        if fetched == 0:
            raise ExternalServiceError(BlobStorageClient.SERVICE_NAME, "no raw page data could be fetched")
        if not content_ids:
            raise ValidationError(
                "Raw pages were fetched but none could be normalized",
                {"failures": failures[:MAX_REPORTED_FAILURES]},
            )

        logger.info(
            "Pages normalized",
            extra={
                "job_id": context.job_id,
                "processed": len(content_ids),
                "failed": len(failures),
                "claims": claims_extracted,
            },
        )
        return {
            "processed": len(content_ids),
            "failed": len(failures),
            "content_ids": content_ids,
            "claims_extracted": claims_extracted,
            "failures": failures[:MAX_REPORTED_FAILURES],
        }

    def _next_payload(
        self,
        context: JobContext,
        payload: NormalizePayload,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        return {"content_ids": result["content_ids"], "source": "normalize"}

    async def _load_raw_pages(self, brand_id: str, raw_page_ids: list[str]) -> list[RawPageRef]:
        async def _load(session: AsyncSession) -> list[RawPageRef]:
            result = await session.execute(
                select(RawPage.id, RawPage.url, RawPage.storage_path).where(
                    RawPage.brand_id == brand_id,
                    RawPage.id.in_(raw_page_ids),
                )
            )
            by_id = {row.id: RawPageRef(row.id, row.url, row.storage_path) for row in result.all()}
            return [by_id[page_id] for page_id in dict.fromkeys(raw_page_ids) if page_id in by_id]

        return await db_read(_load, operation_name="raw_pages_load", session_factory=self.session_factory)

    async def _persist_page(
        self,
        brand_id: str,
        page: RawPageRef,
        extracted: ExtractedPage,
        claims: list[ExtractedClaim],
    ) -> str:
        """Store the page content for a raw page, replacing any earlier version."""

        async def _persist(session: AsyncSession) -> str:
            stale_contents = select(PageContent.id).where(PageContent.raw_page_id == page.id)
            stale_chunks = select(ContentChunk.id).where(ContentChunk.content_id.in_(stale_contents))
            await session.execute(delete(Embedding).where(Embedding.chunk_id.in_(stale_chunks)))
            await session.execute(delete(ContentChunk).where(ContentChunk.content_id.in_(stale_contents)))
            await session.execute(delete(Claim).where(Claim.content_id.in_(stale_contents)))
            await session.execute(delete(PageContent).where(PageContent.raw_page_id == page.id))

            content = PageContent(
                brand_id=brand_id,
                raw_page_id=page.id,
                url=page.url,
                title=extracted.title or None,
                description=extracted.description or None,
                main_content=extracted.main_content,
                word_count=extracted.word_count,
                headings=extracted.headings,
                links=extracted.links,
                images=extracted.images,
                meta_tags=extracted.meta_tags,
                structured_data=extracted.structured_data,
                extraction_metadata={
                    "method": extracted.extraction_method,
                    "link_count": len(extracted.links),
                    "image_count": len(extracted.images),
                },
            )
            session.add(content)
            await session.flush()
            session.add_all(
                Claim(
                    content_id=content.id,
                    brand_id=brand_id,
                    claim_text=claim.claim_text,
                    claim_type=claim.claim_type,
                    confidence=claim.confidence,
                    source_selector=claim.source_selector,
                    extractor=claim.extractor,
                )
                for claim in claims
            )
            return content.id

        return await db_write(_persist, operation_name="page_content_persist", session_factory=self.session_factory)
