"""Score stage: analyse recorded model responses and persist a GeoScore."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import db_read, db_write
from app.core.exceptions import ValidationError
from app.models.llm import LLMResponse
from app.models.score import BrandScore
from app.schemas.payloads import ScorePayload
from app.services.scoring.engine import GeoScoreResult, ScoredResponse, compute_geo_score, response_score
from app.services.scoring.mentions import detect_mention
from app.services.stages.base_stage import BaseStage, BrandSnapshot, JobContext, load_brand

logger = logging.getLogger(__name__)


class ScoreStage(BaseStage[ScorePayload]):
    job_type = "score"
    next_job_type = "assemble_report"

    async def _execute(self, context: JobContext, payload: ScorePayload) -> dict[str, Any]:
        brand = await load_brand(context.brand_id, session_factory=self.session_factory)
        scored = await self._load_responses(brand)
        if not scored:
            raise ValidationError(
                "No model responses recorded for this brand",
                {"brand_id": context.brand_id},
            )

        competitors = brand.competitors if payload.include_competitor_analysis else None
        score = compute_geo_score(scored, competitors=competitors, scoring_method=payload.scoring_method)
        score_id = await self._persist(context, payload, score, scored)

        logger.info(
            "GeoScore computed",
            extra={
                "job_id": context.job_id,
                "brand_id": context.brand_id,
                "overall": score.overall,
                "samples": len(scored),
            },
        )
        return {
            "score_id": score_id,
            "overall_score": score.overall,
            "components": score.components.as_dict(),
            "samples": len(scored),
            "mentioned": score.metadata["mentioned_samples"],
            "scoring_method": payload.scoring_method,
        }

    def _next_payload(
        self,
        context: JobContext,
        payload: ScorePayload,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        return {
            "source": "score",
            "geo_score": result["overall_score"],
            "scoring_method": result["scoring_method"],
        }

    async def _load_responses(self, brand: BrandSnapshot) -> list[ScoredResponse]:
        async def _load(session: AsyncSession) -> list[ScoredResponse]:
            result = await session.execute(
                select(LLMResponse)
                .where(LLMResponse.brand_id == brand.id)
                .order_by(LLMResponse.created_at, LLMResponse.id)
            )
            return [
                ScoredResponse(
                    response_id=row.id,
                    model_name=row.model_name,
                    prompt_key=row.prompt_key,
                    text=row.response_text,
                    mention=detect_mention(row.response_text, brand.name, brand.domain),
                    intent=row.intent,
                )
                for row in result.scalars().all()
            ]

        return await db_read(_load, operation_name="llm_responses_load", session_factory=self.session_factory)

    async def _persist(
        self,
        context: JobContext,
        payload: ScorePayload,
        score: GeoScoreResult,
        scored: list[ScoredResponse],
    ) -> str:
        components = score.components
        mentioned = {r.response_id: r.mention for r in scored if r.mention.mentioned}

        async def _write(session: AsyncSession) -> str:
            record = BrandScore(
                brand_id=context.brand_id,
                job_id=context.job_id,
                overall_score=score.overall,
                presence_score=components.presence,
                accuracy_score=components.accuracy,
                salience_score=components.salience,
                authority_score=components.authority,
                freshness_score=components.freshness,
                robustness_score=components.robustness,
                breakdown_data=score.breakdown,
                competitor_comparison=score.competitor_comparison,
                evidence_pointers=score.evidence_pointers,
                score_metadata=score.metadata,
                scoring_method=payload.scoring_method,
            )
            session.add(record)

            if mentioned:
                rows = await session.execute(select(LLMResponse).where(LLMResponse.id.in_(list(mentioned))))
                for response in rows.scalars().all():
                    mention = mentioned[response.id]
                    response.score_value = response_score(mention)
                    response.response_metadata = {
                        **(response.response_metadata or {}),
                        "mentionAnalysis": mention.to_dict(),
                    }
            await session.flush()
            return record.id

        return await db_write(_write, operation_name="brand_score_persist", session_factory=self.session_factory)
