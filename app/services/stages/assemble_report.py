"""Assemble-report stage: compact report from the latest GeoScore."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import db_read
from app.core.exceptions import NotFoundError
from app.models.score import BrandScore
from app.schemas.payloads import AssembleReportPayload
from app.services.stages.base_stage import BaseStage, JobContext

logger = logging.getLogger(__name__)

REPORT_EVIDENCE_LIMIT = 3


class AssembleReportStage(BaseStage[AssembleReportPayload]):
    job_type = "assemble_report"

    async def _execute(self, context: JobContext, payload: AssembleReportPayload) -> dict[str, Any]:
        async def _latest(session: AsyncSession) -> BrandScore | None:
            result = await session.execute(
                select(BrandScore)
                .where(BrandScore.brand_id == context.brand_id)
                .order_by(BrandScore.created_at.desc(), BrandScore.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

        score = await db_read(_latest, operation_name="brand_score_latest", session_factory=self.session_factory)
        if score is None:
            raise NotFoundError("No GeoScore recorded for this brand", {"brand_id": context.brand_id})

        if payload.geo_score is not None and payload.geo_score != score.overall_score:
            logger.info(
                "Reporting a newer score than the one handed off",
                extra={"job_id": context.job_id, "handed_off": payload.geo_score, "latest": score.overall_score},
            )

        return {
            "report": {
                "brand_id": context.brand_id,
                "score_id": score.id,
                "overall_score": score.overall_score,
                "components": {
                    "presence": score.presence_score,
                    "accuracy": score.accuracy_score,
                    "salience": score.salience_score,
                    "authority": score.authority_score,
                    "freshness": score.freshness_score,
                    "robustness": score.robustness_score,
                },
                "breakdown": score.breakdown_data,
                "competitor_comparison": score.competitor_comparison,
                "top_evidence": list(score.evidence_pointers or [])[:REPORT_EVIDENCE_LIMIT],
                "scoring_method": score.scoring_method,
                "generated_at": score.created_at.isoformat() if score.created_at else None,
            }
        }
