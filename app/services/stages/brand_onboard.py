"""Brand-onboard stage: entry point that starts normalization of crawled pages."""

from __future__ import annotations

from typing import Any

from app.schemas.payloads import BrandOnboardPayload
from app.services.stages.base_stage import BaseStage, JobContext, load_brand


class BrandOnboardStage(BaseStage[BrandOnboardPayload]):
    job_type = "brand_onboard"
    next_job_type = "normalize"

    async def _execute(self, context: JobContext, payload: BrandOnboardPayload) -> dict[str, Any]:
        brand = await load_brand(context.brand_id, session_factory=self.session_factory)
        return {
            "brand": brand.name,
            "raw_page_ids": list(dict.fromkeys(payload.raw_page_ids)),
        }

    def _next_payload(
        self,
        context: JobContext,
        payload: BrandOnboardPayload,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        return {"raw_page_ids": result["raw_page_ids"], "source": "brand_onboard"}
