"""Sample stage: ask several language models about the brand and record the answers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_kernel import db_write
from app.core.exceptions import APIKeyMissingError, ExternalServiceError, ValidationError
from app.integrations.llm_client import CompletionResult, LLMClient
from app.models.llm import LLMResponse
from app.schemas.payloads import SamplePayload
from app.services.stages.base_stage import BaseStage, BrandSnapshot, JobContext, load_brand

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    key: str
    intent: str
    template: str

    def render(self, brand: BrandSnapshot) -> str:
        return self.template.format(brand_name=brand.name, domain=brand.domain or brand.name)


@dataclass(frozen=True, slots=True)
class SamplingProfile:
    name: str
    models: tuple[str, ...]
    prompt_keys: tuple[str, ...]
    paraphrases: int
    max_tokens: int


PROMPT_TEMPLATES: dict[str, PromptTemplate] = {
    "def_01": PromptTemplate(
        "def_01",
        "general",
        "What can you tell me about {brand_name}? I'm looking for information "
        "about their services, products, and reputation.",
    ),
    "local_01": PromptTemplate(
        "local_01",
        "local_search",
        "I need a reliable provider in my area. Would you recommend {brand_name}, "
        "and what other local options should I consider?",
    ),
    "comp_01": PromptTemplate(
        "comp_01",
        "comparison",
        "How does {brand_name} compare to its main competitors? "
        "Which would you choose and why?",
    ),
    "tech_01": PromptTemplate(
        "tech_01",
        "technical",
        "What technology, features and technical capabilities does {brand_name} offer?",
    ),
    "brand_01": PromptTemplate(
        "brand_01",
        "reputation",
        "What is the reputation of {brand_name} ({domain})? What do customers say about them?",
    ),
}

SAMPLING_PROFILES: dict[str, SamplingProfile] = {
    "lite": SamplingProfile(
        "lite",
        models=("gpt-4", "claude-opus"),
        prompt_keys=("def_01", "local_01"),
        paraphrases=2,
        max_tokens=1000,
    ),
    "standard": SamplingProfile(
        "standard",
        models=("gpt-4", "claude-opus", "gemini-pro"),
        prompt_keys=("def_01", "local_01", "comp_01"),
        paraphrases=3,
        max_tokens=2000,
    ),
    "full": SamplingProfile(
        "full",
        models=("gpt-4", "claude-opus", "gemini-pro", "grok-beta", "mistral-large"),
        prompt_keys=("def_01", "local_01", "comp_01", "tech_01", "brand_01"),
        paraphrases=5,
        max_tokens=4000,
    ),
}

# Paraphrase 0 is the template as written.
PARAPHRASE_LEADS = (
    "",
    "Briefly: ",
    "As an industry expert, ",
    "In plain language, ",
    "From a customer's point of view, ",
)


def paraphrase(prompt: str, index: int) -> str:
    lead = PARAPHRASE_LEADS[index % len(PARAPHRASE_LEADS)]
    if not lead:
        return prompt
    return f"{lead}{prompt[0].lower()}{prompt[1:]}"


class SampleStage(BaseStage[SamplePayload]):
    """Fan prompts out over models and paraphrases, then hand off to score."""

    job_type = "sample"
    next_job_type = "score"

    def __init__(
        self,
        *,
        llm_client_factory: Callable[[], LLMClient] = LLMClient,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.llm_client_factory = llm_client_factory

    async def health_check(self) -> bool:
        try:
            self.llm_client_factory()
        except APIKeyMissingError:
            return False
        return True

    def _plan(self, payload: SamplePayload) -> tuple[SamplingProfile, list[str], list[PromptTemplate]]:
        profile = SAMPLING_PROFILES[payload.profile]
        models = list(dict.fromkeys(payload.models or profile.models))
        prompt_keys = list(dict.fromkeys(payload.prompt_keys or profile.prompt_keys))
        unknown = [key for key in prompt_keys if key not in PROMPT_TEMPLATES]
        if unknown:
            raise ValidationError(
                "Unknown prompt keys",
                {"prompt_keys": unknown, "available": sorted(PROMPT_TEMPLATES)},
            )
        return profile, models, [PROMPT_TEMPLATES[key] for key in prompt_keys]

    async def _execute(self, context: JobContext, payload: SamplePayload) -> dict[str, Any]:
        profile, models, templates = self._plan(payload)
        brand = await load_brand(context.brand_id, session_factory=self.session_factory)
        await self._discard_earlier_attempts(context)

        recorded = 0
        failed = 0
        total_tokens = 0
        total_cost = 0.0
        async with self.llm_client_factory() as llm:
            for model_name in models:
                for template in templates:
                    base_prompt = template.render(brand)
                    for index in range(profile.paraphrases):
                        prompt = paraphrase(base_prompt, index)
                        try:
                            completion = await llm.complete(model_name, prompt, max_tokens=profile.max_tokens)
                        except ExternalServiceError as exc:
                            failed += 1
                            logger.warning(
                                "Model call failed, skipping",
                                extra={
                                    "job_id": context.job_id,
                                    "model": model_name,
                                    "prompt_key": template.key,
                                    "paraphrase": index,
                                    "error": str(exc),
                                },
                            )
                            continue
                        await self._record(context, template, prompt, index, completion)
                        recorded += 1
                        total_tokens += completion.tokens_used
                        total_cost += completion.cost_estimate

        if recorded == 0:
            raise ExternalServiceError("OpenRouter", "no model responses were recorded")

        logger.info(
            "Brand sampled",
            extra={"job_id": context.job_id, "recorded": recorded, "failed": failed, "profile": profile.name},
        )
        return {
            "profile": profile.name,
            "responses_recorded": recorded,
            "failed_calls": failed,
            "models": models,
            "prompt_keys": [t.key for t in templates],
            "tokens_used": total_tokens,
            "total_cost": round(total_cost, 6),
            "include_competitor_analysis": bool(brand.competitors),
        }

    def _next_payload(
        self,
        context: JobContext,
        payload: SamplePayload,
        result: dict[str, Any],
    ) -> dict[str, Any] | None:
        return {
            "include_competitor_analysis": result["include_competitor_analysis"],
            "source": "sample",
        }

    async def _discard_earlier_attempts(self, context: JobContext) -> None:
        async def _delete(session: AsyncSession) -> None:
            await session.execute(delete(LLMResponse).where(LLMResponse.job_id == context.job_id))

        await db_write(_delete, operation_name="llm_responses_reset", session_factory=self.session_factory)

    async def _record(
        self,
        context: JobContext,
        template: PromptTemplate,
        prompt: str,
        paraphrase_index: int,
        completion: CompletionResult,
    ) -> None:
        async def _persist(session: AsyncSession) -> None:
            session.add(
                LLMResponse(
                    brand_id=context.brand_id,
                    job_id=context.job_id,
                    model_name=completion.model_name,
                    prompt_key=template.key,
                    intent=template.intent,
                    prompt_text=prompt,
                    response_text=completion.text,
                    tokens_used=completion.tokens_used,
                    cost_estimate=completion.cost_estimate,
                    paraphrase_index=paraphrase_index,
                )
            )

        await db_write(_persist, operation_name="llm_response_record", session_factory=self.session_factory)
