"""Language-model gateway client (OpenRouter chat completions)."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import APIKeyMissingError, ExternalServiceError

logger = logging.getLogger(__name__)

# Sampling-profile model names mapped to gateway model ids and USD per 1K tokens.
MODEL_CATALOG: dict[str, tuple[str, float]] = {
    "gpt-4": ("openai/gpt-4", 0.03),
    "claude-opus": ("anthropic/claude-3-opus", 0.015),
    "gemini-pro": ("google/gemini-pro", 0.0005),
    "grok-beta": ("x-ai/grok-beta", 0.005),
    "mistral-large": ("mistralai/mistral-large", 0.008),
}


@dataclass(slots=True)
class CompletionResult:
    model_name: str
    text: str
    tokens_used: int
    cost_estimate: float


class LLMClient:
    """Thin async client for prompt completion across several vendors."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key or settings.openrouter_api_key
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.timeout = timeout or settings.llm_timeout
        self._client: httpx.AsyncClient | None = None

        if not self.api_key:
            raise APIKeyMissingError("OpenRouter")

    async def __aenter__(self) -> "LLMClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def complete(self, model_name: str, prompt: str, *, max_tokens: int) -> CompletionResult:
        """Send one user prompt and return the answer text with usage."""
        gateway_model, cost_per_1k = MODEL_CATALOG.get(model_name, (model_name, 0.0))
        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                json={
                    "model": gateway_model,
                    "messages": [{"role": "user", "content": prompt}],
                    "max_tokens": max_tokens,
                    "temperature": 0.7,
                },
            )
        except httpx.HTTPError as e:
            logger.warning("LLM HTTP error", extra={"model": model_name, "error": str(e)})
            raise ExternalServiceError("OpenRouter", str(e)) from e

        if response.status_code != 200:
            raise ExternalServiceError(
                "OpenRouter",
                f"API error for {model_name}: {response.status_code} - {response.text}",
            )

        data = response.json()
        choices = data.get("choices") or []
        text = ((choices[0].get("message") or {}).get("content") or "") if choices else ""
        tokens_used = int((data.get("usage") or {}).get("total_tokens") or 0)
        return CompletionResult(
            model_name=model_name,
            text=text,
            tokens_used=tokens_used,
            cost_estimate=round(tokens_used / 1000 * cost_per_1k, 6),
        )
