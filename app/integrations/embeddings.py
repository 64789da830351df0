"""Embedding provider integration (OpenAI and Cohere over HTTP)."""

import logging
import math
from dataclasses import dataclass
from typing import Any

import httpx
import numpy as np

from app.config import settings
from app.core.exceptions import APIKeyMissingError, ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EmbeddingProvider:
    """Static description of one embedding model offering."""

    name: str
    api: str
    model: str
    dimensions: int
    cost_per_token: float


EMBEDDING_PROVIDERS: dict[str, EmbeddingProvider] = {
    "openai-3-small": EmbeddingProvider(
        name="openai-3-small",
        api="openai",
        model="text-embedding-3-small",
        dimensions=1536,
        cost_per_token=0.00000002,
    ),
    "openai-ada-002": EmbeddingProvider(
        name="openai-ada-002",
        api="openai",
        model="text-embedding-ada-002",
        dimensions=1536,
        cost_per_token=0.0000001,
    ),
    "cohere-embed": EmbeddingProvider(
        name="cohere-embed",
        api="cohere",
        model="embed-english-v3.0",
        dimensions=1024,
        cost_per_token=0.0000001,
    ),
}


def estimate_tokens(text: str) -> int:
    """Rough token count used when a provider does not report usage."""
    return math.ceil(len(text) / 4)


def resolve_provider(name: str | None) -> EmbeddingProvider:
    provider_name = name or settings.default_embedding_provider
    provider = EMBEDDING_PROVIDERS.get(provider_name)
    if provider is None:
        raise ValidationError(
            f"Unknown embedding provider: {provider_name}",
            {"available": sorted(EMBEDDING_PROVIDERS)},
        )
    return provider


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    total_tokens: int
    cost: float


class EmbeddingsClient:
    """Client that turns text batches into vectors for a configured provider.

    Use as an async context manager so the underlying HTTP client is closed.
    """

    OPENAI_URL = "https://api.openai.com/v1/embeddings"
    COHERE_URL = "https://api.cohere.ai/v1/embed"

    def __init__(
        self,
        provider: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.provider = resolve_provider(provider)
        if self.provider.api == "cohere":
            self.api_key = api_key or settings.cohere_api_key
        else:
            self.api_key = api_key or settings.openai_api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

        if not self.api_key:
            raise APIKeyMissingError(f"{self.provider.api} (for embeddings)")

    async def __aenter__(self) -> "EmbeddingsClient":
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

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        """Embed one batch of texts; vectors come back in input order.

        Raises:
            ExternalServiceError: transport failure, non-200 answer or a
                response whose shape does not match the batch.
        """
        if not texts:
            return EmbeddingBatch(vectors=[], total_tokens=0, cost=0.0)

        service = f"{self.provider.api} embeddings"
        logger.info(
            "Generating embeddings",
            extra={"text_count": len(texts), "provider": self.provider.name},
        )
        if self.provider.api == "cohere":
            url = self.COHERE_URL
            body: dict[str, Any] = {
                "texts": texts,
                "model": self.provider.model,
                "input_type": "search_document",
            }
        else:
            url = self.OPENAI_URL
            body = {"model": self.provider.model, "input": texts}

        try:
            response = await self.client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.warning("Embeddings HTTP error", extra={"error": str(e)})
            raise ExternalServiceError(service, str(e)) from e

        if response.status_code != 200:
            logger.warning("Embeddings API error", extra={"status": response.status_code})
            raise ExternalServiceError(service, f"API error: {response.status_code} - {response.text}")

        data = response.json()
        if self.provider.api == "cohere":
            vectors = data.get("embeddings") or []
            usage_tokens = ((data.get("meta") or {}).get("billed_units") or {}).get("input_tokens")
        else:
            ordered = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in ordered]
            usage_tokens = (data.get("usage") or {}).get("total_tokens")

        matrix = np.asarray(vectors, dtype=float)
        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            raise ExternalServiceError(
                service,
                f"expected {len(texts)} vectors, got shape {tuple(matrix.shape)}",
            )

        total_tokens = int(usage_tokens) if usage_tokens else sum(estimate_tokens(t) for t in texts)
        return EmbeddingBatch(
            vectors=matrix.tolist(),
            total_tokens=total_tokens,
            cost=total_tokens * self.provider.cost_per_token,
        )
