"""Unit tests for embeddings client behavior."""

from __future__ import annotations

from typing import Any

import pytest

from app.config import settings
from app.core.exceptions import APIKeyMissingError, ExternalServiceError, ValidationError
from app.integrations.embeddings import EMBEDDING_PROVIDERS, EmbeddingsClient, estimate_tokens


class FakeResponse:
    def __init__(self, status_code: int, body: dict[str, Any]) -> None:
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self) -> dict[str, Any]:
        return self._body


def _fake_client(captured: dict[str, Any], response: FakeResponse) -> type:
    class FakeAsyncClient:
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            captured["init"] = {"args": args, "kwargs": kwargs}

        async def post(self, url: str, json: dict[str, Any]) -> FakeResponse:
            captured["post"] = {"url": url, "json": json}
            return response

        async def aclose(self) -> None:
            captured["closed"] = True

    return FakeAsyncClient


@pytest.mark.asyncio
async def test_embeddings_client_orders_openai_vectors_and_prices_usage(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """OpenAI answers are re-ordered by index and priced from reported usage."""
    captured: dict[str, Any] = {}
    response = FakeResponse(
        200,
        {
            # Out-of-order indices to verify client sorting behavior.
            "data": [
                {"index": 1, "embedding": [0.2, 0.3]},
                {"index": 0, "embedding": [0.1, 0.2]},
            ],
            "usage": {"total_tokens": 10},
        },
    )
    monkeypatch.setattr("app.integrations.embeddings.httpx.AsyncClient", _fake_client(captured, response))

    async with EmbeddingsClient("openai-3-small", api_key="sk-test") as client:
        batch = await client.embed(["alpha", "beta"])

    assert captured["post"]["url"] == EmbeddingsClient.OPENAI_URL
    assert captured["post"]["json"] == {"model": "text-embedding-3-small", "input": ["alpha", "beta"]}
    assert captured["init"]["kwargs"]["headers"]["Authorization"] == "Bearer sk-test"
    assert captured["closed"] is True
    assert batch.vectors == [[0.1, 0.2], [0.2, 0.3]]
    assert batch.total_tokens == 10
    assert batch.cost == pytest.approx(10 * 0.00000002)


@pytest.mark.asyncio
async def test_embeddings_client_cohere_estimates_tokens_without_usage(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}
    response = FakeResponse(200, {"embeddings": [[1.0, 0.0], [0.0, 1.0]]})
    monkeypatch.setattr("app.integrations.embeddings.httpx.AsyncClient", _fake_client(captured, response))

    texts = ["abcdefgh", "abc"]
    async with EmbeddingsClient("cohere-embed", api_key="co-test") as client:
        batch = await client.embed(texts)

    assert captured["post"]["url"] == EmbeddingsClient.COHERE_URL
    assert captured["post"]["json"]["input_type"] == "search_document"
    assert batch.total_tokens == estimate_tokens("abcdefgh") + estimate_tokens("abc") == 3
    assert batch.cost == pytest.approx(3 * EMBEDDING_PROVIDERS["cohere-embed"].cost_per_token)


@pytest.mark.asyncio
async def test_embeddings_client_raises_external_error_on_api_failure(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = FakeResponse(429, {"error": "rate limited"})
    monkeypatch.setattr("app.integrations.embeddings.httpx.AsyncClient", _fake_client({}, response))

    async with EmbeddingsClient(api_key="sk-test") as client:
        with pytest.raises(ExternalServiceError, match="429"):
            await client.embed(["alpha"])


@pytest.mark.asyncio
async def test_embeddings_client_rejects_vector_count_mismatch(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = FakeResponse(200, {"data": [{"index": 0, "embedding": [0.1]}]})
    monkeypatch.setattr("app.integrations.embeddings.httpx.AsyncClient", _fake_client({}, response))

    async with EmbeddingsClient(api_key="sk-test") as client:
        with pytest.raises(ExternalServiceError, match="expected 2 vectors"):
            await client.embed(["alpha", "beta"])


def test_embeddings_client_requires_provider_key_from_settings() -> None:
    """Missing provider key raises API key error at client construction time."""
    original_key = settings.openai_api_key
    try:
        settings.openai_api_key = None
        with pytest.raises(APIKeyMissingError):
            EmbeddingsClient("openai-ada-002")
    finally:
        settings.openai_api_key = original_key


def test_embeddings_client_rejects_unknown_provider() -> None:
    with pytest.raises(ValidationError):
        EmbeddingsClient("word2vec", api_key="x")


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
