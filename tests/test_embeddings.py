"""Tests for embedding providers and the embedding batcher."""
import asyncio
import json
import math
from typing import List

import httpx
import pytest

from docqa.config import ProviderConfig
from docqa.exceptions import ConfigurationError, ProviderError, ProviderTimeoutError
from docqa.llm_client import OpenAIClient
from docqa.rag.embeddings import (
    EmbeddingBatcher,
    EmbeddingItem,
    EmbeddingProvider,
    HashEmbeddingProvider,
    OpenAIEmbeddingProvider,
)


class ShuffledProvider(EmbeddingProvider):
    """Returns [position] vectors in a scrambled order."""

    model = "shuffled-test"

    def __init__(self, max_batch_size: int = 2048):
        self.max_batch_size = max_batch_size
        self.requests: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        self.requests.append(list(texts))
        items = [EmbeddingItem(index=i, embedding=[float(len(t)), 1.0]) for i, t in enumerate(texts)]
        return items[1::2] + items[0::2]


class SlowProvider(EmbeddingProvider):
    model = "slow-test"

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        await asyncio.sleep(5)
        return []


class FailingProvider(EmbeddingProvider):
    model = "failing-test"

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        raise ProviderError("upstream exploded", stage="embedding", status_code=500)


class ShortProvider(EmbeddingProvider):
    model = "short-test"

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        return [EmbeddingItem(index=0, embedding=[1.0])]


def _openai_provider(handler, api_key: str = "sk-test") -> OpenAIEmbeddingProvider:
    provider_config = ProviderConfig(
        api_key=api_key,
        model="text-embedding-3-small",
        base_url="https://api.test/v1",
        timeout=5.0,
    )
    client = OpenAIClient(provider_config, transport=httpx.MockTransport(handler))
    return OpenAIEmbeddingProvider(provider_config, client=client)


class TestEmbeddingBatcher:
    @pytest.mark.asyncio
    async def test_restores_input_order(self) -> None:
        texts = ["a", "bb", "ccc", "dddd", "eeeee"]
        batcher = EmbeddingBatcher(ShuffledProvider())

        vectors = await batcher.embed_batch(texts)

        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self) -> None:
        provider = ShuffledProvider()

        assert await EmbeddingBatcher(provider).embed_batch([]) == []
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_truncates_long_inputs(self) -> None:
        provider = ShuffledProvider()
        batcher = EmbeddingBatcher(provider, max_chars=6000)

        await batcher.embed_batch(["x" * 7000, "short"])

        assert [len(t) for t in provider.requests[0]] == [6000, 5]

    @pytest.mark.asyncio
    async def test_splits_requests_at_max_batch_size(self) -> None:
        provider = ShuffledProvider(max_batch_size=2)
        batcher = EmbeddingBatcher(provider)

        vectors = await batcher.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

        assert [len(r) for r in provider.requests] == [2, 2, 1]
        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_single_text_variant(self) -> None:
        vector = await EmbeddingBatcher(ShuffledProvider()).embed("four")

        assert vector == [4.0, 1.0]

    @pytest.mark.asyncio
    async def test_timeout_is_reported_distinctly(self) -> None:
        batcher = EmbeddingBatcher(SlowProvider(), timeout=0.01)

        with pytest.raises(ProviderTimeoutError) as exc_info:
            await batcher.embed_batch(["slow"])

        assert exc_info.value.retryable is True
        assert exc_info.value.stage == "embedding"

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self) -> None:
        batcher = EmbeddingBatcher(FailingProvider())

        with pytest.raises(ProviderError) as exc_info:
            await batcher.embed_batch(["boom"])

        assert not isinstance(exc_info.value, ProviderTimeoutError)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_count_mismatch_is_an_error(self) -> None:
        batcher = EmbeddingBatcher(ShortProvider())

        with pytest.raises(ProviderError):
            await batcher.embed_batch(["one", "two"])


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_sends_batched_request_and_orders_response(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            data = [
                {"object": "embedding", "index": i, "embedding": [float(i), 0.5]}
                for i in range(len(body["input"]))
            ]
            return httpx.Response(200, json={"data": list(reversed(data))})

        batcher = EmbeddingBatcher(_openai_provider(handler))

        vectors = await batcher.embed_batch(["first", "second", "third"])

        assert vectors == [[0.0, 0.5], [1.0, 0.5], [2.0, 0.5]]
        assert len(seen) == 1
        request = seen[0]
        assert request.url == "https://api.test/v1/embeddings"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(request.content) == {
            "model": "text-embedding-3-small",
            "input": ["first", "second", "third"],
        }

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_before_any_request(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        batcher = EmbeddingBatcher(_openai_provider(handler, api_key=""))

        with pytest.raises(ConfigurationError):
            await batcher.embed_batch(["text"])

        assert seen == []

    @pytest.mark.asyncio
    async def test_http_error_carries_provider_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

        batcher = EmbeddingBatcher(_openai_provider(handler))

        with pytest.raises(ProviderError) as exc_info:
            await batcher.embed_batch(["text"])

        assert exc_info.value.status_code == 429
        assert "Rate limit reached" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_timeout_maps_to_provider_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        batcher = EmbeddingBatcher(_openai_provider(handler))

        with pytest.raises(ProviderTimeoutError):
            await batcher.embed_batch(["text"])

    @pytest.mark.asyncio
    async def test_malformed_response_is_a_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        batcher = EmbeddingBatcher(_openai_provider(handler))

        with pytest.raises(ProviderError):
            await batcher.embed_batch(["text"])


class TestHashEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_is_deterministic_and_unit_length(self) -> None:
        provider = HashEmbeddingProvider(dimension=64)

        first = await provider.embed(["same text", "other text"])
        second = await provider.embed(["same text"])

        assert first[0].embedding == second[0].embedding
        assert first[0].embedding != first[1].embedding
        assert len(first[0].embedding) == 64
        assert math.isclose(sum(v * v for v in first[0].embedding), 1.0, rel_tol=1e-9)
