"""Shared fixtures: temporary stores and deterministic providers."""
import re
from typing import List
from unittest.mock import AsyncMock

import pytest

from docqa.rag.answer import GenerationProvider
from docqa.rag.embeddings import EmbeddingBatcher, EmbeddingItem, EmbeddingProvider
from docqa.rag.store import DocumentStore

VOCABULARY = ("cat", "dog", "fish", "bird")


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Embeds text as keyword counts so similarities are predictable."""

    model = "keyword-test"

    def __init__(self):
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        self.calls.append(list(texts))
        items = []
        for i, text in enumerate(texts):
            words = re.findall(r"\w+", text.lower())
            vector = [float(words.count(w)) for w in VOCABULARY] + [0.001]
            items.append(EmbeddingItem(index=i, embedding=vector))
        # Answer in reverse order, like providers are allowed to
        return list(reversed(items))


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    """Provide an empty SQLite-backed document store."""
    return DocumentStore(tmp_path / "docqa-test.sqlite")


@pytest.fixture
def keyword_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def keyword_batcher(keyword_provider) -> EmbeddingBatcher:
    """Provide a batcher over the keyword-count provider."""
    return EmbeddingBatcher(keyword_provider, timeout=5.0)


@pytest.fixture
def generation_provider() -> AsyncMock:
    """Provide a mock generation provider that answers a fixed text."""
    provider = AsyncMock(spec=GenerationProvider)
    provider.model = "mock-chat"
    provider.generate = AsyncMock(return_value="Cats sit on mats [Source 1].")
    return provider
