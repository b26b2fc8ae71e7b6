"""Embedding providers and the batcher that drives them.

Handles:
- Provider abstraction (real API client or deterministic hash vectors)
- Input truncation below the provider's token limit
- Per-request timeouts
- Restoring input order from index-tagged provider responses
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional
import asyncio
import hashlib
import math

import structlog

from docqa import config
from docqa.config import ProviderConfig
from docqa.exceptions import ProviderError, ProviderTimeoutError
from docqa.llm_client import OpenAIClient

logger = structlog.get_logger()


@dataclass
class EmbeddingItem:
    """One vector returned by a provider, tagged with its input position."""

    index: int
    embedding: List[float]


class EmbeddingProvider(ABC):
    """Capability: turn texts into fixed-length vectors."""

    model: str
    max_batch_size: int = 2048

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        """Embed texts in one request.

        Items may come back in any order; ``index`` points into ``texts``.
        """


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by the OpenAI-compatible /embeddings API."""

    def __init__(self, provider_config: ProviderConfig, client: OpenAIClient = None):
        self.model = provider_config.model
        self.max_batch_size = provider_config.max_batch_size
        self.client = client or OpenAIClient(provider_config)

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        data = await self.client.embeddings(input=texts, model=self.model)

        try:
            return [
                EmbeddingItem(index=item["index"], embedding=item["embedding"])
                for item in data["data"]
            ]
        except (KeyError, TypeError) as e:
            raise ProviderError(
                f"Malformed embedding response: missing {e}", stage="embedding"
            ) from e


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic pseudo-embeddings seeded from a hash of the text.

    Identical texts map to identical unit vectors, so similarity search
    behaves predictably without network access. For tests and offline demos.
    """

    def __init__(self, dimension: int = 1536, model: str = "hash-embedding"):
        self.dimension = dimension
        self.model = model

    def vector_for(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        state = seed % 233280
        values = []
        for _ in range(self.dimension):
            state = (state * 9301 + 49297) % 233280
            values.append(state / 233280 * 2 - 1)

        magnitude = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / magnitude for v in values]

    async def embed(self, texts: List[str]) -> List[EmbeddingItem]:
        return [EmbeddingItem(index=i, embedding=self.vector_for(t)) for i, t in enumerate(texts)]


class EmbeddingBatcher:
    """Converts texts into vectors through bounded, timed provider calls."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        timeout: Optional[float] = None,
        max_chars: Optional[int] = None,
        max_batch_size: Optional[int] = None,
    ):
        """Initialize the batcher.

        Args:
            provider: Embedding provider to call
            timeout: Seconds allowed per provider request (default from config)
            max_chars: Character ceiling per input text (default from config)
            max_batch_size: Max inputs per request (default: provider's limit)
        """
        self.provider = provider
        self.timeout = timeout if timeout is not None else config.PROVIDER_TIMEOUT
        self.max_chars = max_chars or config.EMBEDDING_MAX_CHARS
        self.max_batch_size = max_batch_size or provider.max_batch_size

    @property
    def model(self) -> str:
        return self.provider.model

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_chars:
            logger.warning(
                "embedding_input_truncated",
                original_length=len(text),
                max_chars=self.max_chars,
            )
            return text[: self.max_chars]
        return text

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, result[i] belonging to texts[i]

        Raises:
            ConfigurationError: If the provider has no credentials
            ProviderTimeoutError: If a request exceeds the timeout
            ProviderError: If the provider fails or answers inconsistently
        """
        if not texts:
            return []

        prepared = [self._truncate(t) for t in texts]
        embeddings: List[List[float]] = []

        for i in range(0, len(prepared), self.max_batch_size):
            request = prepared[i : i + self.max_batch_size]
            embeddings.extend(await self._embed_request(request))

        logger.debug(
            "embeddings_batch_generated",
            batch_size=len(texts),
            model=self.model,
        )

        return embeddings

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for a single text."""
        return (await self.embed_batch([text]))[0]

    async def _embed_request(self, texts: List[str]) -> List[List[float]]:
        try:
            items = await asyncio.wait_for(self.provider.embed(texts), self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "embedding_request_timeout",
                input_count=len(texts),
                timeout=self.timeout,
            )
            raise ProviderTimeoutError(
                f"Embedding request timed out after {self.timeout}s",
                stage="embedding",
            ) from e

        if len(items) != len(texts):
            raise ProviderError(
                f"Provider returned {len(items)} embeddings for {len(texts)} inputs",
                stage="embedding",
            )

        ordered = sorted(items, key=lambda item: item.index)
        if [item.index for item in ordered] != list(range(len(texts))):
            raise ProviderError(
                "Provider returned embeddings with unexpected indices",
                stage="embedding",
            )

        dimensions = {len(item.embedding) for item in ordered}
        if len(dimensions) != 1 or 0 in dimensions:
            raise ProviderError(
                "Provider returned empty or inconsistent embedding dimensions",
                stage="embedding",
                details={"dimensions": sorted(dimensions)},
            )

        return [item.embedding for item in ordered]


def get_embedding_batcher(provider_config: ProviderConfig = None) -> EmbeddingBatcher:
    """Build the default OpenAI-backed batcher.

    Args:
        provider_config: Provider settings (default from environment)

    Returns:
        EmbeddingBatcher instance
    """
    provider_config = provider_config or config.embedding_provider_config()
    return EmbeddingBatcher(
        OpenAIEmbeddingProvider(provider_config),
        timeout=provider_config.timeout,
        max_batch_size=provider_config.max_batch_size,
    )
