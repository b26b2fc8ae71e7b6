"""Grounded answer generation from retrieved context."""
from abc import ABC, abstractmethod
from typing import Dict, List
import structlog

from docqa import config
from docqa.config import ProviderConfig
from docqa.exceptions import ProviderError
from docqa.llm_client import OpenAIClient
from docqa.rag.retriever import UNKNOWN_TITLE, RetrievalResult, format_context

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are a helpful assistant for document analysis. Answer questions based on the provided context.

IMPORTANT RULES:
1. Answer precisely and completely, using the context as your primary source
2. If the exact answer is not in the context, share the relevant information the material does contain and say what is missing
3. Be specific and structure your answer clearly
4. When you use information from the context, mention which source it comes from (e.g. "Source 2")
5. Answer in the same language as the question

Context from the documents:
{context}"""


class GenerationProvider(ABC):
    """Capability: generate text from a chat-style prompt."""

    model: str

    @abstractmethod
    async def generate(self, messages: List[Dict[str, str]]) -> str:
        """Return the generated text for the given messages."""


class OpenAIGenerationProvider(GenerationProvider):
    """Generation provider backed by the OpenAI-compatible chat API."""

    def __init__(
        self,
        provider_config: ProviderConfig,
        client: OpenAIClient = None,
        temperature: float = None,
        max_tokens: int = None,
    ):
        self.model = provider_config.model
        self.client = client or OpenAIClient(provider_config)
        self.temperature = temperature if temperature is not None else config.CHAT_TEMPERATURE
        self.max_tokens = max_tokens or config.CHAT_MAX_TOKENS

    async def generate(self, messages: List[Dict[str, str]]) -> str:
        data = await self.client.chat(
            messages,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Malformed chat completion response", stage="generation") from e

        if not content:
            raise ProviderError("Empty response from the language model", stage="generation")

        return content


class AnswerSynthesizer:
    """Builds a grounded prompt and asks the generation provider for an answer."""

    def __init__(self, provider: GenerationProvider):
        self.provider = provider

    def build_messages(
        self, question: str, results: List[RetrievalResult]
    ) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(context=format_context(results))},
            {"role": "user", "content": question},
        ]

    async def synthesize(self, question: str, results: List[RetrievalResult]) -> str:
        """Generate an answer to the question from ranked context chunks.

        Raises:
            ProviderError: If generation fails (no retry is attempted)
        """
        messages = self.build_messages(question, results)

        logger.info(
            "answer_generation_started",
            model=self.provider.model,
            context_chunks=len(results),
            prompt_length=len(messages[0]["content"]),
        )

        answer = await self.provider.generate(messages)

        logger.info("answer_generated", answer_length=len(answer))
        return answer


def fallback_answer(results: List[RetrievalResult]) -> str:
    """Templated answer quoting the raw context when generation is unavailable."""
    lines = ["The language model is unavailable. The most relevant passages are:"]
    for i, r in enumerate(results, 1):
        lines.append(f"\n[{i}] {r.document_title or UNKNOWN_TITLE} ({r.similarity:.0%})\n{r.preview}")
    return "\n".join(lines)
