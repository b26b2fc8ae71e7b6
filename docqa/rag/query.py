"""Question answering over the ingested documents."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import structlog

from docqa import config
from docqa.exceptions import ProviderError, ValidationError
from docqa.rag.answer import AnswerSynthesizer, fallback_answer
from docqa.rag.retriever import UNKNOWN_TITLE, RetrievalResult, Retriever

logger = structlog.get_logger()

NO_INFORMATION_ANSWER = (
    "No relevant information found. Please upload documents first "
    "or rephrase your question."
)


@dataclass
class Source:
    """Provenance of one context chunk used for an answer."""

    document_title: str
    chunk_text: str
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_title": self.document_title,
            "chunk_text": self.chunk_text,
            "similarity": round(self.similarity, 4),
        }


@dataclass
class QueryResponse:
    answer: str
    sources: List[Source] = field(default_factory=list)
    degraded: bool = False

    @property
    def found_information(self) -> bool:
        return bool(self.sources)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
        }
        if self.degraded:
            data["degraded"] = True
        return data


class QueryPipeline:
    """Retrieves context for a question and synthesizes a grounded answer."""

    def __init__(
        self,
        retriever: Retriever,
        synthesizer: AnswerSynthesizer,
        fallback_on_error: Optional[bool] = None,
        max_question_chars: Optional[int] = None,
    ):
        """Initialize the query pipeline.

        Args:
            retriever: Retriever over the document store
            synthesizer: Answer synthesizer
            fallback_on_error: Answer with a templated quote of the context
                when generation fails instead of raising (default from config)
            max_question_chars: Longest accepted question
        """
        self.retriever = retriever
        self.synthesizer = synthesizer
        self.fallback_on_error = (
            fallback_on_error if fallback_on_error is not None else config.ANSWER_FALLBACK_ON_ERROR
        )
        self.max_question_chars = max_question_chars or config.MAX_QUESTION_CHARS

    async def answer(self, question: str) -> QueryResponse:
        """Answer a question from the stored documents.

        Returns:
            QueryResponse; when nothing relevant is found the answer is
            NO_INFORMATION_ANSWER with no sources and no generation call

        Raises:
            ValidationError: If the question is empty or too long
            ProviderError: If embedding or generation fails
            PersistenceError: If the store lookup fails
        """
        if not question or not question.strip():
            raise ValidationError("Question is required", field="question")
        question = question.strip()
        if len(question) > self.max_question_chars:
            raise ValidationError(
                f"Question too long (max {self.max_question_chars} characters)",
                field="question",
            )

        results = await self.retriever.retrieve(question)

        if not results:
            logger.info("no_relevant_context_found")
            return QueryResponse(answer=NO_INFORMATION_ANSWER)

        sources = build_sources(results)

        try:
            answer = await self.synthesizer.synthesize(question, results)
        except ProviderError as e:
            if not self.fallback_on_error:
                raise
            logger.warning(
                "answer_generation_degraded",
                error=e.message,
                error_type=type(e).__name__,
            )
            return QueryResponse(
                answer=fallback_answer(results), sources=sources, degraded=True
            )

        logger.info("query_completed", num_sources=len(sources))
        return QueryResponse(answer=answer, sources=sources)


def build_sources(results: List[RetrievalResult]) -> List[Source]:
    return [
        Source(
            document_title=r.document_title or UNKNOWN_TITLE,
            chunk_text=r.preview,
            similarity=r.similarity,
        )
        for r in results
    ]
