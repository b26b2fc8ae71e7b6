"""Retriever for semantic search over ingested documents.

Handles:
- Query embedding generation
- Thresholded similarity search
- Document title resolution
- Context formatting for the answer prompt

The question must be embedded with the same model as the stored chunks;
vectors from different models are not comparable and the store cannot
tell them apart.
"""
from typing import List, Optional
from dataclasses import dataclass
import structlog

from docqa import config
from docqa.rag.embeddings import EmbeddingBatcher
from docqa.rag.store import DocumentStore

logger = structlog.get_logger()

PREVIEW_CHARS = 200
CONTEXT_DELIMITER = "\n\n---\n\n"
UNKNOWN_TITLE = "Unknown"


@dataclass
class RetrievalResult:
    """A single retrieved chunk with provenance."""

    chunk_id: int
    document_id: str
    document_title: Optional[str]
    chunk_index: int
    content: str
    similarity: float

    @property
    def preview(self) -> str:
        """Chunk text cut to PREVIEW_CHARS characters plus an ellipsis."""
        if len(self.content) > PREVIEW_CHARS:
            return self.content[:PREVIEW_CHARS] + "..."
        return self.content


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        store: DocumentStore,
        batcher: EmbeddingBatcher,
        match_threshold: float = None,
        match_count: int = None,
    ):
        """Initialize the retriever.

        Args:
            store: Document store to search
            batcher: Embedding batcher (same model as ingestion)
            match_threshold: Minimum cosine similarity (default from config)
            match_count: Maximum number of results (default from config)
        """
        self.store = store
        self.batcher = batcher
        self.match_threshold = (
            match_threshold if match_threshold is not None else config.MATCH_THRESHOLD
        )
        self.match_count = match_count if match_count is not None else config.MATCH_COUNT

        logger.info(
            "retriever_initialized",
            embedding_model=self.batcher.model,
            match_threshold=self.match_threshold,
            match_count=self.match_count,
        )

    async def retrieve(
        self,
        question: str,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Retrieve relevant chunks for a question.

        Args:
            question: User question
            match_threshold: Overrides the default similarity threshold
            match_count: Overrides the default result count

        Returns:
            List of RetrievalResult objects, best first; empty when nothing
            passes the threshold

        Raises:
            ProviderError: If the question cannot be embedded
            PersistenceError: If the store lookup fails
        """
        if not question or not question.strip():
            logger.warning("empty_query_provided")
            return []

        threshold = match_threshold if match_threshold is not None else self.match_threshold
        count = match_count if match_count is not None else self.match_count

        logger.info("retrieval_started", query_length=len(question), match_count=count)

        query_embedding = await self.batcher.embed(question)

        matches = await self.store.match_chunks(query_embedding, threshold, count)
        if not matches:
            logger.info("no_results_found", match_threshold=threshold)
            return []

        titles = await self.store.get_document_titles([m.document_id for m in matches])

        results = [
            RetrievalResult(
                chunk_id=m.chunk_id,
                document_id=m.document_id,
                document_title=titles.get(m.document_id),
                chunk_index=m.chunk_index,
                content=m.content,
                similarity=m.similarity,
            )
            for m in matches
        ]
        results.sort(key=lambda r: r.similarity, reverse=True)

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=results[0].similarity,
        )

        return results


def format_context(results: List[RetrievalResult]) -> str:
    """Join chunk texts in ranked order into one labelled context block."""
    return CONTEXT_DELIMITER.join(
        f"[Source {i}: {r.document_title or UNKNOWN_TITLE}]\n{r.content.strip()}"
        for i, r in enumerate(results, 1)
    )
