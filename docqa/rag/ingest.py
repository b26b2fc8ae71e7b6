"""Ingest pipeline for indexing uploaded documents.

Orchestrates:
- Input validation and sanitization
- Document persistence (concurrently with chunking)
- Text chunking
- Batched embedding generation with per-batch failure isolation
- Bulk chunk persistence
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import asyncio
import time
import uuid
import structlog

from docqa import config
from docqa.exceptions import (
    ConfigurationError,
    DocQAError,
    IngestionError,
    NoChunksError,
    NoEmbeddingsError,
    PersistenceError,
    ValidationError,
)
from docqa.rag.chunker import TextChunk, TextChunker
from docqa.rag.embeddings import EmbeddingBatcher
from docqa.rag.store import DocumentStore
from docqa.sanitizer import sanitize_text

logger = structlog.get_logger()


class IngestionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"


@dataclass
class BatchFailure:
    """An embedding batch that was skipped."""

    batch_number: int
    chunk_indices: List[int]
    error: str
    error_type: str
    retryable: bool


@dataclass
class IngestionResult:
    """Outcome of a document ingestion that stored at least one chunk."""

    document_id: str
    title: str
    status: IngestionStatus
    total_chunks: int
    chunks_embedded: int
    batches_total: int
    batches_succeeded: int
    batches_failed: int
    elapsed_seconds: float
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.status is IngestionStatus.PARTIAL_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "status": self.status.value,
            "documentId": self.document_id,
            "title": self.title,
            "chunks": {
                "total": self.total_chunks,
                "embedded": self.chunks_embedded,
            },
            "batches": {
                "total": self.batches_total,
                "successful": self.batches_succeeded,
                "failed": self.batches_failed,
            },
            "elapsedTime": round(self.elapsed_seconds, 3),
            "failures": [
                {
                    "batch": f.batch_number,
                    "chunkIndices": f.chunk_indices,
                    "error": f.error,
                    "errorType": f.error_type,
                    "retryable": f.retryable,
                }
                for f in self.failures
            ],
        }


class IngestPipeline:
    """Pipeline for ingesting one document at a time into the RAG system."""

    def __init__(
        self,
        store: DocumentStore,
        batcher: EmbeddingBatcher,
        chunker: TextChunker = None,
        batch_size: int = None,
        max_concurrent_batches: int = None,
        max_content_chars: int = None,
        min_content_length: int = None,
        rollback_on_failure: bool = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Document store to write to
            batcher: Embedding batcher shared with the query side
            chunker: Text chunker (default from config, dropping chunks of
                MIN_CHUNK_LENGTH characters or fewer)
            batch_size: Chunks per embedding batch (default from config)
            max_concurrent_batches: Embedding batches in flight at once (1 = sequential)
            max_content_chars: Cap on stored document content
            min_content_length: Minimum sanitized content length
            rollback_on_failure: Delete the document row when nothing could be stored
        """
        self.store = store
        self.batcher = batcher
        self.chunker = chunker or TextChunker(min_chunk_length=config.MIN_CHUNK_LENGTH)
        self.batch_size = batch_size or config.INGEST_BATCH_SIZE
        self.max_concurrent_batches = max_concurrent_batches or config.MAX_CONCURRENT_BATCHES
        self.max_content_chars = max_content_chars or config.MAX_CONTENT_CHARS
        self.min_content_length = (
            min_content_length if min_content_length is not None else config.MIN_CONTENT_LENGTH
        )
        self.rollback_on_failure = (
            rollback_on_failure if rollback_on_failure is not None else config.ROLLBACK_ON_FAILURE
        )

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=self.batcher.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            batch_size=self.batch_size,
            max_concurrent_batches=self.max_concurrent_batches,
        )

    def _validate(self, title: Optional[str], content: Optional[str]):
        if not title or not title.strip():
            raise ValidationError("Title is required", field="title")
        if not content:
            raise ValidationError("Content is required", field="content")

        clean_title = sanitize_text(title)
        clean_content = sanitize_text(content)

        if not clean_title:
            raise ValidationError("Title is required", field="title")
        if len(clean_content) < self.min_content_length:
            raise ValidationError(
                f"Content is too short (minimum {self.min_content_length} characters)",
                field="content",
                details={"length": len(clean_content)},
            )

        return clean_title, clean_content

    async def ingest_document(
        self,
        title: str,
        content: str,
        file_type: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest a single document.

        Once the document row may have been written, any failure (including
        cancellation) rolls it back when rollback_on_failure is set.

        Args:
            title: Document title
            content: Extracted document text
            file_type: Source file type (informational)
            document_id: Id to store the document under (generated if omitted)

        Returns:
            IngestionResult with SUCCESS or PARTIAL_SUCCESS status

        Raises:
            ValidationError: If input is missing or too short (nothing written)
            NoChunksError: If chunking produced nothing usable
            NoEmbeddingsError: If every embedding batch failed
            IngestionError: If a store write failed
            ConfigurationError: If the embedding provider has no credentials
        """
        started = time.monotonic()
        clean_title, clean_content = self._validate(title, content)
        document_id = document_id or str(uuid.uuid4())

        logger.info(
            "ingesting_document",
            document_id=document_id,
            title=clean_title,
            content_length=len(clean_content),
            file_type=file_type,
        )

        try:
            result = await self._store_document(
                document_id, clean_title, clean_content, file_type, started
            )
        except IngestionError as e:
            e.rolled_back = await self._abort(document_id)
            e.details["rolled_back"] = e.rolled_back
            raise
        except PersistenceError as e:
            rolled_back = await self._abort(document_id)
            raise IngestionError(
                f"Failed to store document: {e.message}",
                document_id=document_id,
                rolled_back=rolled_back,
                stats={"operation": e.operation},
            ) from e
        except BaseException as e:
            rolled_back = await self._abort(document_id)
            if isinstance(e, DocQAError):
                e.details.update(document_id=document_id, rolled_back=rolled_back)
            raise

        logger.info(
            "document_ingested",
            document_id=document_id,
            status=result.status.value,
            elapsed_seconds=round(result.elapsed_seconds, 3),
            total_chunks=result.total_chunks,
            chunks_embedded=result.chunks_embedded,
            batches_failed=result.batches_failed,
        )

        return result

    async def _store_document(
        self,
        document_id: str,
        title: str,
        content: str,
        file_type: Optional[str],
        started: float,
    ) -> IngestionResult:
        # Persisting the document and chunking are independent; chunk rows
        # may only be written once both have finished.
        _, chunks = await asyncio.gather(
            self.store.insert_document(
                document_id,
                title,
                content[: self.max_content_chars],
                file_type,
            ),
            asyncio.to_thread(self.chunker.chunk_text, content),
        )

        if not chunks:
            logger.warning("no_chunks_created", document_id=document_id)
            raise NoChunksError(
                "No chunks could be created from the document content",
                document_id=document_id,
                stats={"total_chunks": 0},
            )

        batches = [
            chunks[i : i + self.batch_size] for i in range(0, len(chunks), self.batch_size)
        ]
        outcomes = await self._embed_batches(document_id, batches)

        rows = []
        failures = []
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, BatchFailure):
                failures.append(outcome)
                continue
            rows.extend(
                (chunk.chunk_index, chunk.content, embedding)
                for chunk, embedding in zip(batch, outcome)
            )

        stats = {
            "total_chunks": len(chunks),
            "chunks_embedded": len(rows),
            "batches_total": len(batches),
            "batches_succeeded": len(batches) - len(failures),
            "batches_failed": len(failures),
        }

        if not rows:
            logger.error("no_embeddings_generated", document_id=document_id, **stats)
            raise NoEmbeddingsError(
                "No embeddings generated: all embedding batches failed",
                document_id=document_id,
                stats={**stats, "last_error": failures[-1].error},
            )

        await self.store.insert_chunks(document_id, rows)

        return IngestionResult(
            document_id=document_id,
            title=title,
            status=(
                IngestionStatus.PARTIAL_SUCCESS if failures else IngestionStatus.SUCCESS
            ),
            total_chunks=stats["total_chunks"],
            chunks_embedded=stats["chunks_embedded"],
            batches_total=stats["batches_total"],
            batches_succeeded=stats["batches_succeeded"],
            batches_failed=stats["batches_failed"],
            elapsed_seconds=time.monotonic() - started,
            failures=failures,
        )

    async def _embed_batches(
        self, document_id: str, batches: List[List[TextChunk]]
    ) -> list:
        """Embed every batch; a failed batch yields a BatchFailure instead of raising."""
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        total = len(batches)

        async def run(batch_number: int, batch: List[TextChunk]):
            async with semaphore:
                try:
                    embeddings = await self.batcher.embed_batch([c.content for c in batch])
                except ConfigurationError:
                    raise
                except Exception as e:
                    # Continue with the next batch instead of failing the document
                    message = e.message if isinstance(e, DocQAError) else str(e)
                    logger.error(
                        "embedding_batch_failed",
                        document_id=document_id,
                        batch=batch_number,
                        total_batches=total,
                        error=message,
                        error_type=type(e).__name__,
                    )
                    return BatchFailure(
                        batch_number=batch_number,
                        chunk_indices=[c.chunk_index for c in batch],
                        error=f"Batch {batch_number}/{total}: {message}",
                        error_type=type(e).__name__,
                        retryable=getattr(e, "retryable", False),
                    )

                logger.debug(
                    "embedding_batch_completed",
                    document_id=document_id,
                    batch=batch_number,
                    total_batches=total,
                    chunks=len(batch),
                )
                return embeddings

        outcomes = await asyncio.gather(
            *(run(number, batch) for number, batch in enumerate(batches, 1)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes

    async def _rollback(self, document_id: str) -> bool:
        if not self.rollback_on_failure:
            logger.warning("orphaned_document_left", document_id=document_id)
            return False
        await self.store.delete_document(document_id)
        logger.info("document_rolled_back", document_id=document_id)
        return True

    async def _abort(self, document_id: str) -> bool:
        """Roll back a failed ingestion; a cancelled caller cannot interrupt it."""
        try:
            return await asyncio.shield(self._rollback(document_id))
        except PersistenceError as e:
            logger.error("document_rollback_failed", document_id=document_id, error=str(e))
            return False
