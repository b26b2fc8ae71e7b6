"""Async document store combining SQLite rows with the FAISS index."""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import asyncio
import structlog

from docqa import config
from docqa.db import Database
from docqa.exceptions import PersistenceError
from docqa.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class ChunkMatch:
    """A stored chunk returned by similarity search."""

    chunk_id: int
    document_id: str
    chunk_index: int
    content: str
    similarity: float


class DocumentStore:
    """Persistent store for documents, chunk rows and their vectors.

    SQLite is the source of truth; the FAISS index is rebuilt from the
    embedding column on first use and kept in step on every write.
    """

    def __init__(self, db_path: Path = None, dimension: Optional[int] = None):
        """Initialize the store.

        Args:
            db_path: SQLite file (default from config)
            dimension: Expected embedding dimension (learned from data if omitted)
        """
        self.db = Database(db_path or config.DB_PATH)
        self.vector_store = FAISSVectorStore(dimension=dimension)
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._pending_writes: Dict[str, Set[asyncio.Future]] = {}

    async def init(self) -> None:
        """Create the schema if needed and load vectors into the index."""
        async with self._load_lock:
            if self._loaded:
                return
            await asyncio.to_thread(self.db.init_database)
            rows = await asyncio.to_thread(lambda: list(self.db.iter_embeddings()))
            try:
                self.vector_store.load(rows)
            except ValueError as e:
                raise PersistenceError(str(e), "load_index") from e
            self._loaded = True

    async def insert_document(
        self,
        document_id: str,
        title: str,
        content: str,
        file_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        await self.init()
        return await self._run_write(
            document_id,
            asyncio.to_thread(self.db.insert_document, document_id, title, content, file_type),
        )

    async def insert_chunks(
        self,
        document_id: str,
        chunks: Sequence[Tuple[int, str, Sequence[float]]],
    ) -> List[int]:
        """Bulk-insert (chunk_index, chunk_text, embedding) rows and index them.

        The rows and their vectors land together or not at all; cancelling the
        caller does not stop a write that has already started.

        Raises:
            PersistenceError: If the write fails or dimensions don't match the index
        """
        if not chunks:
            return []
        await self.init()

        dimensions = {len(c[2]) for c in chunks}
        expected = self.vector_store.dimension
        if len(dimensions) != 1 or (expected is not None and dimensions != {expected}):
            raise PersistenceError(
                f"Embedding dimensions {sorted(dimensions)} do not match the store ({expected})",
                "insert_chunks",
                {"document_id": document_id},
            )

        return await self._run_write(document_id, self._write_chunks(document_id, chunks))

    async def _write_chunks(
        self,
        document_id: str,
        chunks: Sequence[Tuple[int, str, Sequence[float]]],
    ) -> List[int]:
        row_ids = await asyncio.to_thread(self.db.insert_chunks, document_id, chunks)

        try:
            self.vector_store.add_vectors(row_ids, [c[2] for c in chunks])
        except ValueError as e:
            raise PersistenceError(str(e), "index_chunks", {"document_id": document_id}) from e

        return row_ids

    async def _run_write(self, document_id: str, write):
        """Run a write as its own task so a cancelled caller cannot split it."""
        task = asyncio.ensure_future(write)
        pending = self._pending_writes.setdefault(document_id, set())
        pending.add(task)
        task.add_done_callback(pending.discard)
        return await asyncio.shield(task)

    async def match_chunks(
        self,
        query_embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
    ) -> List[ChunkMatch]:
        """Nearest-neighbour search filtered by cosine similarity.

        Returns:
            At most match_count matches with similarity >= match_threshold,
            best first
        """
        await self.init()

        try:
            hits = self.vector_store.search(
                query_embedding, top_k=match_count, min_score=match_threshold
            )
        except ValueError as e:
            raise PersistenceError(str(e), "match_chunks") from e

        if not hits:
            return []

        rows = await asyncio.to_thread(self.db.get_chunks_by_ids, [h[0] for h in hits])
        rows_by_id = {row["id"]: row for row in rows}

        matches = []
        for chunk_id, similarity in hits:
            row = rows_by_id.get(chunk_id)
            if row is None:
                logger.warning("indexed_chunk_missing_from_database", chunk_id=chunk_id)
                continue
            matches.append(
                ChunkMatch(
                    chunk_id=chunk_id,
                    document_id=row["document_id"],
                    chunk_index=row["chunk_index"],
                    content=row["chunk_text"],
                    similarity=similarity,
                )
            )

        return matches

    async def get_document_titles(self, document_ids: Sequence[str]) -> Dict[str, str]:
        """Resolve document ids to titles in one lookup (ids are deduplicated)."""
        unique_ids = list(dict.fromkeys(document_ids))
        if not unique_ids:
            return {}
        await self.init()
        docs = await asyncio.to_thread(self.db.get_documents_by_ids, unique_ids)
        return {doc["id"]: doc["title"] for doc in docs}

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document and all of its chunks.

        Writes still in flight for the document finish first, so nothing they
        commit survives the delete.

        Returns:
            False when no such document existed
        """
        await self.init()
        pending = self._pending_writes.pop(document_id, set())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        deleted, chunk_ids = await asyncio.to_thread(self.db.delete_document, document_id)
        self.vector_store.remove_vectors(chunk_ids)
        return deleted

    async def list_documents(self) -> List[Dict[str, Any]]:
        await self.init()
        return await asyncio.to_thread(self.db.list_documents)

    async def get_document_chunks(self, document_id: str) -> List[Dict[str, Any]]:
        await self.init()
        return await asyncio.to_thread(self.db.get_chunks_for_document, document_id)

    async def get_stats(self) -> Dict[str, Any]:
        await self.init()
        counts = await asyncio.to_thread(self.db.get_counts)
        return {**counts, "index": self.vector_store.get_stats()}
