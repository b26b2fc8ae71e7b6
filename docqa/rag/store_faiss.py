"""FAISS vector index for cosine similarity search over stored chunks.

Handles:
- Index construction from the database's embedding column
- Incremental vector addition and removal keyed by chunk id
- Thresholded top-k search
"""
from typing import Iterable, List, Optional, Sequence, Tuple
import numpy as np
import faiss
import structlog

logger = structlog.get_logger()


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalise rows so inner product equals cosine similarity."""
    vectors = np.ascontiguousarray(vectors, dtype=np.float32)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


class FAISSVectorStore:
    """In-memory FAISS index mapping chunk ids to normalised vectors."""

    def __init__(self, dimension: Optional[int] = None):
        """Initialize the vector store.

        Args:
            dimension: Embedding dimension (taken from the first vectors if omitted)
        """
        self.dimension = dimension
        self.index: Optional[faiss.Index] = None

        if dimension is not None:
            self.init_new_index(dimension)

    @property
    def ntotal(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    def init_new_index(self, dimension: int) -> None:
        """Initialize a new, empty index.

        Args:
            dimension: Embedding dimension
        """
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        logger.info(
            "faiss_index_initialized",
            dimension=dimension,
            index_type="IndexIDMap2(IndexFlatIP)",
        )

    def load(self, rows: Iterable[Tuple[int, np.ndarray]]) -> None:
        """Rebuild the index from (chunk id, embedding) pairs.

        Raises:
            ValueError: If stored embeddings disagree on dimension
        """
        rows = list(rows)
        self.index = None

        if not rows:
            if self.dimension is not None:
                self.init_new_index(self.dimension)
            logger.info("faiss_index_loaded", vector_count=0)
            return

        ids = [row_id for row_id, _ in rows]
        vectors = [vector for _, vector in rows]
        self.dimension = None
        self.add_vectors(ids, vectors)

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
        )

    def add_vectors(self, ids: Sequence[int], embeddings: Sequence[Sequence[float]]) -> None:
        """Add vectors under the given chunk ids.

        Raises:
            ValueError: On dimension mismatch
        """
        if not embeddings:
            return

        try:
            vectors = np.array(embeddings, dtype=np.float32)
        except ValueError as e:
            raise ValueError("Embeddings have inconsistent dimensions") from e

        if vectors.ndim != 2:
            raise ValueError("Embeddings have inconsistent dimensions")

        if self.index is None:
            self.init_new_index(vectors.shape[1])

        if vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {vectors.shape[1]}"
            )

        self.index.add_with_ids(_normalize(vectors), np.asarray(ids, dtype=np.int64))

        logger.debug("vectors_added", count=len(ids), total_vectors=self.index.ntotal)

    def remove_vectors(self, ids: Sequence[int]) -> int:
        """Remove vectors by chunk id.

        Returns:
            Number of vectors removed
        """
        if self.index is None or not ids:
            return 0

        removed = self.index.remove_ids(np.asarray(ids, dtype=np.int64))
        logger.debug("vectors_removed", count=removed, total_vectors=self.index.ntotal)
        return removed

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        min_score: float = -1.0,
    ) -> List[Tuple[int, float]]:
        """Search for the most similar vectors.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results
            min_score: Minimum cosine similarity to keep a hit

        Returns:
            (chunk id, similarity) pairs sorted by descending similarity

        Raises:
            ValueError: On dimension mismatch
        """
        if self.index is None or self.index.ntotal == 0 or top_k <= 0:
            return []

        query_vector = np.array([query_embedding], dtype=np.float32)

        if query_vector.shape[1] != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {query_vector.shape[1]}"
            )

        top_k = min(top_k, self.index.ntotal)
        scores, ids = self.index.search(_normalize(query_vector), top_k)

        hits = [
            (int(chunk_id), float(score))
            for chunk_id, score in zip(ids[0].tolist(), scores[0].tolist())
            if chunk_id != -1 and score >= min_score
        ]
        hits.sort(key=lambda hit: hit[1], reverse=True)

        logger.debug("vector_search_completed", top_k=top_k, results_found=len(hits))

        return hits

    def get_stats(self) -> dict:
        """Get statistics about the vector store."""
        return {
            "initialized": self.index is not None,
            "vector_count": self.ntotal,
            "dimension": self.dimension,
        }
