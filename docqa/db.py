"""SQLite persistence for documents and their embedded chunks.

Tables:
- documents: one row per ingested document
- document_chunks: chunk text plus its embedding (float32 BLOB), owned by
  a document and removed with it via ON DELETE CASCADE
"""
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from datetime import datetime, timezone
import numpy as np
import structlog

from docqa.exceptions import PersistenceError

logger = structlog.get_logger()


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_embedding(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class Database:
    """Thin SQLite gateway; every call opens and closes its own connection."""

    def __init__(self, db_path: Path):
        """Initialize the database gateway.

        Args:
            db_path: Path of the SQLite file (created on init_database)
        """
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database.

        Returns:
            sqlite3.Connection with row_factory set and foreign keys enforced
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_database(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()

        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    file_type TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS document_chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL
                        REFERENCES documents(id) ON DELETE CASCADE,
                    chunk_text TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    dimension INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE(document_id, chunk_index)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                ON document_chunks(document_id)
            """)

            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise PersistenceError(f"Database initialization failed: {e}", "init") from e
        finally:
            conn.close()

    def insert_document(
        self,
        document_id: str,
        title: str,
        content: str,
        file_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert a document row.

        Returns:
            The stored document as a dict
        """
        created_at = _utcnow()
        conn = self.get_connection()

        try:
            conn.execute(
                """
                INSERT INTO documents (id, title, content, file_type, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (document_id, title, content, file_type, created_at),
            )
            conn.commit()

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("document_insert_failed", error=str(e), document_id=document_id)
            raise PersistenceError(
                f"Failed to insert document: {e}",
                "insert_document",
                {"document_id": document_id},
            ) from e
        finally:
            conn.close()

        return {
            "id": document_id,
            "title": title,
            "content": content,
            "file_type": file_type,
            "created_at": created_at,
        }

    def insert_chunks(
        self,
        document_id: str,
        chunks: Sequence[Tuple[int, str, Sequence[float]]],
    ) -> List[int]:
        """Insert chunk rows for one document in a single transaction.

        Args:
            document_id: Owning document
            chunks: (chunk_index, chunk_text, embedding) tuples

        Returns:
            Row ids of the inserted chunks, in input order
        """
        if not chunks:
            return []

        created_at = _utcnow()
        conn = self.get_connection()

        try:
            row_ids = []
            for chunk_index, chunk_text, embedding in chunks:
                cursor = conn.execute(
                    """
                    INSERT INTO document_chunks (
                        document_id, chunk_text, chunk_index,
                        embedding, dimension, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document_id,
                        chunk_text,
                        chunk_index,
                        encode_embedding(embedding),
                        len(embedding),
                        created_at,
                    ),
                )
                row_ids.append(cursor.lastrowid)

            conn.commit()
            logger.info("chunks_inserted", document_id=document_id, count=len(row_ids))
            return row_ids

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("chunks_insert_failed", error=str(e), document_id=document_id)
            raise PersistenceError(
                f"Failed to insert chunks: {e}",
                "insert_chunks",
                {"document_id": document_id, "count": len(chunks)},
            ) from e
        finally:
            conn.close()

    def get_documents_by_ids(self, document_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch id/title/file_type/created_at for the given document ids."""
        if not document_ids:
            return []

        conn = self.get_connection()

        try:
            placeholders = ",".join("?" * len(document_ids))
            rows = conn.execute(
                f"""
                SELECT id, title, file_type, created_at
                FROM documents
                WHERE id IN ({placeholders})
                """,
                list(document_ids),
            ).fetchall()
            return [dict(row) for row in rows]

        except sqlite3.Error as e:
            logger.error("documents_retrieval_failed", error=str(e))
            raise PersistenceError(f"Failed to load documents: {e}", "get_documents") from e
        finally:
            conn.close()

    def list_documents(self) -> List[Dict[str, Any]]:
        """List all documents, newest first, with their chunk counts."""
        conn = self.get_connection()

        try:
            rows = conn.execute("""
                SELECT
                    d.id, d.title, d.content, d.file_type, d.created_at,
                    COUNT(c.id) AS chunk_count
                FROM documents d
                LEFT JOIN document_chunks c ON c.document_id = d.id
                GROUP BY d.id
                ORDER BY d.created_at DESC, d.rowid DESC
            """).fetchall()
            return [dict(row) for row in rows]

        except sqlite3.Error as e:
            logger.error("documents_list_failed", error=str(e))
            raise PersistenceError(f"Failed to list documents: {e}", "list_documents") from e
        finally:
            conn.close()

    def get_chunks_by_ids(self, chunk_ids: Sequence[int]) -> List[Dict[str, Any]]:
        """Fetch chunk rows (without embeddings) by row id."""
        if not chunk_ids:
            return []

        conn = self.get_connection()

        try:
            placeholders = ",".join("?" * len(chunk_ids))
            rows = conn.execute(
                f"""
                SELECT id, document_id, chunk_text, chunk_index, created_at
                FROM document_chunks
                WHERE id IN ({placeholders})
                """,
                list(chunk_ids),
            ).fetchall()
            return [dict(row) for row in rows]

        except sqlite3.Error as e:
            logger.error("chunks_retrieval_failed", error=str(e))
            raise PersistenceError(f"Failed to load chunks: {e}", "get_chunks") from e
        finally:
            conn.close()

    def get_chunks_for_document(self, document_id: str) -> List[Dict[str, Any]]:
        """Fetch a document's chunk rows (without embeddings) in index order."""
        conn = self.get_connection()

        try:
            rows = conn.execute(
                """
                SELECT id, document_id, chunk_text, chunk_index, created_at
                FROM document_chunks
                WHERE document_id = ?
                ORDER BY chunk_index
                """,
                (document_id,),
            ).fetchall()
            return [dict(row) for row in rows]

        except sqlite3.Error as e:
            logger.error("document_chunks_retrieval_failed", error=str(e))
            raise PersistenceError(
                f"Failed to load chunks: {e}",
                "get_document_chunks",
                {"document_id": document_id},
            ) from e
        finally:
            conn.close()

    def iter_embeddings(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield (chunk id, embedding) for every stored chunk."""
        conn = self.get_connection()

        try:
            for row in conn.execute("SELECT id, embedding FROM document_chunks ORDER BY id"):
                yield row["id"], decode_embedding(row["embedding"])

        except sqlite3.Error as e:
            logger.error("embeddings_scan_failed", error=str(e))
            raise PersistenceError(f"Failed to read embeddings: {e}", "scan_embeddings") from e
        finally:
            conn.close()

    def delete_document(self, document_id: str) -> Tuple[bool, List[int]]:
        """Delete a document; its chunks go with it.

        Returns:
            (whether the document existed, ids of the chunks that were removed)
        """
        conn = self.get_connection()

        try:
            chunk_ids = [
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM document_chunks WHERE document_id = ?",
                    (document_id,),
                )
            ]
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()

            deleted = cursor.rowcount > 0
            logger.info(
                "document_deleted",
                document_id=document_id,
                existed=deleted,
                chunks_removed=len(chunk_ids),
            )
            return deleted, chunk_ids

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("document_delete_failed", error=str(e), document_id=document_id)
            raise PersistenceError(
                f"Failed to delete document: {e}",
                "delete_document",
                {"document_id": document_id},
            ) from e
        finally:
            conn.close()

    def get_counts(self) -> Dict[str, int]:
        """Get document and chunk totals."""
        conn = self.get_connection()

        try:
            documents = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            chunks = conn.execute("SELECT COUNT(*) FROM document_chunks").fetchone()[0]
            return {"documents": documents, "chunks": chunks}

        except sqlite3.Error as e:
            logger.error("count_failed", error=str(e))
            raise PersistenceError(f"Failed to count rows: {e}", "count") from e
        finally:
            conn.close()
