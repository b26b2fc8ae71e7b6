"""Text chunking with overlap for RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
"""
from typing import List
from dataclasses import dataclass
import structlog

from docqa import config

logger = structlog.get_logger()

SENTENCE_TERMINATORS = (".", "!", "?")


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    chunk_index: int
    char_start: int
    char_end: int


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        min_chunk_length: int = 0,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk window in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            min_chunk_length: Trimmed chunks of this length or shorter are dropped
                (0 drops only empty chunks)
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP
        )
        self.min_chunk_length = min_chunk_length

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            min_chunk_length=self.min_chunk_length,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Windows that do not reach the end of the text are cut at the last
        sentence terminator, else the last space, found in the back half of
        the window; otherwise at the raw character boundary.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects with contiguous 0-based indices
        """
        if not text:
            return []

        text_length = len(text)
        chunks = []
        start = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)

            # Only adjust the boundary if we're not at the end of the text
            if end < text_length:
                end = self._find_boundary(text, start, end)

            content = text[start:end].strip()
            if content and len(content) > self.min_chunk_length:
                chunks.append(
                    TextChunk(
                        content=content,
                        chunk_index=len(chunks),
                        char_start=start,
                        char_end=end,
                    )
                )

            if end >= text_length:
                break

            # Move to next chunk with overlap, always making progress
            next_start = end - self.chunk_overlap
            start = next_start if next_start > start else end

        logger.info(
            "text_chunked",
            text_length=text_length,
            **self.get_chunk_stats(chunks),
        )

        return chunks

    def _find_boundary(self, text: str, start: int, end: int) -> int:
        """Pick the end position for a window that stops short of the text end.

        Args:
            text: Full text being chunked
            start: Window start
            end: Raw window end (exclusive)

        Returns:
            Adjusted end position (exclusive)
        """
        min_break = start + self.chunk_size * 0.5

        # A terminator sitting right at the window edge still counts
        sentence_end = max(text.rfind(t, start, end + 1) for t in SENTENCE_TERMINATORS)
        if sentence_end > min_break:
            return sentence_end + 1

        space_end = text.rfind(" ", start, end + 1)
        if space_end > min_break:
            return space_end

        return end

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Summarise chunk sizes and the overlap actually produced between windows."""
        sizes = [len(c.content) for c in chunks]
        overlaps = [
            max(0, prev.char_end - cur.char_start) for prev, cur in zip(chunks, chunks[1:])
        ]
        return {
            "chunk_count": len(chunks),
            "avg_chunk_size": sum(sizes) // len(sizes) if sizes else 0,
            "min_chunk_size": min(sizes, default=0),
            "max_chunk_size": max(sizes, default=0),
            "avg_overlap": sum(overlaps) // len(overlaps) if overlaps else 0,
        }


def chunk_text(
    text: str, chunk_size: int = 1000, overlap: int = 200
) -> List[TextChunk]:
    """Chunk text with the given window settings (convenience function).

    Args:
        text: Text to chunk
        chunk_size: Window size in characters
        overlap: Overlap between windows in characters

    Returns:
        List of TextChunk objects
    """
    return TextChunker(chunk_size=chunk_size, chunk_overlap=overlap).chunk_text(text)
