#!/usr/bin/env python
"""Ingest text files from a directory into the document store.

Usage:
    python scripts/ingest_files.py docs/              # Ingest every supported file
    python scripts/ingest_files.py docs/ --verbose    # Show per-file results
    python scripts/ingest_files.py docs/ --offline    # Hash embeddings, no API calls
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docqa import config
from docqa.exceptions import DocQAError
from docqa.log import configure_logging
from docqa.rag.embeddings import EmbeddingBatcher, HashEmbeddingProvider, get_embedding_batcher
from docqa.rag.ingest import IngestPipeline
from docqa.rag.store import DocumentStore
import structlog

logger = structlog.get_logger()

FILE_TYPES = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".csv": "text/csv",
}


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None
        self.stats = {
            "files_ingested": 0,
            "files_partial": 0,
            "files_failed": 0,
            "chunks_embedded": 0,
        }

    def start(self, total: int):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  Ingesting {total} file(s)")
        print(f"{'=' * 60}\n")

    def record(self, file_path: Path, result=None, error: Exception = None):
        if error is not None:
            self.stats["files_failed"] += 1
            print(f"  FAILED   {file_path.name}: {error}")
            return

        self.stats["files_ingested"] += 1
        self.stats["chunks_embedded"] += result.chunks_embedded
        if result.is_partial:
            self.stats["files_partial"] += 1
            print(
                f"  PARTIAL  {file_path.name}: {result.chunks_embedded}/{result.total_chunks} "
                f"chunks, {result.batches_failed} batch(es) failed"
            )
        elif self.verbose:
            print(f"  OK       {file_path.name}: {result.chunks_embedded} chunks")

    def finish(self):
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print("  Ingestion Complete")
        print(f"{'=' * 60}\n")
        print(f"  Files ingested:   {self.stats['files_ingested']}")
        print(f"  Partial:          {self.stats['files_partial']}")
        print(f"  Failed:           {self.stats['files_failed']}")
        print(f"  Chunks embedded:  {self.stats['chunks_embedded']}")
        print(f"  Time elapsed:     {elapsed_seconds:.1f}s\n")


def discover_files(directory: Path):
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")
    return sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in FILE_TYPES
    )


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest text documents for question answering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("directory", type=Path, help="Directory containing documents")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show per-file results"
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use deterministic hash embeddings instead of the embedding API",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help=f"SQLite database (default: {config.DB_PATH})",
    )
    args = parser.parse_args()

    configure_logging()

    print("\nConfiguration:")
    print(f"   Database:         {args.db_path or config.DB_PATH}")
    print(f"   Embedding model:  {'hash (offline)' if args.offline else config.EMBEDDING_MODEL}")
    print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
    print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")
    print(f"   Batch size:       {config.INGEST_BATCH_SIZE} chunks")

    try:
        files = discover_files(args.directory)
    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    if args.offline:
        batcher = EmbeddingBatcher(HashEmbeddingProvider(config.EMBEDDING_DIMENSION))
    else:
        batcher = get_embedding_batcher()

    store = DocumentStore(args.db_path or config.DB_PATH)
    pipeline = IngestPipeline(store=store, batcher=batcher)
    progress = ProgressReporter(verbose=args.verbose)
    progress.start(len(files))

    try:
        for file_path in files:
            try:
                content = file_path.read_text(encoding="utf-8", errors="ignore")
                result = await pipeline.ingest_document(
                    file_path.name, content, FILE_TYPES[file_path.suffix.lower()]
                )
            except (DocQAError, OSError) as e:
                logger.error(
                    "file_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                progress.record(file_path, error=e)
                # Continue with next file instead of failing entirely
                continue
            progress.record(file_path, result=result)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    progress.finish()

    if progress.stats["files_failed"] > 0:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
