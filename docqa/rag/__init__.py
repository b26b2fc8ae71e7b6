"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- Embedding generation with batch-level failure isolation
- Document ingestion orchestration
- FAISS-backed similarity search over stored chunks
- Semantic retrieval and grounded answer synthesis
"""
