"""
Index — vector-store backends that hold embedded text units.

This module wraps the vector store behind a clean interface so that
the vectorization service never needs to know which DB is backing it.

Public surface
--------------
- :class:`VectorIndexBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`InMemoryVectorIndex` — process-local backend for tests.
- :class:`ChromaVectorIndex` — default Chroma backend.
"""

from rag_ingest.index.base import VectorIndexBase
from rag_ingest.index.memory_store import InMemoryVectorIndex

__all__ = [
    "ChromaVectorIndex",
    "InMemoryVectorIndex",
    "VectorIndexBase",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorIndex to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorIndex":
        from rag_ingest.index.chroma_store import ChromaVectorIndex

        return ChromaVectorIndex
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
