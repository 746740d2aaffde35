"""
Retrieval — index stores, nearest-neighbour search and citations.

This package hides the vector backend behind a clean interface so that
the copilot layer never needs to know which store is answering.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for retrieval with citations.
- :class:`IndexStore` — abstract backend.
- :class:`InMemoryIndexStore` — exact in-process backend.
- :class:`ChromaIndexStore` — Chroma backend (imported lazily).
- :class:`ChunkRecord`, :class:`Citation`, :class:`RetrievalHit`,
  :class:`RetrievalResult` — data models.
"""

from kb_copilot.retrieval.base import IndexStore
from kb_copilot.retrieval.memory_store import InMemoryIndexStore
from kb_copilot.retrieval.models import (
    ChunkRecord,
    Citation,
    RetrievalHit,
    RetrievalResult,
    ScoredChunk,
)
from kb_copilot.retrieval.retriever import SemanticRetriever

__all__ = [
    "ChromaIndexStore",
    "ChunkRecord",
    "Citation",
    "InMemoryIndexStore",
    "IndexStore",
    "RetrievalHit",
    "RetrievalResult",
    "ScoredChunk",
    "SemanticRetriever",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaIndexStore to avoid pulling in chromadb at import time."""
    if name == "ChromaIndexStore":
        from kb_copilot.retrieval.chroma_store import ChromaIndexStore

        return ChromaIndexStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
