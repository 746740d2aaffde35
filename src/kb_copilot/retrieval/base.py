"""Abstract base class for index-store backends.

Adding a new backend only requires subclassing :class:`IndexStore` and
implementing the abstract methods.  The retriever and the ingestion
pipeline are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np

from kb_copilot.config import settings
from kb_copilot.retrieval.models import ChunkRecord, ScoredChunk


class IndexStore(ABC):
    """Durable mapping document → ordered chunks → vectors + metadata.

    Parameters
    ----------
    max_top_k:
        Upper bound applied to every :meth:`search`, whatever the caller asks.
    """

    def __init__(self, *, max_top_k: int = settings.max_top_k) -> None:
        self.max_top_k = max_top_k

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> None:
        """Replace every chunk of *document_id* with *chunks*.

        The swap is atomic from a reader's point of view: searches see
        either the complete old set or the complete new set, never a mix.
        """
        ...

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        """Remove all chunks of *document_id*; return how many were removed."""
        ...

    @abstractmethod
    def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]:
        """Return the nearest chunks by cosine similarity, best first.

        Ties are broken by insertion order (earlier-indexed chunk wins).
        *top_k* is clamped to ``[1, max_top_k]``.
        """
        ...

    @abstractmethod
    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        """Return the chunks of *document_id* ordered by ordinal."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def count_chunks(self, document_id: str) -> int:
        return len(self.get_chunks(document_id))

    # -- helpers --------------------------------------------------------------

    def clamp_top_k(self, top_k: int) -> int:
        return max(1, min(int(top_k), self.max_top_k))

    @staticmethod
    def validate_chunks(document_id: str, chunks: Sequence[ChunkRecord]) -> None:
        """Reject chunk sets that belong elsewhere or mix vector sizes."""
        dimensions = {len(c.embedding) for c in chunks}
        if len(dimensions) > 1:
            raise ValueError(f"Chunks for {document_id!r} mix embedding sizes {sorted(dimensions)}")
        for chunk in chunks:
            if chunk.document_id != document_id:
                raise ValueError(
                    f"Chunk {chunk.chunk_id!r} belongs to {chunk.document_id!r}, not {document_id!r}"
                )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two raw vectors; 0.0 when either has zero norm."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(left) * np.linalg.norm(right)
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)
