"""In-process index store with exact cosine search."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

import numpy as np

from kb_copilot.config import settings
from kb_copilot.errors import IndexStoreError
from kb_copilot.retrieval.base import IndexStore
from kb_copilot.retrieval.models import ChunkRecord, ScoredChunk

logger = logging.getLogger(__name__)


class InMemoryIndexStore(IndexStore):
    """Exact nearest-neighbour index held in memory.

    Suitable for local development, tests and small knowledge bases.  All
    reads and writes go through one re-entrant lock, which is what makes
    :meth:`upsert_chunks` atomic for readers.
    """

    def __init__(self, *, max_top_k: int = settings.max_top_k) -> None:
        super().__init__(max_top_k=max_top_k)
        self._lock = threading.RLock()
        self._documents: dict[str, list[ChunkRecord]] = {}
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self._dimension: int | None = None

    # -- IndexStore overrides -------------------------------------------------

    def upsert_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> None:
        new_chunks = sorted(chunks, key=lambda c: c.ordinal)
        self.validate_chunks(document_id, new_chunks)

        with self._lock:
            if new_chunks:
                dimension = len(new_chunks[0].embedding)
                others_present = any(doc != document_id for doc in self._documents)
                if others_present and self._dimension not in (None, dimension):
                    raise IndexStoreError(
                        f"Index holds {self._dimension}-dimensional vectors; "
                        f"refusing {dimension}-dimensional chunks for {document_id!r}"
                    )
                self._dimension = dimension

            for old in self._documents.pop(document_id, []):
                self._sequence.pop(old.chunk_id, None)
            if new_chunks:
                self._documents[document_id] = new_chunks
                for chunk in new_chunks:
                    self._sequence[chunk.chunk_id] = self._next_sequence
                    self._next_sequence += 1
            if not self._documents:
                self._dimension = None

        logger.info("Stored %d chunks for document %s", len(new_chunks), document_id)

    def delete_document(self, document_id: str) -> int:
        with self._lock:
            removed = self._documents.pop(document_id, [])
            for chunk in removed:
                self._sequence.pop(chunk.chunk_id, None)
            if not self._documents:
                self._dimension = None
        logger.info("Deleted %d chunks for document %s", len(removed), document_id)
        return len(removed)

    def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]:
        top_k = self.clamp_top_k(top_k)
        with self._lock:
            chunks = [c for doc_chunks in self._documents.values() for c in doc_chunks]
            if not chunks:
                return []
            if len(query_embedding) != self._dimension:
                raise IndexStoreError(
                    f"Query dimension {len(query_embedding)} does not match index dimension {self._dimension}"
                )
            sequences = np.array([self._sequence[c.chunk_id] for c in chunks])

        matrix = np.array([c.embedding for c in chunks], dtype=np.float64)
        query = np.asarray(query_embedding, dtype=np.float64)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        # Primary key: score descending; secondary: insertion order ascending.
        order = np.lexsort((sequences, -scores))[:top_k]
        return [ScoredChunk(chunk=chunks[i], score=float(scores[i])) for i in order]

    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        with self._lock:
            return list(self._documents.get(document_id, []))

    def health_check(self) -> bool:
        return True

    # -- extras ---------------------------------------------------------------

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def __len__(self) -> int:
        with self._lock:
            return sum(len(chunks) for chunks in self._documents.values())
