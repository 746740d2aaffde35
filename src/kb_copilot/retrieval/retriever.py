"""Semantic retriever — ranked, floor-filtered search with citation tracking.

This module is the **primary public interface** for retrieval.  It is used
by the search endpoint and by the copilot's context-assembly graph.

Usage::

    from kb_copilot.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(store, embedder)
    result = retriever.retrieve("What is the current runway?", top_k=5)
    for hit in result.hits:
        print(hit.citation.short_ref(), hit.content[:80])
"""

from __future__ import annotations

import logging

from kb_copilot.config import settings
from kb_copilot.ingestion.embedder import Embedder
from kb_copilot.retrieval.base import IndexStore
from kb_copilot.retrieval.models import (
    Citation,
    RetrievalHit,
    RetrievalResult,
    ScoredChunk,
)

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever over any :class:`IndexStore`.

    Parameters
    ----------
    store:
        A concrete index-store backend.
    embedder:
        Embeds the query with the same model used at ingestion time.
    default_k:
        Number of results returned when the caller does not specify one.
    score_threshold:
        Minimum cosine similarity; weaker hits are discarded so they do
        not pollute the prompt.
    max_k:
        Hard cap on results regardless of what the caller asks for.
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder,
        *,
        default_k: int = settings.default_top_k,
        score_threshold: float = settings.similarity_floor,
        max_k: int = settings.max_top_k,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k
        self.score_threshold = score_threshold
        self.max_k = max_k

    @property
    def store(self) -> IndexStore:
        return self._store

    # -- public API -----------------------------------------------------------

    def retrieve(self, query: str, top_k: int | None = None) -> RetrievalResult:
        """Run a semantic search and return ranked hits with citations.

        Parameters
        ----------
        query:
            Natural-language query string.
        top_k:
            Number of results wanted (defaults to ``self.default_k``,
            clamped to ``[1, self.max_k]``).

        Returns
        -------
        RetrievalResult
            Possibly empty; never contains more than *top_k* hits.

        Raises
        ------
        ValueError
            If *query* is blank.
        EmbeddingUnavailable
            If the query cannot be embedded.
        """
        if not query or not query.strip():
            raise ValueError("query must be a non-empty string")

        k = max(1, min(top_k or self.default_k, self.max_k))
        embedding = self._embedder.embed(query)
        scored = self._store.search(embedding, k)
        result = self._to_result(query, scored, k)

        logger.info(
            "Retrieved %d/%d hits for query %.80r (floor=%.2f)",
            len(result),
            len(scored),
            query,
            self.score_threshold,
        )
        return result

    # -- internals ------------------------------------------------------------

    def _to_result(self, query: str, scored: list[ScoredChunk], k: int) -> RetrievalResult:
        ranked = sorted(
            (s for s in scored if s.score >= self.score_threshold),
            key=lambda s: -s.score,
        )
        hits: list[RetrievalHit] = []
        seen: set[str] = set()
        for item in ranked:
            chunk = item.chunk
            if chunk.chunk_id in seen:
                continue
            seen.add(chunk.chunk_id)
            citation = Citation(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                source=chunk.document_name,
                ordinal=chunk.ordinal,
                char_start=chunk.char_start,
                char_end=chunk.char_end,
                page=chunk.page_estimate,
                score=item.score,
            )
            hits.append(RetrievalHit(content=chunk.text, citation=citation))
            if len(hits) == k:
                break
        return RetrievalResult(query=query, hits=hits)
