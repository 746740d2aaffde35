"""Chroma implementation of the index-store abstraction.

Chroma has no multi-record transactions, so document replacement is made
atomic for readers with *generations*:

1. new chunks are written under a fresh generation tag,
2. a one-record flip in the ``<collection>__documents`` registry makes
   that generation the active one,
3. generations older than the one just superseded are deleted.

A search snapshots the registry before querying and only matches chunks
of the generations in that snapshot.  The superseded generation survives
until the following reindex, so a reader racing a reindex sees the
complete old set or the complete new set.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Sequence
from typing import Any

import chromadb

from kb_copilot.config import settings
from kb_copilot.errors import IndexStoreError
from kb_copilot.retrieval.base import IndexStore, cosine_similarity
from kb_copilot.retrieval.models import ChunkRecord, ScoredChunk

logger = logging.getLogger(__name__)

# Registry records carry no meaningful vector; Chroma still requires one.
_REGISTRY_VECTOR = [1.0]


class ChromaIndexStore(IndexStore):
    """Chroma-backed index store.

    Parameters
    ----------
    collection_name:
        Name of the chunk collection.  The registry lives next to it in
        ``<collection_name>__documents``.
    client:
        A ready Chroma client (``EphemeralClient`` in tests).  When
        omitted an ``HttpClient`` is created from *host* / *port*.
    host / port:
        Chroma server location.
    max_top_k:
        Upper bound on results per search.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        client: Any | None = None,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        max_top_k: int = settings.max_top_k,
    ) -> None:
        super().__init__(max_top_k=max_top_k)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )
        self._registry = self._client.get_or_create_collection(
            f"{collection_name}__documents",
            embedding_function=None,
        )
        self._write_lock = threading.Lock()

    # -- IndexStore overrides -------------------------------------------------

    def upsert_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> None:
        new_chunks = sorted(chunks, key=lambda c: c.ordinal)
        self.validate_chunks(document_id, new_chunks)
        generation = uuid.uuid4().hex[:12]
        base_sequence = time.time_ns()

        with self._write_lock:
            try:
                previous = self._active_generations({document_id}).get(document_id)
                if new_chunks:
                    self._collection.add(
                        ids=[f"{c.chunk_id}@{generation}" for c in new_chunks],
                        embeddings=[list(c.embedding) for c in new_chunks],
                        documents=[c.text for c in new_chunks],
                        metadatas=[
                            _chunk_metadata(c, generation, base_sequence + i)
                            for i, c in enumerate(new_chunks)
                        ],
                    )
                self._registry.upsert(
                    ids=[document_id],
                    embeddings=[_REGISTRY_VECTOR],
                    metadatas=[{"generation": generation, "chunk_count": len(new_chunks)}],
                )
            except Exception as exc:
                # Best effort: drop whatever part of the new generation landed.
                self._discard_generation(document_id, generation)
                raise IndexStoreError(f"Chroma upsert failed for {document_id!r}: {exc}") from exc

            keep = [generation] if previous is None else [generation, previous]
            # The superseded generation stays until the next reindex so
            # readers holding an older registry snapshot still find it.
            try:
                self._collection.delete(
                    where={
                        "$and": [
                            {"document_id": {"$eq": document_id}},
                            {"generation": {"$nin": keep}},
                        ]
                    }
                )
            except Exception:
                logger.warning("Could not prune old generations of %s", document_id, exc_info=True)

        logger.info(
            "Stored %d chunks for document %s (generation %s)", len(new_chunks), document_id, generation
        )

    def delete_document(self, document_id: str) -> int:
        with self._write_lock:
            removed = self.count_chunks(document_id)
            try:
                self._registry.delete(ids=[document_id])
                self._collection.delete(where={"document_id": {"$eq": document_id}})
            except Exception as exc:
                raise IndexStoreError(f"Chroma delete failed for {document_id!r}: {exc}") from exc
        logger.info("Deleted %d chunks for document %s", removed, document_id)
        return removed

    def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]:
        top_k = self.clamp_top_k(top_k)
        try:
            # Snapshot first: the query then only sees generations that were
            # complete and active when the search began.
            active = self._active_generations()
            total = self._collection.count()
            if not active or total == 0:
                return []
            results = self._collection.query(
                query_embeddings=[list(query_embedding)],
                n_results=min(total, top_k),
                where={"generation": {"$in": sorted(set(active.values()))}},
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as exc:
            raise IndexStoreError(f"Chroma query failed: {exc}") from exc

        docs = _first(results.get("documents"))
        metas = _first(results.get("metadatas"))
        embeddings = _first(results.get("embeddings"))

        scored: list[tuple[float, int, ChunkRecord]] = []
        for meta, content, vector in zip(metas, docs, embeddings):
            if active.get(meta["document_id"]) != meta["generation"]:
                continue
            vector = [float(x) for x in vector]
            chunk = _to_record(meta, content or "", vector)
            scored.append((cosine_similarity(query_embedding, vector), int(meta["seq"]), chunk))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [ScoredChunk(chunk=chunk, score=score) for score, _, chunk in scored[:top_k]]

    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        generation = self._active_generations({document_id}).get(document_id)
        if generation is None:
            return []
        results = self._collection.get(
            where={
                "$and": [
                    {"document_id": {"$eq": document_id}},
                    {"generation": {"$eq": generation}},
                ]
            },
            include=["documents", "metadatas", "embeddings"],
        )
        vectors = results.get("embeddings")
        records = [
            _to_record(meta, content or "", [float(x) for x in vector])
            for meta, content, vector in zip(
                results.get("metadatas") or [],
                results.get("documents") or [],
                vectors if vectors is not None else [],
            )
        ]
        return sorted(records, key=lambda c: c.ordinal)

    def count_chunks(self, document_id: str) -> int:
        records = self._registry.get(ids=[document_id], include=["metadatas"])
        metas = records.get("metadatas") or []
        return int(metas[0]["chunk_count"]) if metas else 0

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
        except Exception:
            logger.warning("Chroma health check failed", exc_info=True)
            return False
        return True

    # -- internals ------------------------------------------------------------

    def _active_generations(self, document_ids: set[str] | None = None) -> dict[str, str]:
        """Map document id to its active generation; every document when *document_ids* is None."""
        if document_ids is None:
            records = self._registry.get(include=["metadatas"])
        elif not document_ids:
            return {}
        else:
            records = self._registry.get(ids=sorted(document_ids), include=["metadatas"])
        return {
            doc_id: meta["generation"]
            for doc_id, meta in zip(records.get("ids") or [], records.get("metadatas") or [])
        }

    def _discard_generation(self, document_id: str, generation: str) -> None:
        try:
            self._collection.delete(
                where={
                    "$and": [
                        {"document_id": {"$eq": document_id}},
                        {"generation": {"$eq": generation}},
                    ]
                }
            )
        except Exception:
            logger.warning("Could not clean up generation %s of %s", generation, document_id, exc_info=True)


def _first(batch: Any) -> list[Any]:
    """Unwrap Chroma's one-query-per-row result nesting."""
    if batch is None or len(batch) == 0:
        return []
    return list(batch[0])


def _chunk_metadata(chunk: ChunkRecord, generation: str, sequence: int) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool
    return {
        "chunk_id": chunk.chunk_id,
        "document_id": chunk.document_id,
        "ordinal": chunk.ordinal,
        "char_start": chunk.char_start,
        "char_end": chunk.char_end,
        "document_name": chunk.document_name,
        "content_type": chunk.content_type,
        "generation": generation,
        "seq": sequence,
    }


def _to_record(meta: dict[str, Any], content: str, vector: list[float]) -> ChunkRecord:
    return ChunkRecord(
        chunk_id=meta["chunk_id"],
        document_id=meta["document_id"],
        ordinal=int(meta["ordinal"]),
        text=content,
        embedding=vector,
        char_start=int(meta["char_start"]),
        char_end=int(meta["char_end"]),
        document_name=meta.get("document_name", "unknown"),
        content_type=meta.get("content_type", "text/plain"),
    )
