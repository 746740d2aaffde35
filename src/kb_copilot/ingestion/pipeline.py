"""Ingestion pipeline — raw document → chunks → embeddings → index store.

Orchestrates the full flow for one document:

1. (optional) extract text from the uploaded bytes
2. normalise and chunk the text
3. embed every chunk in one logical batch call
4. atomically replace the document's chunks in the index store
5. record the outcome on the :class:`~kb_copilot.ingestion.documents.Document`

Failures never leave a half-written index: the previous chunk set (and its
``chunk_count``) survives until a new one has been stored completely.

Usage::

    pipeline = IngestionPipeline(store, embedder, registry)
    pipeline.ingest("doc-42", raw_text, name="Q3 update.md", content_type="text/markdown")
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from kb_copilot.config import settings
from kb_copilot.errors import EmptyContent, KbCopilotError
from kb_copilot.ingestion.chunker import chunk_text
from kb_copilot.ingestion.documents import Document, DocumentRegistry, DocumentStatus
from kb_copilot.ingestion.embedder import Embedder
from kb_copilot.ingestion.extractor import extract_text, normalize_text
from kb_copilot.retrieval.base import IndexStore
from kb_copilot.retrieval.models import ChunkRecord

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Index documents into an :class:`IndexStore`.

    Parameters
    ----------
    store:
        Destination index store.
    embedder:
        Embeds chunk texts; must match the embedder used for queries.
    documents:
        Registry whose records receive status updates.
    chunk_size / chunk_overlap:
        Chunking constants.  They are fixed per deployment so that chunks
        from different ingestions stay comparable.
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder,
        documents: DocumentRegistry,
        *,
        chunk_size: int = settings.chunk_target_size,
        chunk_overlap: int = settings.chunk_overlap,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})")
        self.store = store
        self.embedder = embedder
        self.documents = documents
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._guard = threading.Lock()
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)

    # -- public API -----------------------------------------------------------

    def ingest(self, document_id: str, raw_text: str, name: str, content_type: str = "text/plain") -> int:
        """Chunk, embed and store *raw_text* as the content of *document_id*.

        Returns
        -------
        int
            Number of chunks stored; ``0`` when the text holds nothing to
            index (the document is then marked ``failed``).

        Raises
        ------
        EmbeddingUnavailable, IndexStoreError
            After the document has been marked ``failed``.  Previously
            indexed chunks are left in place.
        """
        with self._document_lock(document_id):
            self._ensure_document(document_id, name, content_type)
            self.documents.update_status(document_id, DocumentStatus.INDEXING)
            try:
                count = self._index(document_id, raw_text, name, content_type)
            except Exception as exc:
                self._mark_failed(document_id, exc)
                raise
            if count == 0:
                self._mark_failed(document_id, EmptyContent(document_id))
                return 0
            self.documents.update_status(document_id, DocumentStatus.INDEXED, chunk_count=count)

        logger.info("Indexed document %s (%s): %d chunks", document_id, name, count)
        return count

    def ingest_bytes(self, document_id: str, data: bytes, name: str, content_type: str) -> int:
        """Extract text from an uploaded payload, then :meth:`ingest` it.

        Raises
        ------
        UnsupportedFormat
            When nothing could be extracted; the document is marked ``failed``.
        """
        try:
            raw_text = extract_text(data, content_type, filename=name)
        except KbCopilotError as exc:
            with self._document_lock(document_id):
                self._ensure_document(document_id, name, content_type)
                self._mark_failed(document_id, exc)
            raise
        return self.ingest(document_id, raw_text, name, content_type)

    def delete(self, document_id: str) -> int:
        """Remove a document's chunks and its record; returns chunks removed."""
        with self._document_lock(document_id):
            removed = self.store.delete_document(document_id)
            self.documents.delete(document_id)
        self._release_lock(document_id)
        logger.info("Deleted document %s (%d chunks)", document_id, removed)
        return removed

    def dispatch_ingestion(self, document_id: str, raw_text: str, name: str, content_type: str) -> None:
        """Fire-and-forget :meth:`ingest` for the upload path.

        Errors are logged and swallowed; the outcome is visible through
        the document's status.
        """
        try:
            self.ingest(document_id, raw_text, name, content_type)
        except KbCopilotError as exc:
            logger.error("Background ingestion of %s failed: %s", document_id, exc)
        except Exception:
            logger.exception("Background ingestion of %s failed unexpectedly", document_id)

    def dispatch_ingestion_bytes(self, document_id: str, data: bytes, name: str, content_type: str) -> None:
        """Fire-and-forget :meth:`ingest_bytes` for the upload path."""
        try:
            self.ingest_bytes(document_id, data, name, content_type)
        except KbCopilotError as exc:
            logger.error("Background ingestion of %s failed: %s", document_id, exc)
        except Exception:
            logger.exception("Background ingestion of %s failed unexpectedly", document_id)

    # -- internals ------------------------------------------------------------

    def _index(self, document_id: str, raw_text: str, name: str, content_type: str) -> int:
        text = normalize_text(raw_text)
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        if not chunks:
            logger.warning("Document %s produced no chunks", document_id)
            return 0

        vectors = self.embedder.embed_batch([c.content for c in chunks])
        records = [
            ChunkRecord(
                chunk_id=ChunkRecord.make_id(document_id, chunk.ordinal),
                document_id=document_id,
                ordinal=chunk.ordinal,
                text=chunk.content,
                embedding=vector,
                char_start=chunk.char_start,
                char_end=chunk.char_end,
                document_name=name,
                content_type=content_type,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        self.store.upsert_chunks(document_id, records)
        return len(records)

    def _ensure_document(self, document_id: str, name: str, content_type: str) -> Document:
        existing = self.documents.get(document_id)
        if existing is not None and existing.name == name and existing.content_type == content_type:
            return existing
        return self.documents.register(
            document_id,
            name,
            content_type,
            storage_locator=existing.storage_locator if existing else None,
        )

    def _mark_failed(self, document_id: str, exc: Exception) -> None:
        logger.warning("Ingestion of %s failed: %s", document_id, exc)
        self.documents.update_status(document_id, DocumentStatus.FAILED, error=str(exc))

    def _document_lock(self, document_id: str) -> threading.Lock:
        with self._guard:
            return self._locks[document_id]

    def _release_lock(self, document_id: str) -> None:
        with self._guard:
            lock = self._locks.get(document_id)
            if lock is not None and not lock.locked():
                del self._locks[document_id]
