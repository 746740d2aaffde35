"""Document records and the registry that tracks their indexing status.

The document-management collaborator owns these records; the ingestion
pipeline only moves ``status``, ``chunk_count`` and ``last_error``.  The
registry is the failure channel for background indexing; callers poll
it rather than relying on logs.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class DocumentStatus(str, Enum):
    UNINDEXED = "unindexed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    FAILED = "failed"


class Document(BaseModel):
    """An uploaded file as seen by the knowledge base."""

    id: str
    name: str
    content_type: str = "text/plain"
    storage_locator: str | None = None
    status: DocumentStatus = DocumentStatus.UNINDEXED
    chunk_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentRegistry(ABC):
    """Storage for :class:`Document` records."""

    @abstractmethod
    def get(self, document_id: str) -> Document | None: ...

    @abstractmethod
    def save(self, document: Document) -> Document: ...

    @abstractmethod
    def delete(self, document_id: str) -> bool: ...

    @abstractmethod
    def all(self) -> list[Document]:
        """Every record, most recently created first."""

    def register(
        self,
        document_id: str,
        name: str,
        content_type: str = "text/plain",
        storage_locator: str | None = None,
    ) -> Document:
        """Create the record if missing, refreshing name/type if present."""
        existing = self.get(document_id)
        if existing is None:
            document = Document(
                id=document_id,
                name=name,
                content_type=content_type,
                storage_locator=storage_locator,
            )
        else:
            document = existing.model_copy(
                update={
                    "name": name,
                    "content_type": content_type,
                    "storage_locator": storage_locator or existing.storage_locator,
                }
            )
        return self.save(document)

    def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        chunk_count: int | None = None,
        error: str | None = None,
    ) -> Document:
        """Move a document to *status*.

        ``chunk_count`` is only changed when given; ``last_error`` is set
        to *error* (and therefore cleared by any non-failure update).
        """
        document = self.get(document_id)
        if document is None:
            raise KeyError(document_id)
        if status is DocumentStatus.INDEXED and not chunk_count:
            raise ValueError(f"Document {document_id!r} cannot be indexed with zero chunks")
        update: dict = {
            "status": status,
            "last_error": error,
            "updated_at": datetime.now(timezone.utc),
        }
        if chunk_count is not None:
            update["chunk_count"] = chunk_count
        return self.save(document.model_copy(update=update))


class InMemoryDocumentRegistry(DocumentRegistry):
    """Thread-safe dict-backed registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, Document] = {}

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)

    def save(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.id] = document
        return document

    def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    def all(self) -> list[Document]:
        with self._lock:
            documents = list(reversed(self._documents.values()))
        return sorted(documents, key=lambda d: d.created_at, reverse=True)
