"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import re

import pytest
from langchain_core.embeddings import Embeddings

from kb_copilot.ingestion.documents import InMemoryDocumentRegistry
from kb_copilot.ingestion.embedder import Embedder
from kb_copilot.ingestion.pipeline import IngestionPipeline
from kb_copilot.retrieval.memory_store import InMemoryIndexStore
from kb_copilot.retrieval.retriever import SemanticRetriever

VOCABULARY = ("revenue", "runway", "team", "risk", "market", "product")


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class KeywordEmbeddings(Embeddings):
    """Deterministic bag-of-keywords embeddings.

    One dimension per vocabulary word plus a catch-all dimension, so texts
    sharing keywords are similar and unrelated texts are orthogonal.
    """

    def __init__(self, vocabulary: tuple[str, ...] = VOCABULARY) -> None:
        self.vocabulary = vocabulary
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        words = re.findall(r"[a-z]+", text.lower())
        vector = [float(words.count(word)) for word in self.vocabulary]
        vector.append(0.0 if any(vector) else 1.0)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self._vector(text)


@pytest.fixture()
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def embedder(keyword_embeddings: KeywordEmbeddings) -> Embedder:
    return Embedder(keyword_embeddings, batch_size=4, dimension=None)


@pytest.fixture()
def store() -> InMemoryIndexStore:
    return InMemoryIndexStore(max_top_k=50)


@pytest.fixture()
def registry() -> InMemoryDocumentRegistry:
    return InMemoryDocumentRegistry()


@pytest.fixture()
def pipeline(
    store: InMemoryIndexStore, embedder: Embedder, registry: InMemoryDocumentRegistry
) -> IngestionPipeline:
    return IngestionPipeline(store, embedder, registry, chunk_size=200, chunk_overlap=20)


@pytest.fixture()
def retriever(store: InMemoryIndexStore, embedder: Embedder) -> SemanticRetriever:
    return SemanticRetriever(store, embedder, default_k=8, score_threshold=0.65, max_k=50)
