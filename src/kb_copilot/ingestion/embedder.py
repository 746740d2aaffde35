"""Embedding — text to dense vectors through an injected capability handle."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from kb_copilot.config import Settings, settings
from kb_copilot.errors import EmbeddingUnavailable

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def build_embedding_model(config: Settings = settings) -> Embeddings:
    """Construct the configured embedding capability.

    Called once at process start; the returned handle is reused by every
    :class:`Embedder`.
    """
    if config.embedding_provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        kwargs: dict = {"model": config.embedding_model, "api_key": config.openai_api_key or "EMPTY"}
        if config.embedding_base_url:
            logger.info("Using OpenAI-compatible embedding endpoint: %s", config.embedding_base_url)
            kwargs["base_url"] = config.embedding_base_url
        return OpenAIEmbeddings(**kwargs)

    from langchain_huggingface import HuggingFaceEmbeddings

    return HuggingFaceEmbeddings(model_name=config.embedding_model)


class Embedder:
    """Vectorise queries and chunk batches.

    Parameters
    ----------
    model:
        Any LangChain :class:`~langchain_core.embeddings.Embeddings`
        implementation (remote API, local sentence-transformer, test fake).
    batch_size:
        Maximum texts sent per request to the underlying model.
    dimension:
        Expected vector length.  When ``None`` it is pinned from the first
        response and enforced afterwards.
    """

    def __init__(
        self,
        model: Embeddings,
        *,
        batch_size: int = settings.embedding_batch_size,
        dimension: int | None = settings.embedding_dimension,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._model = model
        self.batch_size = batch_size
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        """Embed a single query string."""
        try:
            vector = self._model.embed_query(text)
        except Exception as exc:
            logger.warning("Query embedding failed: %s", exc)
            raise EmbeddingUnavailable(f"Embedding capability failed: {exc}") from exc
        return self._check_dimension([list(vector)])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed document chunks, returning vectors in input order."""
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            try:
                result = self._model.embed_documents(batch)
            except Exception as exc:
                logger.warning(
                    "Batch embedding failed at offset %d/%d: %s", start, len(texts), exc
                )
                raise EmbeddingUnavailable(f"Embedding capability failed: {exc}") from exc
            if len(result) != len(batch):
                raise EmbeddingUnavailable(
                    f"Embedding capability returned {len(result)} vectors for {len(batch)} texts"
                )
            vectors.extend(list(v) for v in result)

        logger.debug("Embedded %d texts (dim=%s)", len(vectors), self.dimension)
        return self._check_dimension(vectors)

    def _check_dimension(self, vectors: list[list[float]]) -> list[list[float]]:
        for vector in vectors:
            if not vector:
                raise EmbeddingUnavailable("Embedding capability returned an empty vector")
            if self.dimension is None:
                self.dimension = len(vector)
                logger.info("Pinned embedding dimension to %d", self.dimension)
            if len(vector) != self.dimension:
                raise EmbeddingUnavailable(
                    f"Expected {self.dimension}-dimensional embeddings, got {len(vector)}"
                )
        return vectors
