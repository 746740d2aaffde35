"""Domain models for indexed chunks, retrieval results and citations."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Rough characters-per-page used for page estimates on citations.
CHARS_PER_PAGE = 3000


class ChunkRecord(BaseModel):
    """One stored chunk: text span, vector and provenance.

    Chunks are immutable once created; reindexing a document replaces its
    chunk set wholesale.

    Attributes
    ----------
    chunk_id:
        ``"<document_id>:<ordinal>"``; unique across the index.
    document_id:
        Owning document.
    ordinal:
        Zero-based position within the document (stable).
    text:
        The raw text span.
    embedding:
        Dense vector produced by the embedder.
    char_start / char_end:
        Offsets into the normalised source text.
    document_name:
        Display name of the owning document, used for citations.
    content_type:
        Declared content type of the source file.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    ordinal: int = Field(ge=0)
    text: str
    embedding: list[float]
    char_start: int = Field(ge=0)
    char_end: int = Field(ge=0)
    document_name: str = "unknown"
    content_type: str = "text/plain"

    @staticmethod
    def make_id(document_id: str, ordinal: int) -> str:
        return f"{document_id}:{ordinal}"

    @property
    def page_estimate(self) -> int:
        """1-based page the chunk ends on, assuming ~3000 characters per page."""
        return max(1, -(-self.char_end // CHARS_PER_PAGE))


class ScoredChunk(BaseModel):
    """A chunk paired with its cosine similarity to a query vector."""

    chunk: ChunkRecord
    score: float


class Citation(BaseModel):
    """Provenance record linking a retrieved chunk back to its source document.

    Attributes
    ----------
    chunk_id:
        Identifier of the chunk in the index.
    document_id:
        Owning document identifier.
    source:
        Human-readable document name.
    ordinal:
        Position of the chunk within the document.
    char_start / char_end:
        Offsets of the span in the document text.
    page:
        Estimated page number.
    score:
        Cosine similarity to the query.
    retrieved_at:
        UTC timestamp of when the retrieval happened.
    """

    chunk_id: str
    document_id: str
    source: str = "unknown"
    ordinal: int | None = None
    char_start: int | None = None
    char_end: int | None = None
    page: int | None = None
    score: float
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def short_ref(self) -> str:
        """Return a compact ``[source§ordinal]`` reference string."""
        ordinal = self.ordinal if self.ordinal is not None else "?"
        return f"[{self.source}§{ordinal}]"


class RetrievalHit(BaseModel):
    """A single retrieved passage together with its citation."""

    content: str
    citation: Citation

    @property
    def score(self) -> float:
        return self.citation.score

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.content[:120]}…"


class RetrievalResult(BaseModel):
    """Ranked, deduplicated hits for one query.

    Construction fails if scores increase anywhere along the ranking or a
    chunk appears twice.  An empty result is the normal "no grounding
    found" outcome, not an error.
    """

    query: str
    hits: list[RetrievalHit] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ranking(self) -> RetrievalResult:
        seen: set[str] = set()
        previous = float("inf")
        for hit in self.hits:
            if hit.citation.chunk_id in seen:
                raise ValueError(f"Duplicate chunk {hit.citation.chunk_id!r} in retrieval result")
            if hit.score > previous:
                raise ValueError("Retrieval hits must be sorted by non-increasing score")
            seen.add(hit.citation.chunk_id)
            previous = hit.score
        return self

    def __len__(self) -> int:
        return len(self.hits)

    @property
    def is_empty(self) -> bool:
        return not self.hits

    def sources(self) -> list[str]:
        """Distinct document names in rank order."""
        return list(dict.fromkeys(hit.citation.source for hit in self.hits))

    def chunk_ids(self) -> list[str]:
        return [hit.citation.chunk_id for hit in self.hits]
