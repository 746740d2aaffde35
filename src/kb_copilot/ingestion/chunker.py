"""Text chunking with exact, reconstructible overlap."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from langchain_text_splitters import TextSplitter

from kb_copilot.config import settings

# Cut preference, strongest first: paragraph, sentence, line, word.
_BOUNDARIES: tuple[tuple[str, ...], ...] = (
    ("\n\n",),
    (". ", "! ", "? ", ".\n", "!\n", "?\n"),
    ("\n",),
    (" ",),
)


@dataclass(frozen=True)
class TextChunk:
    """A contiguous span of the source text.

    Attributes
    ----------
    content:
        ``text[char_start:char_end]``; chunks are always exact slices.
    char_start / char_end:
        Offsets into the (normalised) source text, for citation.
    ordinal:
        Zero-based position of the chunk within its document.
    """

    content: str
    char_start: int
    char_end: int
    ordinal: int


class OverlapTextSplitter(TextSplitter):
    """Greedy boundary-aware splitter whose overlap is exact.

    Every chunk after the first starts precisely ``chunk_overlap``
    characters before the end of its predecessor, so stripping that
    prefix from each later chunk and concatenating reproduces the input.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of trailing characters of a chunk repeated at the start of
        the next one.  Must be smaller than *chunk_size*.
    """

    def __init__(self, chunk_size: int, chunk_overlap: int, **kwargs: Any) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})"
            )
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)

    def split_text(self, text: str) -> list[str]:
        return [text[start:end] for start, end in self.split_spans(text)]

    def split_spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` offsets of each chunk in *text*."""
        size, overlap = self._chunk_size, self._chunk_overlap
        length = len(text)
        if length == 0:
            return []

        spans: list[tuple[int, int]] = []
        start = 0
        while length - start > size:
            end = self._find_cut(text, start, start + size)
            spans.append((start, end))
            start = end - overlap
        spans.append((start, length))
        return spans

    def _find_cut(self, text: str, start: int, limit: int) -> int:
        size, overlap = self._chunk_size, self._chunk_overlap
        # The cut must leave the next chunk starting after this one does.
        earliest = start + max(overlap + 1, size // 2)
        # When a hard cut would leave a tail that fits one final chunk, no
        # boundary may cut earlier than that tail allows.
        if len(text) - (limit - overlap) <= size:
            earliest = max(earliest, len(text) - size + overlap)
        window = text[start:limit]
        for separators in _BOUNDARIES:
            best = max(
                (window.rfind(sep) + len(sep) for sep in separators if sep in window),
                default=-1,
            )
            if best >= 0 and start + best >= earliest:
                return start + best
        return limit


def chunk_text(
    text: str,
    target_size: int | None = None,
    overlap: int | None = None,
) -> list[TextChunk]:
    """Split *text* into overlapping, size-bounded chunks.

    Parameters
    ----------
    text:
        Normalised document text.
    target_size:
        Maximum characters per chunk (defaults to ``settings.chunk_target_size``).
    overlap:
        Characters shared between consecutive chunks
        (defaults to ``settings.chunk_overlap``).

    Returns
    -------
    list[TextChunk]
        Empty for empty input; a single chunk when the text fits.
    """
    splitter = OverlapTextSplitter(
        chunk_size=target_size if target_size is not None else settings.chunk_target_size,
        chunk_overlap=overlap if overlap is not None else settings.chunk_overlap,
    )
    return [
        TextChunk(content=text[start:end], char_start=start, char_end=end, ordinal=i)
        for i, (start, end) in enumerate(splitter.split_spans(text))
    ]
