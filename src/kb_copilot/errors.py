"""Exception hierarchy shared by ingestion, retrieval and the copilot.

Every failure is scoped to one document or one session; none of these is
fatal to the process.  An empty retrieval is *not* an error and has no
exception type; callers receive an empty
:class:`~kb_copilot.retrieval.models.RetrievalResult` instead.
"""

from __future__ import annotations


class KbCopilotError(Exception):
    """Base class for all domain errors raised by this package."""


class UnsupportedFormat(KbCopilotError):
    """No extraction strategy produced any text for the payload."""

    def __init__(self, content_type: str, detail: str = "") -> None:
        self.content_type = content_type
        message = f"No text could be extracted from content type {content_type!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class EmptyContent(KbCopilotError):
    """The chunker produced zero chunks — there is nothing to index."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document {document_id!r} has no indexable text")


class EmbeddingUnavailable(KbCopilotError):
    """The embedding capability is unreachable, rate-limited or misbehaving.

    Retryable: re-invoking ingestion (or the search) later may succeed.
    """


class IndexStoreError(KbCopilotError):
    """The index store rejected a read or write."""


class GenerationFailure(KbCopilotError):
    """The generation capability raised before the stream finished.

    Attributes
    ----------
    tokens_sent:
        Number of token events already delivered to the caller.
    """

    def __init__(self, message: str, *, tokens_sent: int = 0) -> None:
        self.tokens_sent = tokens_sent
        super().__init__(message)
