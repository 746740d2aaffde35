"""Request / response schemas for the HTTP API.

Every request model forbids unknown fields, so a malformed payload is
rejected with 422 before it reaches the copilot.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kb_copilot.config import settings
from kb_copilot.copilot.state import ChatMessage, ConversationSession


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ── Search ────────────────────────────────────────────────────────────


class SearchRequest(_Request):
    """Semantic search over the knowledge base."""

    query: str = Field(min_length=1)
    top_k: int = Field(default=settings.default_top_k, ge=1, le=settings.max_top_k)


class SearchHit(BaseModel):
    text: str
    score: float
    source_document: str


# ── Chat ──────────────────────────────────────────────────────────────


class ChatMessageIn(_Request):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(_Request):
    """One copilot turn: the full history plus the caller's identity.

    Validation rules
    ----------------
    * at least one message, and the last one comes from the user;
    * investors must send a tier between 0 and 2;
    * admins must not send a tier.
    """

    messages: list[ChatMessageIn] = Field(min_length=1)
    session_id: str = Field(min_length=1)
    actor_type: Literal["admin", "investor"]
    tier: int | None = Field(default=None, ge=0, le=2)
    investor_id: str | None = None

    @model_validator(mode="after")
    def _check_turn(self) -> ChatRequest:
        if self.messages[-1].role != "user":
            raise ValueError("the last message must come from the user")
        if self.actor_type == "investor" and self.tier is None:
            raise ValueError("investor requests require a tier")
        if self.actor_type == "admin" and self.tier is not None:
            raise ValueError("admin requests must not carry a tier")
        return self

    def to_session(self) -> ConversationSession:
        return ConversationSession(
            session_id=self.session_id,
            actor_type=self.actor_type,
            messages=[ChatMessage(role=m.role, content=m.content) for m in self.messages],
            tier=self.tier,
            investor_id=self.investor_id,
        )


# ── Documents ─────────────────────────────────────────────────────────


class IngestTextRequest(_Request):
    """Already-extracted text for a document."""

    name: str = Field(min_length=1)
    content_type: str = "text/plain"
    raw_text: str


class IngestAccepted(BaseModel):
    document_id: str
    status: str


class DeleteResponse(BaseModel):
    document_id: str
    chunks_deleted: int
