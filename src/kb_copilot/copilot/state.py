"""Session and graph state for the copilot.

:class:`ConversationSession` lives for one streaming exchange and carries
the caller-supplied history plus the session's lifecycle state.
:class:`AssemblyState` is the dict that flows through the context-assembly
graph; every node reads from it and returns only the keys it changed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, TypedDict

from langchain_core.messages import BaseMessage

from kb_copilot.copilot.facts import DisclosedFact
from kb_copilot.retrieval.models import RetrievalResult

ActorType = Literal["admin", "investor"]
Role = Literal["user", "assistant"]


class SessionState(str, Enum):
    IDLE = "idle"
    ASSEMBLING = "assembling"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.ASSEMBLING}),
    SessionState.ASSEMBLING: frozenset({SessionState.STREAMING, SessionState.FAILED}),
    SessionState.STREAMING: frozenset({SessionState.COMPLETE, SessionState.FAILED}),
    SessionState.COMPLETE: frozenset(),
    SessionState.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatMessage:
    role: Role
    content: str


@dataclass
class ConversationSession:
    """One streaming exchange between a caller and the copilot.

    Attributes
    ----------
    session_id:
        Caller-chosen identifier, used only for logging.
    actor_type:
        ``"admin"`` or ``"investor"``; selects the system prompt.
    messages:
        Ordered history.  The last entry is the question being answered;
        the assistant reply is appended on completion.
    tier:
        Investor trust tier (0-2).  ``None`` for admins.
    investor_id:
        Identity of the investor, if known.
    state:
        Current lifecycle state (see :class:`SessionState`).
    failure_reason:
        Why the session ended ``failed`` (``"cancelled"`` on disconnect).
    """

    session_id: str
    actor_type: ActorType
    messages: list[ChatMessage]
    tier: int | None = None
    investor_id: str | None = None
    state: SessionState = SessionState.IDLE
    failure_reason: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)

    @property
    def effective_tier(self) -> int:
        """Tier used for gating; an investor without one is treated as tier 0."""
        return self.tier if self.tier is not None else 0

    def latest_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        raise ValueError(f"Session {self.session_id!r} has no user message")

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal session transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.last_activity_at = _utcnow()

    def fail(self, reason: str) -> None:
        self.failure_reason = reason
        self.transition(SessionState.FAILED)

    def complete(self, answer: str) -> None:
        self.messages.append(ChatMessage(role="assistant", content=answer))
        self.transition(SessionState.COMPLETE)


@dataclass(frozen=True)
class StreamEvent:
    """One server-sent event: ``sources``, ``token``, ``done`` or ``error``."""

    type: Literal["sources", "token", "done", "error"]
    data: dict[str, Any]

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


class AssemblyState(TypedDict, total=False):
    """State flowing through the context-assembly graph.

    Attributes
    ----------
    actor_type / tier:
        Copied from the session; drive prompt selection and fact gating.
    history:
        The session's messages, oldest first.
    query:
        Latest user message, used as the retrieval query.
    command:
        Admin slash command found in the query, if any.
    instruction:
        Special instruction attached to *command*.
    top_k:
        Retrieval depth (deeper for slash commands).
    max_tokens:
        Generation budget (larger for slash commands).
    retrieval:
        Hits returned by the retriever.
    facts:
        Disclosed facts visible to this caller.
    messages:
        The final instruction set handed to the chat model.
    """

    actor_type: ActorType
    tier: int | None
    history: list[ChatMessage]
    query: str
    command: str | None
    instruction: str | None
    top_k: int
    max_tokens: int
    retrieval: RetrievalResult
    facts: list[DisclosedFact]
    messages: list[BaseMessage]
