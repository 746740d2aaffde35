"""
Copilot — tier-aware streaming conversation over the knowledge base.

Context assembly (slash commands, retrieval, prompt building) is a
LangGraph state-machine; generation streams straight from the chat model.
Everything is injectable, so the whole flow can be tested with a fake
retriever and a fake chat model.

Public API
----------
- :class:`SessionOrchestrator` — run one exchange as a stream of events.
- :func:`build_assembly_graph` — compile the context-assembly workflow.
- :class:`ConversationSession`, :class:`ChatMessage`,
  :class:`SessionState`, :class:`StreamEvent` — session model.
- :class:`FactSheet`, :class:`DisclosedFact` — tier-gated facts.
"""

from kb_copilot.copilot.facts import DisclosedFact, FactSheet
from kb_copilot.copilot.graph import build_assembly_graph, create_initial_state
from kb_copilot.copilot.orchestrator import SessionOrchestrator
from kb_copilot.copilot.state import (
    AssemblyState,
    ChatMessage,
    ConversationSession,
    SessionState,
    StreamEvent,
)

__all__ = [
    "AssemblyState",
    "ChatMessage",
    "ConversationSession",
    "DisclosedFact",
    "FactSheet",
    "SessionOrchestrator",
    "SessionState",
    "StreamEvent",
    "build_assembly_graph",
    "create_initial_state",
]
