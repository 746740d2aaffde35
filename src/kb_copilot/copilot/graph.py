"""LangGraph graph definition — the context-assembly workflow.

This module wires the nodes defined in :mod:`kb_copilot.copilot.nodes`
into a compiled :class:`StateGraph` that prepares everything the chat
model needs before the first token is generated:

1. **Detect** an admin slash command and pick retrieval depth.
2. **Retrieve** passages for the latest user message.
3. **Assemble** the role prompt, tier-gated facts, context and history.

Generation itself is not a node: it streams, and the orchestrator drives
it directly so tokens reach the caller as they arrive.
"""

from __future__ import annotations

from functools import partial
from typing import Any

from langgraph.graph import END, StateGraph

from kb_copilot.config import settings
from kb_copilot.copilot.facts import FactSheet
from kb_copilot.copilot.nodes import assemble_prompt, detect_command, retrieve_context
from kb_copilot.copilot.state import AssemblyState, ConversationSession
from kb_copilot.retrieval.retriever import SemanticRetriever


def build_assembly_graph(
    retriever: SemanticRetriever,
    fact_sheet: FactSheet | None = None,
    *,
    organization: str = settings.organization_name,
    default_top_k: int = settings.default_top_k,
    command_top_k: int = settings.command_top_k,
    max_tokens: int = settings.llm_max_tokens,
    command_max_tokens: int = settings.llm_command_max_tokens,
) -> Any:
    """Construct and return the compiled assembly graph.

    Graph topology::

        ┌─────────────────┐
        │ detect_command   │   ← slash command / retrieval depth
        └────────┬────────┘
                 ▼
        ┌─────────────────┐
        │ retrieve_context │   ← semantic search with citations
        └────────┬────────┘
                 ▼
        ┌─────────────────┐
        │ assemble_prompt  │   ← role prompt + facts + context + history
        └────────┬────────┘
                 ▼
              [ END ]

    Returns
    -------
    CompiledGraph
        A compiled LangGraph workflow ready for ``.invoke()``.
    """
    workflow = StateGraph(AssemblyState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node(
        "detect_command",
        partial(
            detect_command,
            default_top_k=default_top_k,
            command_top_k=command_top_k,
            max_tokens=max_tokens,
            command_max_tokens=command_max_tokens,
        ),
    )
    workflow.add_node("retrieve_context", partial(retrieve_context, retriever=retriever))
    workflow.add_node(
        "assemble_prompt",
        partial(assemble_prompt, fact_sheet=fact_sheet or FactSheet(), organization=organization),
    )

    # -- Edges ---------------------------------------------------------------
    workflow.set_entry_point("detect_command")
    workflow.add_edge("detect_command", "retrieve_context")
    workflow.add_edge("retrieve_context", "assemble_prompt")
    workflow.add_edge("assemble_prompt", END)

    return workflow.compile()


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def create_initial_state(session: ConversationSession) -> dict[str, Any]:
    """Build the initial state dict for ``graph.invoke()`` from a session.

    Usage::

        graph = build_assembly_graph(retriever, facts)
        state = graph.invoke(create_initial_state(session))
        llm.astream(state["messages"])
    """
    return {
        "actor_type": session.actor_type,
        "tier": session.effective_tier if session.actor_type == "investor" else None,
        "history": list(session.messages),
        "query": session.latest_user_message(),
    }
