"""Graph nodes — each function is one step of context assembly.

Node contract
-------------
* Accepts the full :class:`AssemblyState` dict.
* Returns a *partial* dict with **only the keys that changed**.
* Collaborators (retriever, fact sheet) arrive as keyword arguments bound
  by :func:`~kb_copilot.copilot.graph.build_assembly_graph`; there is no
  hidden global state, so every node is independently testable.
"""

from __future__ import annotations

import logging
from typing import Any

from kb_copilot.copilot.facts import FactSheet
from kb_copilot.copilot.prompts import (
    build_chat_messages,
    build_system_prompt,
    match_slash_command,
)
from kb_copilot.copilot.state import AssemblyState
from kb_copilot.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)


# ── 1. DETECT COMMAND ─────────────────────────────────────────────────


def detect_command(
    state: AssemblyState,
    *,
    default_top_k: int,
    command_top_k: int,
    max_tokens: int,
    command_max_tokens: int,
) -> dict[str, Any]:
    """Recognise admin slash commands and size retrieval/generation accordingly.

    Investors never trigger commands; their queries are answered as-is.
    """
    match = match_slash_command(state["query"]) if state["actor_type"] == "admin" else None
    if match is None:
        return {
            "command": None,
            "instruction": None,
            "top_k": default_top_k,
            "max_tokens": max_tokens,
        }

    command, instruction = match
    logger.info("Slash command %s detected", command)
    return {
        "command": command,
        "instruction": instruction,
        "top_k": command_top_k,
        "max_tokens": command_max_tokens,
    }


# ── 2. RETRIEVE CONTEXT ───────────────────────────────────────────────


def retrieve_context(state: AssemblyState, *, retriever: SemanticRetriever) -> dict[str, Any]:
    """Fetch passages for the latest user message.

    The same query and depth yield the same chunks for every caller; tier
    gating is applied to facts only, never to retrieval.
    """
    result = retriever.retrieve(state["query"], top_k=state["top_k"])
    if result.is_empty:
        logger.info("No grounding found for query %.80r", state["query"])
    return {"retrieval": result}


# ── 3. ASSEMBLE PROMPT ────────────────────────────────────────────────


def assemble_prompt(state: AssemblyState, *, fact_sheet: FactSheet, organization: str) -> dict[str, Any]:
    """Merge role prompt, visible facts, context and history into messages."""
    facts = fact_sheet.visible_to(state["actor_type"], state.get("tier"))
    system_prompt = build_system_prompt(state["actor_type"], state.get("tier"), organization)
    messages = build_chat_messages(
        system_prompt=system_prompt,
        facts=facts,
        retrieval=state.get("retrieval"),
        history=state["history"],
        instruction=state.get("instruction"),
    )
    return {"facts": facts, "messages": messages}
