"""Unit tests for the copilot: facts, prompts, nodes, graph and orchestrator.

All tests run without a network by injecting the keyword embeddings from
``conftest`` and fake chat models.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from kb_copilot.copilot.facts import DisclosedFact, FactSheet
from kb_copilot.copilot.graph import build_assembly_graph, create_initial_state
from kb_copilot.copilot.nodes import detect_command
from kb_copilot.copilot.orchestrator import SessionOrchestrator
from kb_copilot.copilot.prompts import (
    FULL_ACCESS_INSTRUCTIONS,
    NO_CONTEXT,
    build_chat_messages,
    build_system_prompt,
    match_slash_command,
)
from kb_copilot.copilot.state import ChatMessage, ConversationSession, SessionState, StreamEvent
from kb_copilot.ingestion.pipeline import IngestionPipeline
from kb_copilot.retrieval.retriever import SemanticRetriever

# ── Fixtures & helpers ─────────────────────────────────────────────────

FACTS = FactSheet(
    [
        DisclosedFact(text="We are raising a seed round.", min_tier=0),
        DisclosedFact(text="Valuation cap is $3M.", min_tier=1),
        DisclosedFact(text="Monthly burn is $38k.", min_tier=2),
    ]
)


class ScriptedChatModel:
    """Streams fixed tokens, optionally raising after *fail_after* of them."""

    def __init__(self, tokens: list[str], fail_after: int | None = None) -> None:
        self.tokens = tokens
        self.fail_after = fail_after
        self.calls: list[tuple[list[Any], dict[str, Any]]] = []
        self.closed = False

    async def astream(self, messages: list[Any], **kwargs: Any) -> AsyncIterator[AIMessageChunk]:
        self.calls.append((messages, kwargs))
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i == self.fail_after:
                    raise RuntimeError("upstream model overloaded")
                yield AIMessageChunk(content=token)
        finally:
            self.closed = True


def _session(actor_type: str = "investor", tier: int | None = 0, question: str = "What is the revenue?") -> ConversationSession:
    return ConversationSession(
        session_id="s-1",
        actor_type=actor_type,  # type: ignore[arg-type]
        tier=tier,
        messages=[ChatMessage(role="user", content=question)],
    )


@pytest.fixture()
def indexed_retriever(pipeline: IngestionPipeline, retriever: SemanticRetriever) -> SemanticRetriever:
    pipeline.ingest("fin", "Revenue reached 40k MRR.\n\nRevenue is growing monthly.", "financials.md")
    pipeline.ingest("team", "The team has five engineers.", "team.md")
    return retriever


async def _collect(orchestrator: SessionOrchestrator, session: ConversationSession) -> list[StreamEvent]:
    return [event async for event in orchestrator.stream(session)]


# ── Facts ──────────────────────────────────────────────────────────────


class TestFactSheet:
    def test_admin_sees_everything(self) -> None:
        assert len(FACTS.visible_to("admin")) == 3

    @pytest.mark.parametrize(("tier", "expected"), [(0, 1), (1, 2), (2, 3), (None, 1)])
    def test_investor_tiers(self, tier: int | None, expected: int) -> None:
        assert len(FACTS.visible_to("investor", tier)) == expected

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "facts.json"
        path.write_text(json.dumps({"facts": [{"text": "Founded in 2023.", "min_tier": 0}]}))
        sheet = FactSheet.from_file(path)
        assert [f.text for f in sheet.visible_to("investor", 0)] == ["Founded in 2023."]

    def test_empty_path_gives_empty_sheet(self) -> None:
        assert len(FactSheet.from_file("")) == 0


# ── Prompts ────────────────────────────────────────────────────────────


class TestPrompts:
    @pytest.mark.parametrize(
        ("query", "command"),
        [
            ("/faq", "/faq"),
            ("  /One-Pager Acme Ventures", "/one-pager"),
            ("/draft-update please", "/draft-update"),
            ("/faqs", None),
            ("what is /faq?", None),
        ],
    )
    def test_match_slash_command(self, query: str, command: str | None) -> None:
        match = match_slash_command(query)
        assert (match[0] if match else None) == command

    def test_investor_tier_instructions(self) -> None:
        assert FULL_ACCESS_INSTRUCTIONS in build_system_prompt("investor", 2, "Acme")
        limited = build_system_prompt("investor", 1, "Acme")
        assert FULL_ACCESS_INSTRUCTIONS not in limited
        assert "Use ranges for financial figures" in limited
        assert "TIER: 0" in build_system_prompt("investor", None, "Acme")

    def test_admin_prompt_lists_commands(self) -> None:
        prompt = build_system_prompt("admin", None, "Acme")
        assert "Acme" in prompt
        assert "/risk-summary" in prompt

    def test_messages_without_context(self) -> None:
        history = [
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="Hello!"),
            ChatMessage(role="user", content="Runway?"),
        ]
        messages = build_chat_messages(system_prompt="SYS", facts=[], retrieval=None, history=history)

        assert isinstance(messages[0], SystemMessage)
        assert NO_CONTEXT in messages[0].content
        assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]


# ── Nodes & graph ──────────────────────────────────────────────────────


class TestAssemblyGraph:
    def test_detect_command_ignored_for_investors(self) -> None:
        update = detect_command(
            {"actor_type": "investor", "query": "/faq"},
            default_top_k=8,
            command_top_k=12,
            max_tokens=1024,
            command_max_tokens=2048,
        )
        assert update["command"] is None
        assert update["top_k"] == 8

    def test_admin_command_deepens_retrieval(self, indexed_retriever: SemanticRetriever) -> None:
        graph = build_assembly_graph(indexed_retriever, FACTS, organization="Acme")
        state = graph.invoke(create_initial_state(_session("admin", None, "/metrics-summary revenue")))

        assert state["command"] == "/metrics-summary"
        assert state["top_k"] == 12
        assert state["max_tokens"] == 2048
        assert "SPECIAL INSTRUCTION" in state["messages"][0].content

    def test_context_has_source_citations(self, indexed_retriever: SemanticRetriever) -> None:
        graph = build_assembly_graph(indexed_retriever, FACTS)
        state = graph.invoke(create_initial_state(_session()))

        system = state["messages"][0].content
        assert "[Source: financials.md]" in system
        assert "team.md" not in system
        assert state["retrieval"].sources() == ["financials.md"]

    def test_tier_zero_prompt_never_contains_higher_facts(self, indexed_retriever: SemanticRetriever) -> None:
        graph = build_assembly_graph(indexed_retriever, FACTS)
        state = graph.invoke(create_initial_state(_session(tier=0)))

        system = state["messages"][0].content
        assert "We are raising a seed round." in system
        assert "Valuation cap" not in system
        assert "Monthly burn" not in system

    def test_admin_and_tier_two_share_retrieval(self, indexed_retriever: SemanticRetriever) -> None:
        graph = build_assembly_graph(indexed_retriever, FACTS)
        admin = graph.invoke(create_initial_state(_session("admin", None)))
        investor = graph.invoke(create_initial_state(_session("investor", 2)))

        assert admin["retrieval"].chunk_ids() == investor["retrieval"].chunk_ids()
        assert admin["retrieval"].chunk_ids()
        assert admin["messages"][0].content != investor["messages"][0].content


# ── Orchestrator ───────────────────────────────────────────────────────


class TestSessionOrchestrator:
    @pytest.mark.asyncio
    async def test_streams_sources_tokens_done(self, indexed_retriever: SemanticRetriever) -> None:
        llm = GenericFakeChatModel(messages=iter([AIMessage(content="Revenue is 40k MRR.")]))
        orchestrator = SessionOrchestrator(indexed_retriever, llm, FACTS)
        session = _session()

        events = await _collect(orchestrator, session)

        assert events[0] == StreamEvent("sources", {"sources": ["financials.md"]})
        tokens = [e.data["content"] for e in events if e.type == "token"]
        assert "".join(tokens) == "Revenue is 40k MRR."
        assert events[-1].type == "done"
        assert events[-1].data["answer"] == "Revenue is 40k MRR."
        assert session.state is SessionState.COMPLETE
        assert session.messages[-1] == ChatMessage(role="assistant", content="Revenue is 40k MRR.")

    @pytest.mark.asyncio
    async def test_generation_failure_after_two_tokens(self, indexed_retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["Revenue ", "is ", "40k."], fail_after=2)
        orchestrator = SessionOrchestrator(indexed_retriever, llm, FACTS)  # type: ignore[arg-type]
        session = _session()

        events = await _collect(orchestrator, session)

        assert [e.type for e in events] == ["sources", "token", "token", "error"]
        assert events[-1].data["tokens_sent"] == 2
        assert "overloaded" in events[-1].data["message"]
        assert session.state is SessionState.FAILED
        assert len(session.messages) == 1
        assert llm.closed

    @pytest.mark.asyncio
    async def test_command_uses_larger_budget(self, indexed_retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["ok"])
        orchestrator = SessionOrchestrator(indexed_retriever, llm, command_max_tokens=4000)  # type: ignore[arg-type]

        await _collect(orchestrator, _session("admin", None, "/faq"))

        _, kwargs = llm.calls[0]
        assert kwargs["max_tokens"] == 4000

    @pytest.mark.asyncio
    async def test_assembly_failure_yields_single_error(self) -> None:
        class BrokenRetriever:
            def retrieve(self, query: str, top_k: int | None = None) -> Any:
                raise RuntimeError("index offline")

        llm = ScriptedChatModel(["never"])
        orchestrator = SessionOrchestrator(BrokenRetriever(), llm)  # type: ignore[arg-type]
        session = _session()

        events = await _collect(orchestrator, session)

        assert [e.type for e in events] == ["error"]
        assert "index offline" in events[0].data["message"]
        assert session.state is SessionState.FAILED
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_consumer_close_cancels_upstream(self, indexed_retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["a", "b", "c", "d"])
        orchestrator = SessionOrchestrator(indexed_retriever, llm)  # type: ignore[arg-type]
        session = _session()

        stream = orchestrator.stream(session)
        received = []
        async for event in stream:
            received.append(event)
            if event.type == "token":
                break
        await stream.aclose()

        assert [e.type for e in received] == ["sources", "token"]
        assert session.state is SessionState.FAILED
        assert session.failure_reason == "cancelled"
        assert llm.closed

    @pytest.mark.asyncio
    async def test_empty_index_still_answers(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["I don't know."])
        orchestrator = SessionOrchestrator(retriever, llm)  # type: ignore[arg-type]

        events = await _collect(orchestrator, _session())

        assert events[0].data == {"sources": []}
        messages, _ = llm.calls[0]
        assert NO_CONTEXT in messages[0].content


class TestConversationSession:
    def test_illegal_transition(self) -> None:
        session = _session()
        with pytest.raises(ValueError):
            session.transition(SessionState.STREAMING)

    def test_sse_format(self) -> None:
        event = StreamEvent("token", {"content": "hé"})
        assert event.to_sse() == 'event: token\ndata: {"content": "hé"}\n\n'
