"""Session orchestrator — drive one streaming copilot exchange.

Lifecycle::

    idle ──► assembling ──► streaming ──► complete
                  │              │
                  └──► failed ◄──┘

* **assembling** runs the context-assembly graph in a worker thread
  (retrieval and embedding are synchronous).
* **streaming** forwards each text increment from the chat model as a
  ``token`` event, preceded by one ``sources`` event.
* **complete** appends the assistant reply to the session history and
  emits ``done``.
* **failed** emits exactly one ``error`` event; tokens already sent stay
  sent.  When the consumer closes the stream the upstream generation is
  closed too and the session fails with reason ``"cancelled"``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from kb_copilot.config import settings
from kb_copilot.copilot.facts import FactSheet
from kb_copilot.copilot.graph import build_assembly_graph, create_initial_state
from kb_copilot.copilot.state import ConversationSession, SessionState, StreamEvent
from kb_copilot.errors import GenerationFailure
from kb_copilot.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


class SessionOrchestrator:
    """Turn a :class:`ConversationSession` into a stream of events.

    Parameters
    ----------
    retriever:
        Shared semantic retriever.
    llm:
        Chat model exposing ``astream(messages, **kwargs)``.
    fact_sheet:
        Tier-gated facts; empty when omitted.
    organization:
        Name used in the system prompts.
    """

    def __init__(
        self,
        retriever: SemanticRetriever,
        llm: BaseChatModel,
        fact_sheet: FactSheet | None = None,
        *,
        organization: str = settings.organization_name,
        default_top_k: int = settings.default_top_k,
        command_top_k: int = settings.command_top_k,
        max_tokens: int = settings.llm_max_tokens,
        command_max_tokens: int = settings.llm_command_max_tokens,
    ) -> None:
        self._llm = llm
        self._graph = build_assembly_graph(
            retriever,
            fact_sheet,
            organization=organization,
            default_top_k=default_top_k,
            command_top_k=command_top_k,
            max_tokens=max_tokens,
            command_max_tokens=command_max_tokens,
        )

    # -- public API -----------------------------------------------------------

    def assemble(self, session: ConversationSession) -> dict[str, Any]:
        """Run context assembly synchronously and return the final graph state."""
        return self._graph.invoke(create_initial_state(session))

    async def stream(self, session: ConversationSession) -> AsyncIterator[StreamEvent]:
        """Assemble context, then stream the model's answer as events.

        Errors never escape as exceptions: they end the stream with one
        ``error`` event and leave the session ``failed``.
        """
        session.transition(SessionState.ASSEMBLING)
        logger.info(
            "Session %s: %s (tier=%s) asked %.80r",
            session.session_id,
            session.actor_type,
            session.tier,
            session.messages[-1].content if session.messages else "",
        )

        try:
            assembled = await asyncio.to_thread(self.assemble, session)
        except (GeneratorExit, asyncio.CancelledError):
            session.fail(CANCELLED)
            raise
        except Exception as exc:
            logger.exception("Session %s: context assembly failed", session.session_id)
            session.fail(str(exc))
            yield StreamEvent("error", {"message": str(exc)})
            return

        session.transition(SessionState.STREAMING)
        parts: list[str] = []
        upstream = None
        try:
            yield StreamEvent("sources", {"sources": assembled["retrieval"].sources()})

            upstream = self._llm.astream(assembled["messages"], max_tokens=assembled["max_tokens"])
            async for chunk in upstream:
                text = _chunk_text(chunk)
                if not text:
                    continue
                parts.append(text)
                yield StreamEvent("token", {"content": text})
        except (GeneratorExit, asyncio.CancelledError):
            logger.info("Session %s cancelled after %d tokens", session.session_id, len(parts))
            session.fail(CANCELLED)
            raise
        except Exception as exc:
            failure = GenerationFailure(f"Generation failed: {exc}", tokens_sent=len(parts))
            logger.warning("Session %s: %s (after %d tokens)", session.session_id, failure, failure.tokens_sent)
            session.fail(str(failure))
            yield StreamEvent("error", {"message": str(failure), "tokens_sent": failure.tokens_sent})
            return
        finally:
            if upstream is not None and hasattr(upstream, "aclose"):
                await upstream.aclose()

        answer = "".join(parts)
        session.complete(answer)
        logger.info("Session %s complete (%d chars)", session.session_id, len(answer))
        yield StreamEvent("done", {"answer": answer, "session_id": session.session_id})


def _chunk_text(chunk: Any) -> str:
    """Extract the text increment from a streamed message chunk."""
    if isinstance(chunk, str):
        return chunk
    content = getattr(chunk, "content", "")
    if isinstance(content, str):
        return content
    # Content-block lists: keep only the text blocks.
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content
    )
