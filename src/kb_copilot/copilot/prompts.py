"""Prompt templates for the copilot.

Everything that ends up in the model's instruction set is built here: the
role-specific system prompts, the tier instructions, the admin slash
commands, and the formatting of facts and retrieved passages.  Keeping
prompts in one place makes them easy to audit, version, and A/B test.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from kb_copilot.copilot.facts import DisclosedFact
    from kb_copilot.copilot.state import ActorType, ChatMessage
    from kb_copilot.retrieval.models import RetrievalResult

# ── 1. Role prompts ───────────────────────────────────────────────────

ADMIN_SYSTEM = """\
You are {organization}'s internal AI assistant with full access to the
company's knowledge base. Help the team prepare investor communications,
analyse documents, and surface strategic insights.

Always cite which document your information comes from.
Be direct, analytical, and professional.

Special commands available:
{commands}"""

INVESTOR_SYSTEM = """\
You are {organization}'s investor relations AI, powered by the company's
knowledge base. Answer investor questions honestly and accurately.

RULES:
- Only answer based on the provided context from our documents
- If information isn't in the knowledge base, say so clearly
- Never speculate about future performance beyond what's documented
- Cite sources for every substantive claim

TIER: {tier}
{tier_instructions}"""

FULL_ACCESS_INSTRUCTIONS = "Full access — share all available information accurately."

LIMITED_ACCESS_INSTRUCTIONS = """\
Use ranges for financial figures. Don't quote exact numbers.
For detailed financial data, suggest the investor request full access."""

NO_CONTEXT = "No relevant documents found in the knowledge base."

# ── 2. Admin slash commands ───────────────────────────────────────────

SLASH_COMMANDS: dict[str, tuple[str, str]] = {
    "/draft-update": (
        "Draft a monthly investor update email",
        """\
The user wants you to draft a monthly investor update email. Structure it with:
- Opening (1 sentence on overall progress)
- Key Metrics (bullet list: revenue, customers, product usage, runway)
- Highlights (2-3 wins this month)
- Challenges (1-2 honest challenges)
- Next Month (what to watch for)
- Closing (thank you + call to action for questions)
Use data from the knowledge base. Keep it under 400 words.""",
    ),
    "/one-pager": (
        "Create a one-pager investor summary",
        """\
The user wants you to generate a one-pager investor summary. Structure it with:
- Company name & tagline
- Problem (2 sentences)
- Solution (2 sentences)
- Traction
- Market
- Team
- Ask
Use data from the knowledge base. Be concise: this should fit on one page.""",
    ),
    "/risk-summary": (
        "Extract all risks from documents",
        """\
The user wants you to extract and summarize ALL risks mentioned across the uploaded documents. Organize by category:
- Market Risks
- Technology Risks
- Execution Risks
- Financial Risks
- Regulatory Risks
For each risk, cite which document mentions it. Include mitigation strategies if documented.""",
    ),
    "/faq": (
        "Generate an investor FAQ from documents",
        """\
The user wants you to generate an Investor FAQ from the knowledge base. Create 10-15 Q&A pairs covering:
- What the company does
- Market size and opportunity
- Business model and pricing
- Current traction and metrics
- Team background
- Competitive landscape
- Use of funds
- Round terms
- Timeline and milestones
Answer each based on document content. Cite sources.""",
    ),
    "/metrics-summary": (
        "Format the latest metrics into a clean summary",
        """\
The user wants you to format the latest company metrics into a clean, shareable summary. Include:
- Revenue metrics (MRR, ARR)
- Product metrics
- Growth metrics (MoM growth rate)
- Financial metrics (runway, burn rate, cash)
- Fundraise status (committed vs target, % progress)
Format as a clean table or structured summary. Use the most recent data from the knowledge base.""",
    ),
}


def match_slash_command(query: str) -> tuple[str, str] | None:
    """Return ``(command, instruction)`` if *query* starts with a slash command.

    A command matches when it is the whole query or is followed by a
    space (``/one-pager Acme Ventures``).  Matching is case-insensitive.
    """
    trimmed = query.strip().lower()
    for command, (_, instruction) in SLASH_COMMANDS.items():
        if trimmed == command or trimmed.startswith(command + " "):
            return command, instruction
    return None


# ── 3. System prompt assembly ─────────────────────────────────────────


def build_system_prompt(actor_type: ActorType, tier: int | None, organization: str) -> str:
    """Role-specific system prompt; investors get tier instructions."""
    if actor_type == "admin":
        commands = "\n".join(f"{cmd} — {summary}" for cmd, (summary, _) in SLASH_COMMANDS.items())
        return ADMIN_SYSTEM.format(organization=organization, commands=commands)

    effective = tier if tier is not None else 0
    tier_instructions = FULL_ACCESS_INSTRUCTIONS if effective == 2 else LIMITED_ACCESS_INSTRUCTIONS
    return INVESTOR_SYSTEM.format(
        organization=organization,
        tier=effective,
        tier_instructions=tier_instructions,
    )


def format_facts(facts: list[DisclosedFact]) -> str:
    if not facts:
        return ""
    return "Disclosed facts:\n" + "\n".join(f"- {fact.text}" for fact in facts)


def format_context(retrieval: RetrievalResult | None) -> str:
    """Render retrieved passages as ``[Source: name]`` blocks."""
    if retrieval is None or retrieval.is_empty:
        return NO_CONTEXT
    return "\n\n---\n\n".join(
        f"[Source: {hit.citation.source}]\n{hit.content}" for hit in retrieval.hits
    )


def build_chat_messages(
    *,
    system_prompt: str,
    facts: list[DisclosedFact],
    retrieval: RetrievalResult | None,
    history: list[ChatMessage],
    instruction: str | None = None,
) -> list[BaseMessage]:
    """Assemble the full instruction set for the chat model.

    Layout of the system message: role prompt, disclosed facts, special
    instruction (slash commands only), then the retrieved context.  The
    conversation history follows as alternating human/AI messages.
    """
    sections = [system_prompt]
    fact_block = format_facts(facts)
    if fact_block:
        sections.append(fact_block)
    if instruction:
        sections.append(f"SPECIAL INSTRUCTION:\n{instruction}")
    sections.append(f"Relevant context from knowledge base:\n\n{format_context(retrieval)}")

    messages: list[BaseMessage] = [SystemMessage(content="\n\n".join(sections))]
    for message in history:
        if message.role == "assistant":
            messages.append(AIMessage(content=message.content))
        else:
            messages.append(HumanMessage(content=message.content))
    return messages
