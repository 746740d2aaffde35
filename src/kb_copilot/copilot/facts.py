"""Tier-gated disclosed facts.

A fact sheet is a short list of statements about the organisation (round
size, valuation cap, headline metrics, ...) that the copilot may quote.
Each fact carries the minimum investor tier allowed to see it; admins see
everything.  Facts above the caller's tier never reach the prompt.

File format (``KB_FACTS_PATH``)::

    [
      {"text": "Raising a seed round.", "min_tier": 0},
      {"text": "Monthly burn is $38k.", "min_tier": 2}
    ]

An object with a top-level ``"facts"`` list is accepted as well.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, TypeAdapter

if TYPE_CHECKING:
    from kb_copilot.copilot.state import ActorType

logger = logging.getLogger(__name__)


class DisclosedFact(BaseModel):
    text: str = Field(min_length=1)
    min_tier: int = Field(default=0, ge=0, le=2)


_FACT_LIST = TypeAdapter(list[DisclosedFact])


class FactSheet:
    """Immutable collection of :class:`DisclosedFact` objects."""

    def __init__(self, facts: list[DisclosedFact] | None = None) -> None:
        self._facts = tuple(facts or ())

    @classmethod
    def from_file(cls, path: str | Path) -> FactSheet:
        """Load facts from a JSON file; an empty *path* yields an empty sheet."""
        if not path:
            return cls()
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("facts", [])
        facts = _FACT_LIST.validate_python(raw)
        logger.info("Loaded %d disclosed facts from %s", len(facts), path)
        return cls(facts)

    def visible_to(self, actor_type: ActorType, tier: int | None = None) -> list[DisclosedFact]:
        """Facts the caller may see.

        Admins see every fact.  Investors see facts whose ``min_tier`` is at
        most their tier; a missing tier counts as 0.
        """
        if actor_type == "admin":
            return list(self._facts)
        effective = tier if tier is not None else 0
        return [fact for fact in self._facts if fact.min_tier <= effective]

    def __len__(self) -> int:
        return len(self._facts)
