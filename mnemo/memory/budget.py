"""Context budget allocation across constitution, skills, memory and conversation.

Priority order (high to low):

1. Constitution: fixed allocation, always included.
2. Skills: capped.
3. Memory: up to a percentage of the total window.
4. Conversation: whatever remains.

Tokens are estimated at a fixed 4 characters per token.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from mnemo.config.schema import BudgetConfig

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n[...truncated to fit context budget]"


@dataclass(frozen=True)
class BudgetAllocation:
    constitution: int
    skills: int
    memory: int
    conversation: int

    @property
    def total(self) -> int:
        return self.constitution + self.skills + self.memory + self.conversation


def estimate_tokens(text: str) -> int:
    """Conservative token estimate: ``ceil(len / 4)``."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def allocate_budget(config: BudgetConfig | None = None, **overrides: Any) -> BudgetAllocation:
    """Split ``total_tokens`` across the four context sections.

    Keyword overrides are applied on top of *config* (or the defaults) and
    validated the same way; ``None`` values are ignored.
    """
    base = config or BudgetConfig()
    updates = {k: v for k, v in overrides.items() if v is not None}
    cfg = BudgetConfig.model_validate({**base.model_dump(), **updates}) if updates else base

    remaining = cfg.total_tokens

    constitution = min(cfg.constitution_tokens, remaining)
    remaining -= constitution

    skills = min(cfg.skills_max_tokens, remaining)
    remaining -= skills

    memory_cap = math.floor(cfg.total_tokens * cfg.memory_max_percent)
    memory = min(memory_cap, remaining)
    remaining -= memory

    return BudgetAllocation(
        constitution=constitution,
        skills=skills,
        memory=memory,
        conversation=remaining,
    )


def truncate_to_token_budget(content: str, max_tokens: int) -> str:
    """Keep the beginning of *content* within *max_tokens*, appending a marker if cut."""
    max_chars = max(0, max_tokens) * CHARS_PER_TOKEN
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + TRUNCATION_MARKER
