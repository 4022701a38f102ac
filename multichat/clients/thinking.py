"""
Thinking-budget calculator.

Two schemes coexist:

* Claude-style budgets scale between per-family min/max reasoning-token bounds
  by an effort ratio, then get capped proportionally by the caller's max-token
  ceiling.
* Gemini-style budgets map effort to fixed token counts, with ``auto`` meaning
  a dynamic budget chosen by the server.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from multichat.chat.models import ThinkingEffort
from multichat.clients.model_capabilities import base_model_name

EFFORT_RATIO: dict[ThinkingEffort, float] = {
    "low": 0.2,
    "medium": 0.5,
    "high": 0.8,
    "auto": 0.5,
}

DEFAULT_MAX_TOKENS = 8192
MIN_THINKING_BUDGET = 1024

# Sentinel understood by Gemini as "let the model decide"
DYNAMIC_THINKING_BUDGET = -1

GEMINI_EFFORT_BUDGET: dict[ThinkingEffort, int] = {
    "low": 4096,
    "medium": 16384,
    "high": 32768,
    "auto": DYNAMIC_THINKING_BUDGET,
}


class TokenLimit(NamedTuple):
    min: int
    max: int


DEFAULT_TOKEN_LIMIT = TokenLimit(1024, 32768)

CLAUDE_TOKEN_LIMITS: dict[str, TokenLimit] = {
    "claude-3-7-sonnet": TokenLimit(1024, 32768),
    "claude-3-5-sonnet": TokenLimit(1024, 16384),
    "claude-sonnet-4": TokenLimit(1024, 32768),
    "claude-opus-4": TokenLimit(1024, 32768),
}


def find_token_limit(model_id: str, limits: dict[str, TokenLimit] = CLAUDE_TOKEN_LIMITS) -> TokenLimit:
    """Bounds for the most specific (longest) family prefix contained in the model id."""
    name = base_model_name(model_id)
    matches = [key for key in limits if key in name]
    if not matches:
        return DEFAULT_TOKEN_LIMIT
    return limits[max(matches, key=len)]


def calculate_thinking_budget(
    model_id: str,
    effort: ThinkingEffort,
    max_tokens: int | None = None,
    limits: dict[str, TokenLimit] = CLAUDE_TOKEN_LIMITS,
) -> int:
    """
    Reasoning-token budget for a bounded-budget model.

    budget = floor(min + (max - min) * ratio), then
    floor(max(1024, min(budget, ceiling * ratio))) where ceiling defaults to 8192.
    """
    bounds = find_token_limit(model_id, limits)
    ratio = EFFORT_RATIO[effort]

    budget = math.floor((bounds.max - bounds.min) * ratio + bounds.min)
    ceiling = max_tokens or DEFAULT_MAX_TOKENS
    return math.floor(max(MIN_THINKING_BUDGET, min(budget, ceiling * ratio)))


def gemini_thinking_budget(effort: ThinkingEffort, override: int | None = None) -> int:
    """Fixed Gemini budget for ``effort``; ``auto`` is always dynamic."""
    if effort == "auto":
        return DYNAMIC_THINKING_BUDGET
    if override is not None:
        return override
    return GEMINI_EFFORT_BUDGET[effort]


def gemini_3_reasoning_effort(effort: ThinkingEffort) -> str:
    """Gemini 3 only understands ``low`` and ``high``."""
    return "high" if effort == "high" else "low"
