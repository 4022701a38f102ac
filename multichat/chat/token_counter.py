"""
Token estimation utilities.

A script-aware heuristic for UI budgeting, not a billing-accurate tokenizer:
Chinese characters weigh 1.5, each Latin word weighs 1, anything else weighs
0.5, and every image part costs a flat 85.
"""

from __future__ import annotations

import logging
import math
import re

from multichat.chat.models import ImagePart, Message, TextPart

logger = logging.getLogger(__name__)

IMAGE_TOKENS = 85
CHINESE_CHAR_WEIGHT = 1.5
LATIN_WORD_WEIGHT = 1.0
OTHER_CHAR_WEIGHT = 0.5

_CHINESE_RE = re.compile(r"[一-龥]")
_LATIN_WORD_RE = re.compile(r"[A-Za-z]+")


def estimate_tokens(text: str) -> int:
    """Estimated token count of ``text``, rounded up."""
    if not text:
        return 0

    chinese_chars = len(_CHINESE_RE.findall(text))
    latin_words = _LATIN_WORD_RE.findall(text)
    latin_letters = sum(len(word) for word in latin_words)
    other_chars = len(text) - chinese_chars - latin_letters

    return math.ceil(
        chinese_chars * CHINESE_CHAR_WEIGHT
        + len(latin_words) * LATIN_WORD_WEIGHT
        + other_chars * OTHER_CHAR_WEIGHT
    )


def estimate_message_tokens(message: Message) -> int:
    if isinstance(message.content, str):
        return estimate_tokens(message.content)

    total = 0
    for part in message.content:
        if isinstance(part, TextPart):
            total += estimate_tokens(part.text)
        elif isinstance(part, ImagePart):
            total += IMAGE_TOKENS
    return total


def calculate_total_tokens(messages: list[Message]) -> int:
    """Sum of the per-message estimates."""
    return sum(estimate_message_tokens(message) for message in messages)


def limit_messages_by_tokens(messages: list[Message], max_tokens: int) -> list[Message]:
    """
    Trim a conversation to fit ``max_tokens``.

    Keeps the last system message, then walks the remaining messages from
    newest to oldest and keeps each one while it still fits. Chronological
    order is preserved in the result.
    """
    system_messages = [m for m in messages if m.role == "system"]
    others = [m for m in messages if m.role != "system"]

    kept_system = system_messages[-1:]
    remaining = max_tokens - calculate_total_tokens(kept_system)
    if remaining <= 0:
        return kept_system

    kept: list[Message] = []
    for message in reversed(others):
        cost = estimate_message_tokens(message)
        if cost > remaining:
            break
        kept.append(message)
        remaining -= cost

    kept.reverse()
    dropped = len(others) - len(kept)
    if dropped:
        logger.debug("Context trimmed: dropped %d message(s) to fit %d tokens", dropped, max_tokens)
    return kept_system + kept
