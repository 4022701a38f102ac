"""
Model capability classifier.

Infers from a model identifier alone whether the model supports extended
reasoning, vision, image generation, tool calling and web search. Works offline
against a rule table; each capability is an ordered list of rules and the first
matching rule decides. Unknown models fall through to "no".

The tables are heuristic and will drift as vendors ship new names. Update the
rules, not the control flow.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TypedDict


class CapabilityRecord(TypedDict, total=False):
    """Only true flags are present; a missing key means unknown/false."""

    thinking: bool
    vision: bool
    image_generation: bool
    tool_calling: bool
    web_search: bool


@dataclass(frozen=True)
class CapabilityRule:
    """``pattern`` matched (and ``exclude`` not matched) decides ``verdict``."""

    pattern: re.Pattern[str]
    verdict: bool = True
    exclude: re.Pattern[str] | None = None

    def decide(self, model_id: str) -> bool | None:
        if not self.pattern.search(model_id):
            return None
        if self.exclude is not None and self.exclude.search(model_id):
            return None
        return self.verdict


def _rule(pattern: str, *, exclude: str | None = None, verdict: bool = True) -> CapabilityRule:
    return CapabilityRule(
        pattern=re.compile(pattern),
        verdict=verdict,
        exclude=re.compile(exclude) if exclude else None,
    )


# Vendor families used by the request builder to pick a thinking parameter
GEMINI_THINKING_MODEL_RE = re.compile(
    r"gemini-(?:2\.5.*(?:-latest)?|3(?:\.\d+)?-(?:flash|pro)(?:-preview)?|flash-latest|pro-latest|flash-lite-latest)"
    r"(?:-[\w-]+)*$",
    re.IGNORECASE,
)
CLAUDE_MODEL_RE = re.compile(r"^claude", re.IGNORECASE)
GEMINI_3_MODEL_RE = re.compile(r"gemini-3", re.IGNORECASE)


THINKING_RULES: tuple[CapabilityRule, ...] = (
    _rule(r"\bo[1-4](?:-[\w-]+)?"),
    _rule(r"\b(reasoning|reasoner|thinking|think)\b"),
    _rule(r"deepseek-r1"),
    _rule(r"\bqwq\b"),
    _rule(r"kimi.*thinking"),
    _rule(r"kimi-k2\.5"),
    _rule(r"gemini-[23]", exclude=r"image"),
    _rule(r"claude.*sonnet-4"),
    _rule(r"glm-zero"),
    _rule(r"hunyuan-t1"),
    _rule(r"grok-[34]"),
    _rule(r"gpt-5"),
    _rule(r"gpt-.*-codex"),
)

VISION_RULES: tuple[CapabilityRule, ...] = (
    _rule(r"\bvision\b"),
    # base gpt-4 and the 32k variant are text only
    _rule(r"gpt-4(-\d+)?(-preview)?$", verdict=False),
    _rule(r"gpt-4-32k", verdict=False),
    _rule(r"gpt-4"),
    _rule(r"gpt-(4o|4\.5|5)"),
    _rule(r"chatgpt-4o"),
    _rule(r"\bo[134]", exclude=r"mini|preview"),
    _rule(r"claude-[34]"),
    _rule(r"claude-(haiku|sonnet|opus)-4"),
    _rule(r"gemini-(1\.5|2|3)", exclude=r"image"),
    _rule(r"qwen.*-vl"),
    _rule(r"qwen.*-omni"),
    _rule(r"qvq"),
    _rule(r"glm-4.*v"),
    _rule(r"deepseek-vl"),
    _rule(r"kimi-(k2\.5|latest|vl)"),
    _rule(r"grok-(vision|4)"),
    _rule(r"pixtral"),
    _rule(r"doubao-seed"),
    _rule(r"llama-4"),
    _rule(r"step-1[ov]"),
    _rule(r"mistral-(large|medium|small)"),
)

IMAGE_GENERATION_RULES: tuple[CapabilityRule, ...] = (
    _rule(r"dall-e"),
    _rule(r"gpt-image"),
    _rule(r"stable-?diffusion"),
    _rule(r"flux"),
    _rule(r"midjourney"),
    _rule(r"cogview"),
    _rule(r"imagen"),
    _rule(r"ideogram"),
    _rule(r"recraft"),
    _rule(r"kling"),
    _rule(r"wanx"),
    _rule(r"image-generation"),
    _rule(r"gemini.*-image"),
    _rule(r"nano-?banana"),
    _rule(r"grok-2-image"),
)

TOOL_CALLING_RULES: tuple[CapabilityRule, ...] = (
    _rule(r"gpt-(4|4o|4\.5|5)"),
    _rule(r"\bo[134]"),
    _rule(r"claude"),
    _rule(r"gemini", exclude=r"image"),
    _rule(r"qwen(?!-mt)"),
    _rule(r"deepseek"),
    _rule(r"glm-4", exclude=r"4\.5v"),
    _rule(r"hunyuan"),
    _rule(r"doubao-seed"),
    _rule(r"kimi-k2"),
    _rule(r"grok-3"),
    _rule(r"minimax-m2"),
    _rule(r"mimo-v2"),
)

WEB_SEARCH_RULES: tuple[CapabilityRule, ...] = (
    _rule(r"sonar"),
    _rule(r"gemini-[23]", exclude=r"image"),
    _rule(r"claude-3\.(5|7)-sonnet"),
    _rule(r"claude-3\.5-haiku"),
    _rule(r"claude-(haiku|sonnet|opus)-4"),
    _rule(r"gpt-4o"),
    _rule(r"gpt-5"),
    _rule(r"grok"),
)

CAPABILITY_TABLE: dict[str, tuple[CapabilityRule, ...]] = {
    "thinking": THINKING_RULES,
    "vision": VISION_RULES,
    "image_generation": IMAGE_GENERATION_RULES,
    "tool_calling": TOOL_CALLING_RULES,
    "web_search": WEB_SEARCH_RULES,
}


def base_model_name(model_id: str, separator: str = "/") -> str:
    """Lower-cased model id with any ``vendor/`` path prefix removed."""
    return model_id.split(separator)[-1].lower()


def _evaluate(rules: tuple[CapabilityRule, ...], model_id: str) -> bool:
    name = base_model_name(model_id)
    for rule in rules:
        verdict = rule.decide(name)
        if verdict is not None:
            return verdict
    return False


def is_thinking_model(model_id: str) -> bool:
    return _evaluate(THINKING_RULES, model_id)


def is_vision_model(model_id: str) -> bool:
    return _evaluate(VISION_RULES, model_id)


def is_image_generation_model(model_id: str) -> bool:
    return _evaluate(IMAGE_GENERATION_RULES, model_id)


def is_tool_calling_model(model_id: str) -> bool:
    return _evaluate(TOOL_CALLING_RULES, model_id)


def is_web_search_model(model_id: str) -> bool:
    return _evaluate(WEB_SEARCH_RULES, model_id)


def get_model_capabilities(model_id: str) -> CapabilityRecord:
    """Capability record for ``model_id`` with only the true flags populated."""
    record: CapabilityRecord = {}
    for capability, rules in CAPABILITY_TABLE.items():
        if _evaluate(rules, model_id):
            record[capability] = True  # type: ignore[literal-required]
    return record


# ==============================================================================
# VENDOR FAMILY DETECTION (thinking parameter selection)
# ==============================================================================


def is_claude_model(model_id: str) -> bool:
    return bool(CLAUDE_MODEL_RE.search(base_model_name(model_id)))


def is_gemini_thinking_model(model_id: str) -> bool:
    """Gemini models that accept a thinking config; image and speech variants do not."""
    name = base_model_name(model_id)
    if not GEMINI_THINKING_MODEL_RE.search(name):
        return False
    return "image" not in name and "tts" not in name


def is_gemini_3_model(model_id: str) -> bool:
    """Gemini 3 takes a flat ``reasoning_effort`` instead of a thinking config."""
    return bool(GEMINI_3_MODEL_RE.search(base_model_name(model_id)))
