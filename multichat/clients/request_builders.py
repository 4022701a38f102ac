"""
Request body builders, one per wire dialect.

Every builder starts from the caller's messages and sampling parameters, merges
the caller's raw custom body over that base, and then applies the reasoning
controls last so the UI-level ``enable_thinking`` toggle always wins over
anything the custom body injected.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any

from multichat.chat.models import ChatOptions, GeneratedImage, ImagePart, Message, TextPart
from multichat.clients.model_capabilities import is_claude_model, is_gemini_3_model, is_gemini_thinking_model
from multichat.clients.thinking import (
    DYNAMIC_THINKING_BUDGET,
    calculate_thinking_budget,
    gemini_3_reasoning_effort,
    gemini_thinking_budget,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
CLAUDE_DEFAULT_MAX_TOKENS = 8192
ANTHROPIC_VERSION = "2023-06-01"

_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)

# Keys a custom body may use to switch reasoning on behind the UI's back
_OPENAI_REASONING_KEYS = ("thinking", "reasoning_effort", "enable_thinking")


def parse_data_url(url: str) -> tuple[str, str] | None:
    """Split ``data:image/png;base64,AAAA`` into ``("image/png", "AAAA")``."""
    match = _DATA_URL_RE.match(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def _temperature(options: ChatOptions) -> float:
    return options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE


def _custom_body(options: ChatOptions) -> dict[str, Any]:
    # Deep copy so deleting nested keys never touches the caller's settings
    return copy.deepcopy(options.custom_body) if options.custom_body else {}


# ==============================================================================
# OPENAI-COMPATIBLE
# ==============================================================================


def format_openai_message(message: Message) -> dict[str, Any]:
    """Forward a message near-verbatim, adding reasoning and tool fields only when set."""
    formatted: dict[str, Any] = {"role": message.role}
    if isinstance(message.content, str):
        formatted["content"] = message.content
    else:
        formatted["content"] = [part.model_dump() for part in message.content]

    # Vendors with a thinking mode expect the previous reasoning trace back
    if message.reasoning_content:
        formatted["reasoning_content"] = message.reasoning_content

    if message.tool_calls:
        formatted["tool_calls"] = [call.model_dump() for call in message.tool_calls]

    if message.role == "tool":
        formatted["tool_call_id"] = message.tool_call_id
        formatted["name"] = message.name

    return formatted


def build_openai_body(options: ChatOptions) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": options.model,
        "messages": [format_openai_message(m) for m in options.messages],
        "temperature": _temperature(options),
        "stream": options.stream,
    }
    if options.max_tokens is not None:
        body["max_tokens"] = options.max_tokens
    body.update(_custom_body(options))

    if options.tools:
        body["tools"] = [tool.model_dump() for tool in options.tools]
        body["tool_choice"] = "auto"

    if not options.enable_thinking:
        for key in _OPENAI_REASONING_KEYS:
            body.pop(key, None)
        google = body.get("extra_body", {}).get("google") if isinstance(body.get("extra_body"), dict) else None
        if isinstance(google, dict):
            google.pop("thinking_config", None)
        return body

    effort = options.effort
    if is_claude_model(options.model):
        body["thinking"] = {
            "type": "enabled",
            "budget_tokens": calculate_thinking_budget(options.model, effort, options.max_tokens),
        }
    elif is_gemini_thinking_model(options.model):
        if is_gemini_3_model(options.model):
            body["reasoning_effort"] = gemini_3_reasoning_effort(effort)
        else:
            extra_body = body.get("extra_body") if isinstance(body.get("extra_body"), dict) else {}
            body["extra_body"] = {
                **extra_body,
                "google": {
                    "thinking_config": {
                        "thinking_budget": gemini_thinking_budget(effort, options.thinking_budget),
                        "include_thoughts": True,
                    }
                },
            }

    body["stream_options"] = {"include_usage": True}
    return body


# ==============================================================================
# GEMINI-NATIVE
# ==============================================================================


def _gemini_inline(image: GeneratedImage) -> dict[str, Any]:
    return {"inline_data": {"mime_type": image.mime_type, "data": image.data}}


def format_gemini_content(message: Message) -> dict[str, Any]:
    role = "model" if message.role == "assistant" else "user"
    parts: list[dict[str, Any]] = []

    if isinstance(message.content, str):
        parts.append({"text": message.content})
    else:
        for part in message.content:
            if isinstance(part, TextPart):
                if part.text:
                    parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                parsed = parse_data_url(part.image_url.url)
                if parsed is None:
                    logger.warning("Skipping non data-URL image for Gemini request")
                    continue
                mime_type, data = parsed
                parts.append({"inline_data": {"mime_type": mime_type, "data": data}})

    # Multi-turn image editing needs the model's earlier images resent
    if message.role == "assistant" and message.generated_images:
        parts.extend(_gemini_inline(image) for image in message.generated_images)

    return {"role": role, "parts": parts}


def _wants_image_output(options: ChatOptions) -> bool:
    if options.enable_image_generation:
        return True
    generation_config = (options.custom_body or {}).get("generationConfig") or {}
    return "IMAGE" in (generation_config.get("responseModalities") or [])


def build_gemini_body(options: ChatOptions) -> dict[str, Any]:
    generation_config: dict[str, Any] = {"temperature": _temperature(options)}
    if options.max_tokens is not None:
        generation_config["maxOutputTokens"] = options.max_tokens

    body: dict[str, Any] = {
        "contents": [format_gemini_content(m) for m in options.messages if m.role != "system"],
        "generationConfig": generation_config,
    }
    custom_body = _custom_body(options)
    custom_generation = custom_body.pop("generationConfig", None)
    body.update(custom_body)
    # Custom generation settings merge into the base instead of replacing it
    if isinstance(custom_generation, dict):
        body["generationConfig"] = {**generation_config, **custom_generation}

    if _wants_image_output(options):
        body["generationConfig"].setdefault("responseModalities", ["TEXT", "IMAGE"])

    if options.enable_thinking:
        body["generationConfig"]["thinkingConfig"] = {
            "thinkingBudget": DYNAMIC_THINKING_BUDGET,
            "includeThoughts": True,
        }
    else:
        body["generationConfig"].pop("thinkingConfig", None)

    system = next((m for m in options.messages if m.role == "system"), None)
    if system is not None:
        body["systemInstruction"] = {"parts": [{"text": system.text()}]}

    return body


# ==============================================================================
# CLAUDE-NATIVE
# ==============================================================================


def format_claude_message(message: Message) -> dict[str, Any]:
    if isinstance(message.content, str):
        return {"role": message.role, "content": message.content}

    content: list[dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextPart):
            if part.text:
                content.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parsed = parse_data_url(part.image_url.url)
            if parsed is None:
                continue
            media_type, data = parsed
            content.append({"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}})
    return {"role": message.role, "content": content}


def build_claude_body(options: ChatOptions) -> dict[str, Any]:
    system_prompt = "\n".join(m.text() for m in options.messages if m.role == "system")

    body: dict[str, Any] = {
        "model": options.model,
        "messages": [format_claude_message(m) for m in options.messages if m.role != "system"],
        "max_tokens": options.max_tokens or CLAUDE_DEFAULT_MAX_TOKENS,
        "temperature": _temperature(options),
        "stream": options.stream,
    }
    body.update(_custom_body(options))

    if system_prompt:
        body["system"] = system_prompt

    if options.tools:
        body["tools"] = [tool.model_dump() for tool in options.tools]

    if options.enable_thinking:
        body["thinking"] = {
            "type": "enabled",
            "budget_tokens": calculate_thinking_budget(options.model, options.effort, options.max_tokens),
        }
    else:
        body.pop("thinking", None)

    return body
