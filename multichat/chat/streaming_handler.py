"""
Streaming Response Handler

Turns a vendor's raw response bytes into the caller's callback events:
- SSE reframing (bytes -> lines -> ``data:`` payloads)
- Per-dialect frame decoding (OpenAI-compatible, Gemini-native, Claude-native)
- Reasoning/answer phase tracking with an exactly-once reasoning-complete
- Streaming tool call accumulation
- Generated image collection
- Finalization on normal end and on cancellation

This is the most fragile part of the package. Each handler instance owns the
accumulation state of exactly one request, so concurrent requests never share
anything mutable.
"""

from __future__ import annotations

import codecs
import inspect
import json
import logging
from collections.abc import AsyncIterable, Callable
from typing import Any

from pydantic import ValidationError

from multichat.cancellation import CancellationToken, iterate
from multichat.chat.logging_utils import log_llm_reply, log_stream_frame
from multichat.chat.models import (
    ChatOptions,
    FunctionCall,
    GeneratedImage,
    ToolCall,
    ToolCallDelta,
)
from multichat.errors import CancellationError, ParseError, TransportError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# Vendor-specific names for the reasoning delta, checked in this order
REASONING_KEYS = ("reasoning_content", "reasoning", "thought", "thinking")


async def invoke_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call an optional callback, awaiting it when it returns an awaitable."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def parse_sse_line(line: str) -> str | None:
    """
    Payload of one SSE line, or None when the line carries nothing to decode.

    Blank lines, non-``data:`` lines (``event:``, comments) and the ``[DONE]``
    sentinel all yield None.
    """
    line = line.strip()
    if not line or not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX) :].lstrip()
    if not payload or payload == DONE_SENTINEL:
        return None
    return payload


class SSELineDecoder:
    """
    Incremental bytes-to-lines reframer.

    Multi-byte characters split across reads are held by the incremental
    decoder; a line split across reads is held in the buffer until its newline
    arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def flush(self) -> list[str]:
        """Lines left over once the body is exhausted."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return [remainder] if remainder.strip() else []


def _image_from_entry(entry: Any) -> GeneratedImage | None:
    """Normalize one generated-image entry from an OpenAI-compatible frame."""
    if not isinstance(entry, dict):
        return None

    data = entry.get("b64_json") or entry.get("data")
    mime_type = entry.get("mime_type") or entry.get("mimeType") or "image/png"
    url = entry.get("url")

    image_url = entry.get("image_url")
    if isinstance(image_url, dict):
        url = image_url.get("url") or url

    # Data URLs carry both the MIME type and the payload
    if not data and isinstance(url, str) and url.startswith("data:") and ";base64," in url:
        header, data = url.split(";base64,", 1)
        mime_type = header.removeprefix("data:") or mime_type
        url = None

    if not data and not url:
        return None
    return GeneratedImage(mime_type=mime_type, data=data or "", url=url)


class StreamHandler:
    """
    Per-request demultiplexer base.

    Subclasses implement ``handle_frame`` for one dialect; everything about
    phase tracking, tool call accumulation and finalization lives here.
    """

    dialect = "openai"

    def __init__(self, options: ChatOptions, token: CancellationToken | None = None) -> None:
        self.options = options
        self.token = token if token is not None else options.cancellation

        self.full_text = ""
        self.thinking_text = ""
        self.in_reasoning = False
        self.reasoning_completed = False
        self.tool_calls: list[dict[str, Any]] = []
        self.images: list[GeneratedImage] = []
        self.finish_reason: str | None = None
        self.finished = False

        self._decoder = SSELineDecoder()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def consume(self, chunks: AsyncIterable[bytes]) -> None:
        """Read the whole body, racing every read against the cancellation token."""
        async for chunk in iterate(chunks, self.token):
            for line in self._decoder.feed(chunk):
                await self.feed_line(line)
        for line in self._decoder.flush():
            await self.feed_line(line)

    async def feed_line(self, line: str) -> None:
        """Process one complete line of the SSE body."""
        payload = parse_sse_line(line)
        if payload is None:
            return

        # A callback may have cancelled; stop before emitting anything further
        if self.token is not None:
            self.token.raise_if_cancelled()

        log_stream_frame(self.dialect, payload)
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError as e:
            error = ParseError(f"Malformed stream frame: {e}", payload=payload)
            logger.warning("← LLM: skipping frame: %s", error)
            return

        if not isinstance(frame, dict):
            return
        try:
            await self.handle_frame(frame)
        except (ValidationError, AttributeError, TypeError) as e:
            error = ParseError(f"Unexpected stream frame shape: {e}", payload=payload)
            logger.warning("← LLM: skipping frame: %s", error)

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        raise NotImplementedError

    async def handle_message(self, payload: dict[str, Any]) -> None:
        """Decode a complete non-streaming response body."""
        await self.handle_frame(payload)

    # ------------------------------------------------------------------
    # Phase tracking
    # ------------------------------------------------------------------

    async def emit_reasoning(self, text: str) -> None:
        if not text or not self.options.enable_thinking:
            return
        if not self.reasoning_completed:
            self.in_reasoning = True
        self.thinking_text += text
        await invoke_callback(self.options.on_thinking_chunk, text)

    async def emit_answer(self, text: str) -> None:
        if not text:
            return
        await self.complete_reasoning()
        self.full_text += text
        await invoke_callback(self.options.on_chunk, text)

    async def complete_reasoning(self) -> None:
        """Fire reasoning-complete if a reasoning phase is open. At most once per stream."""
        if not self.in_reasoning or self.reasoning_completed:
            return
        self.in_reasoning = False
        self.reasoning_completed = True
        await invoke_callback(self.options.on_thinking_complete, self.thinking_text)

    # ------------------------------------------------------------------
    # Tool calls / images
    # ------------------------------------------------------------------

    def accumulate_tool_call_delta(self, delta: ToolCallDelta) -> None:
        """
        Merge one tool call fragment into the call at its index.

        id and name are taken from the first fragment that carries them;
        argument fragments are only ever appended.
        """
        index = delta.index if delta.index is not None else len(self.tool_calls)

        while len(self.tool_calls) <= index:
            self.tool_calls.append({"id": None, "type": "function", "function": {"name": None, "arguments": ""}})

        current_call = self.tool_calls[index]

        if delta.id and not current_call["id"]:
            current_call["id"] = delta.id

        if delta.function:
            if delta.function.name and not current_call["function"]["name"]:
                current_call["function"]["name"] = delta.function.name
            if delta.function.arguments:
                current_call["function"]["arguments"] += delta.function.arguments

    def completed_tool_calls(self) -> list[ToolCall]:
        """Tool calls that resolved fully (id, name and non-empty arguments), in index order."""
        return [
            ToolCall(
                id=call["id"],
                function=FunctionCall(name=call["function"]["name"], arguments=call["function"]["arguments"]),
            )
            for call in self.tool_calls
            if call["id"] and call["function"]["name"] and call["function"]["arguments"]
        ]

    def collect_images(self, entries: Any) -> None:
        if isinstance(entries, dict):
            entries = [entries]
        if not isinstance(entries, list):
            return
        for entry in entries:
            image = _image_from_entry(entry)
            if image is not None:
                self.images.append(image)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def finish(self) -> None:
        """Normal end of stream. Fires the terminal callbacks once."""
        if self.finished:
            return
        self.finished = True

        await self.complete_reasoning()

        tool_calls = self.completed_tool_calls()
        if tool_calls:
            logger.info("← LLM: %d tool call(s) resolved", len(tool_calls))
            for call in tool_calls:
                await invoke_callback(self.options.on_tool_call, call)
            await invoke_callback(self.options.on_tool_call_complete, tool_calls)

        if self.images:
            await invoke_callback(self.options.on_image_generated, list(self.images))

        log_llm_reply(
            {
                "content": self.full_text,
                "thinking": self.thinking_text,
                "tool_calls": tool_calls,
                "model": self.options.model,
            },
            f"{self.dialect} stream",
        )
        await invoke_callback(self.options.on_complete, self.full_text)

    async def finish_cancelled(self, error: CancellationError) -> None:
        """Abort path: flush partial state, then report the cancellation."""
        if self.finished:
            return
        self.finished = True

        await self.complete_reasoning()
        if self.full_text or self.thinking_text:
            await invoke_callback(self.options.on_complete, self.full_text)
        await invoke_callback(self.options.on_error, error)


# ==============================================================================
# OPENAI-COMPATIBLE
# ==============================================================================


class OpenAIStreamHandler(StreamHandler):
    """Decodes ``choices[0].delta`` frames (and ``choices[0].message`` bodies)."""

    dialect = "openai"

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        self.collect_images(frame.get("images") or frame.get("image"))

        choices = frame.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return

        choice = choices[0]
        delta = choice.get("delta") or choice.get("message") or {}

        reasoning = next(
            (delta[key] for key in REASONING_KEYS if isinstance(delta.get(key), str) and delta[key]),
            None,
        )
        if reasoning:
            await self.emit_reasoning(reasoning)

        for tool_call_delta in delta.get("tool_calls") or []:
            self.accumulate_tool_call_delta(ToolCallDelta.model_validate(tool_call_delta))

        content = delta.get("content")
        if isinstance(content, str):
            await self.emit_answer(content)

        self.collect_images(delta.get("images") or delta.get("image"))

        if choice.get("finish_reason"):
            self.finish_reason = choice["finish_reason"]

    async def handle_message(self, payload: dict[str, Any]) -> None:
        # Complete tool calls carry no index; number them by position
        choices = payload.get("choices") or []
        if choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            for i, call in enumerate(message.get("tool_calls") or []):
                call.setdefault("index", i)
        await self.handle_frame(payload)


# ==============================================================================
# GEMINI-NATIVE
# ==============================================================================


class GeminiStreamHandler(StreamHandler):
    """
    Decodes ``candidates[0].content.parts`` frames.

    A part is reasoning only when ``thought`` is literally ``True``. Function
    call parts are ignored.
    """

    dialect = "gemini"

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        candidates = frame.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return

        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            if not isinstance(part, dict):
                continue

            inline = part.get("inline_data") or part.get("inlineData")
            if isinstance(inline, dict) and inline.get("data"):
                self.images.append(
                    GeneratedImage(
                        mime_type=inline.get("mime_type") or inline.get("mimeType") or "image/png",
                        data=inline["data"],
                    )
                )
                continue

            text = part.get("text")
            if not isinstance(text, str) or not text:
                continue
            if part.get("thought") is True:
                await self.emit_reasoning(text)
            else:
                await self.emit_answer(text)

        if candidate.get("finishReason"):
            self.finish_reason = candidate["finishReason"]


# ==============================================================================
# CLAUDE-NATIVE
# ==============================================================================


class ClaudeStreamHandler(StreamHandler):
    """Decodes Messages API events (``content_block_*``) and complete message bodies."""

    dialect = "claude"

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        event_type = frame.get("type")

        if event_type == "content_block_start":
            await self._start_block(frame.get("index"), frame.get("content_block") or {})

        elif event_type == "content_block_delta":
            delta = frame.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                await self.emit_answer(delta.get("text", ""))
            elif delta_type == "thinking_delta":
                await self.emit_reasoning(delta.get("thinking", ""))
            elif delta_type == "input_json_delta":
                self.accumulate_tool_call_delta(
                    ToolCallDelta.model_validate(
                        {"index": frame.get("index"), "function": {"arguments": delta.get("partial_json", "")}}
                    )
                )

        elif event_type == "content_block_stop":
            if self.in_reasoning:
                await self.complete_reasoning()

        elif event_type == "message_delta":
            stop_reason = (frame.get("delta") or {}).get("stop_reason")
            if stop_reason:
                self.finish_reason = stop_reason

        elif event_type == "error":
            error = frame.get("error") or {}
            raise TransportError(
                f"Stream error: {error.get('message', 'unknown error')}",
                detail=error.get("message"),
            )

    async def _start_block(self, index: int | None, block: dict[str, Any]) -> None:
        block_type = block.get("type")
        if block_type == "thinking":
            if self.options.enable_thinking and not self.reasoning_completed:
                self.in_reasoning = True
            await self.emit_reasoning(block.get("thinking", ""))
        elif block_type == "text":
            await self.emit_answer(block.get("text", ""))
        elif block_type == "tool_use":
            self.accumulate_tool_call_delta(
                ToolCallDelta.model_validate(
                    {"index": index, "id": block.get("id"), "function": {"name": block.get("name")}}
                )
            )

    async def handle_message(self, payload: dict[str, Any]) -> None:
        for i, block in enumerate(payload.get("content") or []):
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "thinking":
                await self.emit_reasoning(block.get("thinking", ""))
            elif block_type == "text":
                await self.emit_answer(block.get("text", ""))
            elif block_type == "tool_use":
                self.accumulate_tool_call_delta(
                    ToolCallDelta.model_validate(
                        {
                            "index": i,
                            "id": block.get("id"),
                            "function": {"name": block.get("name"), "arguments": json.dumps(block.get("input") or {})},
                        }
                    )
                )
        if payload.get("stop_reason"):
            self.finish_reason = payload["stop_reason"]


STREAM_HANDLERS: dict[str, type[StreamHandler]] = {
    "openai": OpenAIStreamHandler,
    "gemini": GeminiStreamHandler,
    "claude": ClaudeStreamHandler,
}


def create_stream_handler(
    dialect: str, options: ChatOptions, token: CancellationToken | None = None
) -> StreamHandler:
    return STREAM_HANDLERS[dialect](options, token)
