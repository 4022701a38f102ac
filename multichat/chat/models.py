"""
Chat Data Models

Data structures shared by the request builders, the stream demultiplexers and
callers: conversation messages, tool calls, per-request options with their
callback slots, and the normalized shapes returned by model listing and image
generation. All strongly typed with Pydantic for validation.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from multichat.cancellation import CancellationToken

ThinkingEffort = Literal["low", "medium", "high", "auto"]
Role = Literal["user", "assistant", "system", "tool"]


# ==============================================================================
# CONTENT PARTS
# ==============================================================================


class TextPart(BaseModel):
    """Plain text segment of a multimodal message."""

    type: Literal["text"] = "text"
    text: str = ""


class ImageURL(BaseModel):
    url: str


class ImagePart(BaseModel):
    """Image reference, usually a ``data:image/...;base64,`` URL."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = Annotated[TextPart | ImagePart, Field(discriminator="type")]


class GeneratedImage(BaseModel):
    """Image returned inline by a model (base64 payload without data-URL prefix)."""

    mime_type: str = "image/png"
    data: str
    url: str | None = None


# ==============================================================================
# TOOL CALLS
# ==============================================================================


class FunctionCall(BaseModel):
    """Function call within a tool call."""

    name: str
    arguments: str = Field(default="{}")  # JSON string


class ToolCall(BaseModel):
    """Tool call requested by the model."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class ToolFunctionDefinition(BaseModel):
    """Tool function definition."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolDefinition(BaseModel):
    """Complete tool definition for OpenAI-compatible APIs."""

    type: Literal["function"] = "function"
    function: ToolFunctionDefinition


# ==============================================================================
# MESSAGES
# ==============================================================================


class Message(BaseModel):
    """One unit of conversation history."""

    role: Role
    content: str | list[ContentPart] = ""
    reasoning_content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    generated_images: list[GeneratedImage] | None = None

    @model_validator(mode="after")
    def check_tool_fields(self) -> Message:
        if self.role == "tool" and not (self.tool_call_id and self.name):
            raise ValueError("tool messages require both tool_call_id and name")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("only assistant messages may carry tool_calls")
        return self

    @field_validator("tool_calls")
    @classmethod
    def empty_tool_calls_to_none(cls, v: list[ToolCall] | None) -> list[ToolCall] | None:
        """Convert empty tool_calls list to None to avoid API errors."""
        if v is not None and len(v) == 0:
            return None
        return v

    def text(self) -> str:
        """Content flattened to text (image parts dropped)."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text for part in self.content if isinstance(part, TextPart) and part.text)


# ==============================================================================
# REQUEST OPTIONS
# ==============================================================================

ChunkCallback = Callable[[str], Any]
ErrorCallback = Callable[[Exception], Any]
ToolCallCallback = Callable[[ToolCall], Any]
ToolCallsCompleteCallback = Callable[[list[ToolCall]], Awaitable[None] | None]
ImagesCallback = Callable[[list[GeneratedImage]], Any]


class ChatOptions(BaseModel):
    """
    Full configuration of one chat request.

    Constructed by the caller per call and consumed entirely within one
    invocation of ``ChatClient.chat``. Callbacks may be plain functions or
    coroutine functions; coroutine results are awaited in stream order.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str
    messages: list[Message]
    api_key: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = True
    cancellation: CancellationToken | None = None

    enable_thinking: bool = False
    thinking_budget: int | None = None
    reasoning_effort: ThinkingEffort | None = None

    tools: list[ToolDefinition] | None = None
    custom_body: dict[str, Any] | None = None
    enable_image_generation: bool = False

    on_chunk: ChunkCallback | None = None
    on_complete: ChunkCallback | None = None
    on_error: ErrorCallback | None = None
    on_thinking_chunk: ChunkCallback | None = None
    on_thinking_complete: ChunkCallback | None = None
    on_tool_call: ToolCallCallback | None = None
    on_tool_call_complete: ToolCallsCompleteCallback | None = None
    on_image_generated: ImagesCallback | None = None

    @field_validator("custom_body", mode="before")
    @classmethod
    def parse_custom_body(cls, v: Any) -> Any:
        """Accept the custom body as a JSON object string, as stored in settings."""
        if isinstance(v, str):
            if not v.strip():
                return None
            parsed = json.loads(v)
            if not isinstance(parsed, dict):
                raise ValueError("custom_body must be a JSON object")
            return parsed
        return v

    @property
    def effort(self) -> ThinkingEffort:
        return self.reasoning_effort or "low"


class AdvancedEndpoints(BaseModel):
    """Per-provider URL overrides used verbatim when set."""

    custom_models_url: str | None = None
    custom_chat_url: str | None = None


# ==============================================================================
# MODEL LISTING / IMAGE GENERATION
# ==============================================================================


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str


class ImageGenerationOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str
    prompt: str
    api_key: str = ""
    negative_prompt: str | None = None
    size: str = "1024x1024"
    quality: Literal["standard", "hd"] | None = None
    style: Literal["vivid", "natural"] | None = None
    n: int = 1
    cancellation: CancellationToken | None = None


class GeneratedImageRef(BaseModel):
    """One image from the image-generation endpoint."""

    url: str | None = None
    b64_json: str | None = None
    revised_prompt: str | None = None


class ImageGenerationResult(BaseModel):
    images: list[GeneratedImageRef] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.images)


# ==============================================================================
# STREAMING MODELS
# ==============================================================================


class FunctionCallDelta(BaseModel):
    """Partial function call data in streaming response."""

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    """Partial tool call data in streaming response."""

    index: int | None = None
    id: str | None = None
    type: Literal["function"] | None = None
    function: FunctionCallDelta | None = None
