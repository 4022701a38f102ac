"""Multi-provider streaming chat protocol adapter."""

from __future__ import annotations

from .cancellation import CancellationToken
from .chat.models import (
    AdvancedEndpoints,
    ChatOptions,
    GeneratedImage,
    ImageGenerationOptions,
    ImageGenerationResult,
    Message,
    ModelInfo,
    ToolCall,
    ToolDefinition,
)
from .chat.token_counter import calculate_total_tokens, estimate_tokens, limit_messages_by_tokens
from .clients.llm_client import ChatClient, chat, fetch_models, generate_image
from .clients.model_capabilities import get_model_capabilities
from .clients.providers import PROVIDER_CONFIGS, ProviderRegistry
from .errors import CancellationError, ConfigurationError, MultichatError, ParseError, TransportError

__all__ = [
    "AdvancedEndpoints",
    "CancellationError",
    "CancellationToken",
    "ChatClient",
    "ChatOptions",
    "ConfigurationError",
    "GeneratedImage",
    "ImageGenerationOptions",
    "ImageGenerationResult",
    "Message",
    "ModelInfo",
    "MultichatError",
    "PROVIDER_CONFIGS",
    "ParseError",
    "ProviderRegistry",
    "ToolCall",
    "ToolDefinition",
    "TransportError",
    "calculate_total_tokens",
    "chat",
    "estimate_tokens",
    "fetch_models",
    "generate_image",
    "get_model_capabilities",
    "limit_messages_by_tokens",
]
