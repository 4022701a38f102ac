"""
Chat Logging Utilities

Shared logging functionality with per-module levels and feature flags.
"""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Module-to-logger mapping; features are switched on in the logging.modules config
MODULE_LOGGER_MAP: dict[str, dict[str, Any]] = {
    "chat": {
        "loggers": ["multichat.chat"],
        "default_level": "INFO",
        "features": ["llm_replies", "stream_frames"],
    },
    "http": {
        "loggers": ["multichat.clients"],
        "default_level": "INFO",
        "features": ["http_requests"],
    },
}

_module_features: dict[str, dict[str, bool]] = {}


def configure_logging(logging_config: dict[str, Any]) -> None:
    """
    Apply the global level, per-module levels and feature flags.

    Levels are set on the parent package loggers so every module logger below
    them inherits the setting.
    """
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(LEVEL_MAP.get(global_level, logging.WARNING))

    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    _module_features.clear()
    for module_name, module_config in (logging_config.get("modules") or {}).items():
        if not isinstance(module_config, dict):
            continue

        module_map = MODULE_LOGGER_MAP.get(module_name, {})
        module_level = module_config.get("level", module_map.get("default_level", global_level))
        level_value = LEVEL_MAP.get(module_level, logging.WARNING)

        for logger_name in module_map.get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        _module_features[module_name] = dict(module_config.get("enable_features") or {})


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature is enabled."""
    return bool(_module_features.get(module, {}).get(feature, False))


def _truncate(text: str, length: int) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


def log_llm_reply(reply: dict[str, Any], context: str, truncate_length: int = 500) -> None:
    """
    Log a finished LLM reply when the ``chat.llm_replies`` feature is on.

    Args:
        reply: dict with ``content``, ``thinking``, ``tool_calls`` and ``model``
        context: Descriptive context for the log entry
        truncate_length: Maximum length of content and thinking in the entry
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    content = reply.get("content") or ""
    thinking = reply.get("thinking") or ""
    tool_calls = reply.get("tool_calls") or []

    log_parts = [f"LLM Reply ({context}):"]

    # Reasoning first, it precedes the answer on the wire
    if thinking:
        log_parts.append(f"Thinking: {_truncate(thinking, truncate_length)}")

    if content:
        log_parts.append(f"Content: {_truncate(content, truncate_length)}")

    if tool_calls:
        log_parts.append(f"Tool calls: {len(tool_calls)}")
        for i, call in enumerate(tool_calls):
            log_parts.append(f"  [{i}] {call.function.name}")

    log_parts.append(f"Model: {reply.get('model', 'unknown')}")

    logger.info(" | ".join(log_parts))


def log_stream_frame(dialect: str, payload: str, truncate_length: int = 200) -> None:
    """Log one raw SSE payload when the ``chat.stream_frames`` feature is on."""
    if not should_log_feature("chat", "stream_frames"):
        return
    logger.debug("← LLM[%s]: frame %s", dialect, _truncate(payload, truncate_length))


def log_http_request(method: str, url: str, body: dict[str, Any] | None = None) -> None:
    """Log an outbound request when the ``http.http_requests`` feature is on."""
    if not should_log_feature("http", "http_requests"):
        return
    keys = ", ".join(sorted(body)) if body else "-"
    logger.info("→ HTTP: %s %s (body keys: %s)", method, url, keys)


def log_error_with_context(context: str, error: Exception) -> None:
    """Log errors with consistent formatting across the package."""
    logger.error("Error %s: %s", context, error)


def log_llm_request_start(request_id: str, provider: str, model: str) -> float:
    """Log the start of an LLM request and return start time."""
    start_time = time.monotonic()
    logger.info("→ LLM: request started: request_id=%s, provider=%s, model=%s", request_id, provider, model)
    return start_time


def log_llm_request_complete(request_id: str, start_time: float, success: bool = True) -> None:
    """Log the completion of an LLM request with timing."""
    elapsed_ms = (time.monotonic() - start_time) * 1000
    status = "completed" if success else "failed"
    logger.info("← LLM: request %s: request_id=%s, elapsed=%.2fms", status, request_id, elapsed_ms)
