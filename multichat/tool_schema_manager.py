"""Tool Schema Manager

Bridges MCP tool metadata and the OpenAI-style tool definitions sent with chat
requests:
- Registers MCP-discovered tools per server
- Emits OpenAI-compatible tool definitions named ``mcp__<server>__<tool>``
- Maps a model's tool call back to the server and tool it names
- Renders MCP tool results as tool-role messages

Connecting to MCP servers and executing calls belongs to the caller; this
module only translates between the two shapes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp import McpError, types

from multichat.chat.models import Message, ToolCall, ToolDefinition, ToolFunctionDefinition

logger = logging.getLogger(__name__)

TOOL_NAME_PREFIX = "mcp"
TOOL_NAME_SEPARATOR = "__"


def build_tool_name(server: str, tool: str) -> str:
    return TOOL_NAME_SEPARATOR.join((TOOL_NAME_PREFIX, server, tool))


def parse_tool_name(name: str) -> tuple[str, str] | None:
    """Split ``mcp__<server>__<tool>`` into ``(server, tool)``; None for other names."""
    prefix, sep, rest = name.partition(TOOL_NAME_SEPARATOR)
    if prefix != TOOL_NAME_PREFIX or not sep:
        return None
    server, sep, tool = rest.partition(TOOL_NAME_SEPARATOR)
    if not server or not sep or not tool:
        return None
    return server, tool


def render_tool_result(result: types.CallToolResult) -> str:
    """Flatten MCP result content into the text of a tool-role message."""
    parts: list[str] = []
    for item in result.content:
        if isinstance(item, types.TextContent):
            parts.append(item.text)
        elif isinstance(item, types.ImageContent):
            parts.append(f"[image: {item.mimeType}]")
        elif isinstance(item, types.EmbeddedResource):
            resource = item.resource
            if isinstance(resource, types.TextResourceContents):
                parts.append(resource.text)
            else:
                parts.append(f"[resource: {resource.uri}]")
        else:
            parts.append(json.dumps(item.model_dump(mode="json"), ensure_ascii=False))

    text = "\n".join(parts)
    if result.isError:
        return f"Error: {text}" if text else "Error: tool execution failed"
    return text


class ToolInfo:
    """Information about a registered tool."""

    def __init__(self, server: str, tool: types.Tool):
        self.server = server
        self.tool = tool


class ToolSchemaManager:
    """
    Registry of MCP tools keyed by their namespaced tool name.

    Schemas are passed through as-is; validation is left to the MCP server.
    """

    def __init__(self) -> None:
        self._tool_registry: dict[str, ToolInfo] = {}

    def register_tools(self, server: str, tools: list[types.Tool]) -> None:
        """Register (or replace) all tools of one server."""
        self.unregister_server(server)
        for tool in tools:
            self._tool_registry[build_tool_name(server, tool.name)] = ToolInfo(server, tool)
        logger.info("Registered %d tools from server '%s'", len(tools), server)

    def unregister_server(self, server: str) -> None:
        for name in [name for name, info in self._tool_registry.items() if info.server == server]:
            del self._tool_registry[name]

    def _to_openai_tool(self, registry_name: str, tool: types.Tool) -> ToolDefinition:
        if not tool.inputSchema:
            raise ValueError(f"Tool {tool.name} has no input schema")

        return ToolDefinition(
            function=ToolFunctionDefinition(
                name=registry_name,
                description=tool.description or "",
                parameters=tool.inputSchema,
            )
        )

    def get_openai_tools(self) -> list[ToolDefinition]:
        """Build the tools list on demand from the current registry."""
        tools: list[ToolDefinition] = []
        for registry_name, info in self._tool_registry.items():
            try:
                tools.append(self._to_openai_tool(registry_name, info.tool))
            except ValueError as e:
                logger.error("Skipping tool '%s' due to schema error: %s", registry_name, e)
        return tools

    def get_tool_info(self, tool_name: str) -> ToolInfo:
        tool_info = self._tool_registry.get(tool_name)
        if not tool_info:
            raise McpError(
                error=types.ErrorData(
                    code=types.INVALID_PARAMS,
                    message=f"Tool '{tool_name}' not found",
                )
            )
        return tool_info

    def resolve_call(self, call: ToolCall) -> tuple[str, str, dict[str, Any]]:
        """
        Server, original tool name and decoded arguments for a model's tool call.

        Raises:
            McpError: unknown tool, or arguments that are not a JSON object.
        """
        info = self.get_tool_info(call.function.name)
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError as e:
            logger.error("Malformed JSON arguments for %s: %s", call.function.name, e)
            raise McpError(
                error=types.ErrorData(code=types.INVALID_PARAMS, message=f"Invalid arguments: {e}")
            ) from e
        if not isinstance(arguments, dict):
            raise McpError(
                error=types.ErrorData(code=types.INVALID_PARAMS, message="Tool arguments must be a JSON object")
            )
        return info.server, info.tool.name, arguments

    @staticmethod
    def tool_result_message(call: ToolCall, result: types.CallToolResult) -> Message:
        """Tool-role message answering ``call`` with the rendered ``result``."""
        return Message(
            role="tool",
            content=render_tool_result(result),
            tool_call_id=call.id,
            name=call.function.name,
        )
