"""Expose a remote MCP tool as a local tool."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mcpilot.lib import oj
from mcpilot.mcp.config import sanitize_server_name
from mcpilot.mcp.protocol.types import (
    ImageContent,
    ResourceContent,
    TextContent,
    ToolCallResult,
    ToolDescriptor,
)
from mcpilot.tools.base import Tool, ToolResult

if TYPE_CHECKING:
    from mcpilot.mcp.protocol.client import MCPClient

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown MCP error"
DESTRUCTIVE_MARKERS = ("delete", "remove", "write", "create", "update", "modify")


def adapter_name(server_name: str, tool_name: str) -> str:
    return f"mcp_{sanitize_server_name(server_name)}_{tool_name}"


class McpToolAdapter(Tool):
    """
    Local tool backed by ``tools/call`` on a remote server.

    Output blocks are flattened to text in the order the server sent
    them. Resource blocks without inline text are read from the server
    and their text is placed where the block was.
    """

    def __init__(self, client: MCPClient, descriptor: ToolDescriptor, server_name: str | None = None):
        self.client = client
        self.descriptor = descriptor
        self.server_name = server_name or client.name

    @property
    def name(self) -> str:
        return adapter_name(self.server_name, self.descriptor.name)

    @property
    def description(self) -> str:
        return f"[MCP:{self.server_name}] {self.descriptor.description}"

    @property
    def parameters_schema(self) -> str:
        return oj.dumps(self.descriptor.input_schema)

    @property
    def is_destructive(self) -> bool:
        lowered = self.descriptor.name.lower()
        return any(marker in lowered for marker in DESTRUCTIVE_MARKERS)

    @property
    def requires_confirmation(self) -> bool:
        return False

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        try:
            result = await self.client.call_tool(self.descriptor.name, args)
            if result.is_error:
                return ToolResult.failure(self._error_text(result))
            return ToolResult.ok(await self._render(result))
        except Exception as e:
            logger.debug(f"MCP tool {self.name} failed: {e}")
            return ToolResult.failure(f"MCP tool error: {e}")

    @staticmethod
    def _error_text(result: ToolCallResult) -> str:
        for block in result.content:
            if isinstance(block, TextContent):
                return block.text
        return UNKNOWN_ERROR

    async def _render(self, result: ToolCallResult) -> str:
        parts: list[str] = []
        for block in result.content:
            match block:
                case TextContent(text=text):
                    parts.append(text)
                case ResourceContent(text=text) if text and text.strip():
                    parts.append(text)
                case ResourceContent(uri=uri) if uri.strip():
                    parts.append(await self._read_resource_text(uri))
                case ImageContent(mime_type=mime):
                    parts.append(f"[MCP image content omitted: {mime}]" if mime else "[MCP image content omitted]")
        return "\n".join(p for p in parts if p and p.strip()).strip()

    async def _read_resource_text(self, uri: str) -> str:
        try:
            resource = await self.client.read_resource(uri)
        except Exception as e:
            logger.debug(f"Reading MCP resource {uri} failed: {e}")
            return f"[MCP resource read failed] {uri}"

        if not resource.contents:
            return f"[MCP resource has no content] {uri}"
        texts = [item.text for item in resource.contents if item.text and item.text.strip()]
        if not texts:
            return f"[MCP resource fetched without text payload] {uri}"
        return "\n".join(texts)
