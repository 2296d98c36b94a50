"""
MCP Integration.

Bridges outbound MCP servers into the local tool registry.
"""

from mcpilot.mcp.integration.tool_adapter import McpToolAdapter, adapter_name
from mcpilot.mcp.integration.server_manager import (
    McpServerListener,
    McpServerManager,
    ServerConnection,
    ServerState,
)

__all__ = [
    "McpToolAdapter",
    "adapter_name",
    "McpServerManager",
    "McpServerListener",
    "ServerConnection",
    "ServerState",
]
