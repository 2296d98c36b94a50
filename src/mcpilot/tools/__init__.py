"""Local tools: the registry, the tool contract and permission decisions."""

from mcpilot.tools.base import Tool, ToolResult
from mcpilot.tools.permissions import (
    CallbackPermissionManager,
    PermissionDecision,
    PermissionManager,
    StaticPermissionManager,
)
from mcpilot.tools.registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "PermissionDecision",
    "PermissionManager",
    "StaticPermissionManager",
    "CallbackPermissionManager",
]
