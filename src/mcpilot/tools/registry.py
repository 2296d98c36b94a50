"""Registry of local tools."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from mcpilot.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Thread-safe map of tool name to tool.

    Static tools are registered once at startup. Dynamic tools (MCP
    adapters) come and go in groups that share a name prefix, and a
    group is swapped in a single critical section so readers never see
    a half-updated set.

    Each dynamic tool records an owner, normally the id of the MCP server
    that contributed it. Group operations given an owner only touch that
    owner's tools, so ``mcp_foo_`` never reaches into ``mcp_foo_bar_``.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._lock = threading.RLock()
        self._tools: dict[str, Tool] = {}
        # dynamic tool name -> owner
        self._dynamic: dict[str, str | None] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a static tool.

        Raises:
            ValueError: If a tool with the same name exists.
        """
        with self._lock:
            if tool.name in self._tools:
                raise ValueError(f"Tool '{tool.name}' already registered")
            self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def register_dynamic_tool(self, tool: Tool, owner: str | None = None) -> None:
        """Register or replace a dynamic tool."""
        with self._lock:
            if tool.name in self._tools and tool.name not in self._dynamic:
                raise ValueError(f"Cannot replace static tool '{tool.name}'")
            self._tools[tool.name] = tool
            self._dynamic[tool.name] = owner

    def _group(self, prefix: str, owner: str | None) -> list[str]:
        return [
            name
            for name, name_owner in self._dynamic.items()
            if name.startswith(prefix) and (owner is None or name_owner == owner)
        ]

    def unregister_tools_by_prefix(self, prefix: str, owner: str | None = None) -> int:
        """
        Remove the dynamic tools whose name starts with ``prefix``.

        Args:
            prefix: Name prefix of the group.
            owner: Only remove tools registered by this owner. None
                removes every dynamic tool under the prefix.
        """
        with self._lock:
            names = self._group(prefix, owner)
            for name in names:
                del self._tools[name]
                del self._dynamic[name]
        if names:
            logger.debug(f"Unregistered {len(names)} tools with prefix {prefix}")
        return len(names)

    def replace_tools_by_prefix(self, prefix: str, tools: Iterable[Tool], owner: str | None = None) -> int:
        """
        Atomically replace the dynamic tools under ``prefix``.

        Names already held by a static tool or by another owner are
        skipped with a warning.

        Args:
            prefix: Name prefix owned by one MCP server.
            tools: New tools; each name must start with ``prefix``.
            owner: Owner recorded on the new tools and used to select the
                old ones.

        Returns:
            Number of tools registered.
        """
        new_tools = list(tools)
        for tool in new_tools:
            if not tool.name.startswith(prefix):
                raise ValueError(f"Tool '{tool.name}' does not match prefix '{prefix}'")

        with self._lock:
            for name in self._group(prefix, owner):
                del self._tools[name]
                del self._dynamic[name]
            count = 0
            for tool in new_tools:
                if tool.name in self._tools:
                    logger.warning(f"Skipping MCP tool '{tool.name}': name is already registered")
                    continue
                self._tools[tool.name] = tool
                self._dynamic[tool.name] = owner
                count += 1
        return count

    def get_tool(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def get_all_tools(self) -> list[Tool]:
        """All tools, sorted by name."""
        with self._lock:
            return [self._tools[name] for name in sorted(self._tools)]

    def get_tool_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tools)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)
