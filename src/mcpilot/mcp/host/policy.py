"""Which local tools the host exposes, and which need confirmation."""

from __future__ import annotations

from typing import Any

from mcpilot.mcp.host.config import McpHostConfig, MutationPolicy
from mcpilot.tools.registry import ToolRegistry


class ToolExposurePolicy:
    """
    Tool filter parsed from a comma-separated list.

    ``*`` exposes everything, ``name`` exposes one tool and ``-name``
    hides one. A hide always wins over an allow.
    """

    def __init__(self, config: McpHostConfig, registry: ToolRegistry):
        self.config = config
        self.registry = registry
        self.explicit_allow: frozenset[str]
        self.explicit_deny: frozenset[str]
        self.explicit_allow, self.explicit_deny = self.parse_filter(config.exposed_tools_filter)

    @staticmethod
    def parse_filter(raw: str | None) -> tuple[frozenset[str], frozenset[str]]:
        allow: set[str] = set()
        deny: set[str] = set()
        for token in (raw or "").split(","):
            token = token.strip()
            if not token:
                continue
            if token.startswith("-"):
                deny.add(token[1:].strip())
            else:
                allow.add(token)
        return frozenset(allow), frozenset(deny)

    def is_exposed(self, tool_name: str | None) -> bool:
        if not tool_name or not tool_name.strip():
            return False
        if tool_name in self.explicit_deny:
            return False
        if "*" in self.explicit_allow:
            return True
        return tool_name in self.explicit_allow

    def requires_confirmation(self, tool_name: str, args: dict[str, Any] | None = None) -> bool:
        tool = self.registry.get_tool(tool_name)
        if tool is None:
            return True
        if tool.requires_confirmation:
            return True
        return self.is_destructive(tool_name)

    def is_destructive(self, tool_name: str) -> bool:
        tool = self.registry.get_tool(tool_name)
        if tool is None:
            return True
        if tool.is_destructive:
            return True
        return self.config.mutation_policy in (MutationPolicy.DENY, MutationPolicy.ASK)
