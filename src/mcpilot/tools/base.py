"""Local tool contract shared by built-in tools and MCP adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

EMPTY_SCHEMA = '{"type": "object", "properties": {}}'


@dataclass
class ToolResult:
    """
    Result of a tool execution.

    Attributes:
        success: Whether the tool execution succeeded.
        content: Text output on success.
        error: Error message on failure.
        metadata: Additional context.
    """

    success: bool
    content: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, content: str, **metadata: Any) -> ToolResult:
        return cls(success=True, content=content, metadata=metadata)

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, metadata=metadata)

    @property
    def text(self) -> str:
        """Output as shown to a model or remote client."""
        if self.success:
            return self.content
        return self.error or ""


class Tool(ABC):
    """
    A tool the assistant can call.

    ``parameters_schema`` is the JSON Schema of the arguments, serialized
    as a string.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    def parameters_schema(self) -> str:
        return EMPTY_SCHEMA

    @property
    def is_destructive(self) -> bool:
        return False

    @property
    def requires_confirmation(self) -> bool:
        return self.is_destructive

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolResult:
        """Run the tool. Failures are returned, not raised."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
