"""Permission decisions for tool execution."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PermissionDecision(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    ASK = "ASK"


class PermissionManager(ABC):
    """Decides whether a tool call may proceed."""

    @abstractmethod
    async def check(self, tool_name: str, action: str, context: dict[str, Any]) -> PermissionDecision:
        """
        Args:
            tool_name: Tool being called.
            action: Caller kind, e.g. ``mcp_host_call``.
            context: Call arguments.
        """


class StaticPermissionManager(PermissionManager):
    """Same decision for every call, with optional per-tool overrides."""

    def __init__(
        self,
        default: PermissionDecision = PermissionDecision.ASK,
        overrides: dict[str, PermissionDecision] | None = None,
    ):
        self.default = default
        self.overrides = dict(overrides or {})

    async def check(self, tool_name: str, action: str, context: dict[str, Any]) -> PermissionDecision:
        return self.overrides.get(tool_name, self.default)


PermissionCallback = Callable[[str, str, dict[str, Any]], Awaitable[bool]]


class CallbackPermissionManager(PermissionManager):
    """
    Delegates the decision to an async callback, e.g. a user prompt.

    A True answer allows the call; False or a failing callback denies it.
    """

    def __init__(self, callback: PermissionCallback):
        self._callback = callback

    async def check(self, tool_name: str, action: str, context: dict[str, Any]) -> PermissionDecision:
        try:
            approved = await self._callback(tool_name, action, context)
        except Exception as e:
            logger.warning(f"Permission callback failed for {tool_name}: {e}")
            return PermissionDecision.DENY
        return PermissionDecision.ALLOW if approved else PermissionDecision.DENY
