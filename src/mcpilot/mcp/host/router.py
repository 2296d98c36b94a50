"""JSON-RPC dispatch for the inbound MCP host."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from mcpilot import __version__
from mcpilot.lib import oj
from mcpilot.mcp.capabilities.negotiation import SUPPORTED_VERSIONS
from mcpilot.mcp.capabilities.server import HOST_SERVER_CAPABILITIES
from mcpilot.mcp.host.config import MutationPolicy
from mcpilot.mcp.host.policy import ToolExposurePolicy
from mcpilot.mcp.host.providers import PromptProvider, ResourceProvider
from mcpilot.mcp.host.session import HostSession
from mcpilot.mcp.protocol.errors import MCPError
from mcpilot.mcp.protocol.messages import JSONRPCResponse, RequestId
from mcpilot.mcp.protocol.types import ToolCallResult
from mcpilot.tools.base import ToolResult
from mcpilot.tools.permissions import PermissionDecision, PermissionManager
from mcpilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "mcpilot MCP Host"
SERVER_VERSION = "1.3.0"

TOOL_TIMEOUT_SECONDS = 120.0
PERMISSION_TIMEOUT_SECONDS = 5.0
PERMISSION_ACTION = "mcp_host_call"

# Methods that are fine before the client finished the handshake
_PRE_INIT_METHODS = frozenset({"initialize", "notifications/initialized", "ping"})


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_schema(schema: str | None) -> dict[str, Any]:
    """Decode a tool's schema string, falling back to an empty object schema."""
    if schema is None or not schema.strip():
        return {"type": "object", "properties": {}}
    try:
        parsed = oj.loads(schema)
    except oj.JSONDecodeError as e:
        return {"type": "object", "description": f"Schema parse error: {e}"}
    if not isinstance(parsed, dict):
        return {"type": "object", "description": "Schema parse error: schema is not an object"}
    return parsed


def negotiate_protocol(requested: str | None) -> str:
    if requested and requested in SUPPORTED_VERSIONS:
        return requested
    return SUPPORTED_VERSIONS[0]


class HostRequestRouter:
    """
    Answers MCP requests from external clients against the local tools.

    Tool-level failures (tool hidden, unknown or denied, execution
    failed) are successful responses with ``isError`` set. Missing
    parameters, unknown resources and unknown prompts are ``-32602``
    protocol errors.

    Args:
        registry: Local tools.
        exposure_policy: Which tools are visible.
        resource_providers: Consulted in order; the first match wins.
        prompt_providers: Consulted in order; the first match wins.
        mutation_policy: ALLOW runs tools, DENY refuses them, ASK
            consults ``permission_manager``.
        permission_manager: Decides ASK calls. Missing means deny.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        exposure_policy: ToolExposurePolicy,
        resource_providers: list[ResourceProvider] | None = None,
        prompt_providers: list[PromptProvider] | None = None,
        mutation_policy: MutationPolicy = MutationPolicy.ALLOW,
        permission_manager: PermissionManager | None = None,
        tool_timeout: float = TOOL_TIMEOUT_SECONDS,
        permission_timeout: float = PERMISSION_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.exposure_policy = exposure_policy
        self.resource_providers = list(resource_providers or [])
        self.prompt_providers = list(prompt_providers or [])
        self.mutation_policy = mutation_policy
        self.permission_manager = permission_manager
        self.tool_timeout = tool_timeout
        self.permission_timeout = permission_timeout

    def capabilities_snapshot(self) -> dict[str, Any]:
        return HOST_SERVER_CAPABILITIES.to_dict()

    async def route(self, message: dict[str, Any], session: HostSession) -> dict[str, Any] | None:
        """
        Handle one inbound message.

        Returns:
            The response envelope, or None for notifications.
        """
        request_id: RequestId | None = message.get("id") if isinstance(message, dict) else None
        method = message.get("method") if isinstance(message, dict) else None
        if not isinstance(method, str) or not method:
            return self._error(request_id, MCPError.invalid_request("Invalid request"))

        is_notification = request_id is None
        if not session.initialized and method not in _PRE_INIT_METHODS:
            logger.warning(f"MCP host received {method} before initialization (session={session.session_id})")

        params = _as_dict(message.get("params"))
        try:
            result = await self._dispatch(method, params, session)
        except MCPError as e:
            return None if is_notification else self._error(request_id, e)
        except Exception as e:
            logger.exception(f"MCP host request handling error for {method}")
            error = MCPError.internal_error(str(e) or "Internal error")
            return None if is_notification else self._error(request_id, error)

        if is_notification:
            return None
        return JSONRPCResponse.success(id=request_id, result=result).to_dict()

    async def _dispatch(self, method: str, params: dict[str, Any], session: HostSession) -> Any:
        match method:
            case "initialize":
                return self._initialize(params, session)
            case "notifications/initialized":
                session.initialized = True
                return {}
            case "tools/list":
                return {"tools": self._list_tools()}
            case "tools/call":
                return await self._call_tool(params, session)
            case "resources/list":
                return {"resources": self._list_resources(session)}
            case "resources/read":
                return self._read_resource(params, session)
            case "prompts/list":
                return {"prompts": [p.to_dict() for provider in self.prompt_providers for p in provider.list_prompts()]}
            case "prompts/get":
                return self._get_prompt(params)
            case "ping" | "shutdown":
                return {}
            case _ if method.startswith("notifications/"):
                logger.debug(f"Ignoring MCP notification {method}")
                return {}
            case _:
                raise MCPError.method_not_found(method)

    def _initialize(self, params: dict[str, Any], session: HostSession) -> dict[str, Any]:
        negotiated = negotiate_protocol(_as_str(params.get("protocolVersion")))
        client_info = _as_dict(params.get("clientInfo"))
        session.client_name = _as_str(client_info.get("name"))
        session.client_version = _as_str(client_info.get("version"))
        session.protocol_version = negotiated
        logger.info(f"MCP host session {session.session_id} initialized by {session.client_label} ({negotiated})")
        return {
            "protocolVersion": negotiated,
            "capabilities": HOST_SERVER_CAPABILITIES.to_dict(),
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            "instructions": f"mcpilot {__version__} workspace tools",
        }

    def _list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": parse_schema(tool.parameters_schema),
            }
            for tool in self.registry.get_all_tools()
            if self.exposure_policy.is_exposed(tool.name)
        ]

    async def _call_tool(self, params: dict[str, Any], session: HostSession) -> dict[str, Any]:
        tool_name = _as_str(params.get("name"))
        arguments = _as_dict(params.get("arguments"))
        if not tool_name or not tool_name.strip():
            raise MCPError.invalid_params("Missing required parameter: name")

        if not self.exposure_policy.is_exposed(tool_name):
            return ToolCallResult.error(f"Tool is not exposed: {tool_name}").to_dict()

        tool = self.registry.get_tool(tool_name)
        if tool is None:
            return ToolCallResult.error(f"Unknown tool: {tool_name}").to_dict()

        started = time.monotonic()
        decision = await self._resolve_decision(tool_name, arguments)
        if decision != PermissionDecision.ALLOW:
            self._log_call(session, tool_name, decision, False, started)
            return ToolCallResult.error(f"Tool execution denied by permission policy: {decision.value}").to_dict()

        try:
            result: ToolResult = await asyncio.wait_for(tool.execute(arguments), timeout=self.tool_timeout)
        except asyncio.TimeoutError:
            self._log_call(session, tool_name, decision, False, started)
            return ToolCallResult.error(f"Tool execution failed: timed out after {self.tool_timeout:g}s").to_dict()
        except Exception as e:
            self._log_call(session, tool_name, decision, False, started)
            return ToolCallResult.error(f"Tool execution failed: {e}").to_dict()

        self._log_call(session, tool_name, decision, result.success, started)
        return {"isError": not result.success, "content": [{"type": "text", "text": result.text}]}

    async def _resolve_decision(self, tool_name: str, arguments: dict[str, Any]) -> PermissionDecision:
        match self.mutation_policy:
            case MutationPolicy.ALLOW:
                return PermissionDecision.ALLOW
            case MutationPolicy.DENY:
                return PermissionDecision.DENY

        if self.permission_manager is None:
            return PermissionDecision.DENY
        try:
            return await asyncio.wait_for(
                self.permission_manager.check(tool_name, PERMISSION_ACTION, arguments),
                timeout=self.permission_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Permission decision for {tool_name} timed out, denying")
            return PermissionDecision.DENY
        except Exception as e:
            logger.warning(f"Permission check for {tool_name} failed, denying: {e}")
            return PermissionDecision.DENY

    @staticmethod
    def _log_call(
        session: HostSession,
        tool_name: str,
        decision: PermissionDecision,
        success: bool,
        started: float,
    ) -> None:
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"MCP host tool call client={session.client_name} tool={tool_name} "
            f"decision={decision.value} success={success} durationMs={duration_ms}"
        )

    def _list_resources(self, session: HostSession) -> list[dict[str, Any]]:
        return [r.to_dict() for provider in self.resource_providers for r in provider.list_resources(session)]

    def _read_resource(self, params: dict[str, Any], session: HostSession) -> dict[str, Any]:
        uri = _as_str(params.get("uri"))
        if not uri or not uri.strip():
            raise MCPError.invalid_params("Missing required parameter: uri")
        for provider in self.resource_providers:
            content = provider.read_resource(uri, session)
            if content is not None:
                return content.to_dict()
        raise MCPError.invalid_params(f"Unknown resource URI: {uri}")

    def _get_prompt(self, params: dict[str, Any]) -> dict[str, Any]:
        name = _as_str(params.get("name"))
        arguments = _as_dict(params.get("arguments"))
        if not name or not name.strip():
            raise MCPError.invalid_params("Missing required parameter: name")
        for provider in self.prompt_providers:
            result = provider.get_prompt(name, arguments)
            if result is not None:
                return result.to_dict()
        raise MCPError.invalid_params(f"Unknown prompt: {name}")

    @staticmethod
    def _error(request_id: RequestId | None, error: MCPError) -> dict[str, Any]:
        return JSONRPCResponse.failure(request_id, error).to_dict()
