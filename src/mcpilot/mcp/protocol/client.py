"""MCP protocol client implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from mcpilot.mcp.capabilities.client import ClientCapabilities, ClientInfo
from mcpilot.mcp.capabilities.negotiation import (
    PROTOCOL_VERSION,
    SUPPORTED_VERSIONS,
    CapabilityNegotiator,
    IncompatibleProtocolError,
    NegotiationResult,
)
from mcpilot.mcp.capabilities.server import ServerCapabilities
from mcpilot.mcp.protocol.errors import INTERNAL_ERROR, MCPError
from mcpilot.mcp.protocol.messages import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    parse_message,
)
from mcpilot.mcp.protocol.state import ProtocolState, ProtocolStateMachine
from mcpilot.mcp.protocol.types import (
    PromptDescriptor,
    PromptResult,
    ResourceDescriptor,
    ResourceReadResult,
    ToolCallResult,
    ToolDescriptor,
)
from mcpilot.mcp.transport.base import Transport, TransportError

logger = logging.getLogger(__name__)

# Type aliases for handlers
RequestHandler = Callable[[dict[str, Any] | None], Awaitable[Any]]
NotificationHandler = Callable[[dict[str, Any] | None], Awaitable[None]]
FallbackRequestHandler = Callable[[str, dict[str, Any] | None], Awaitable[Any]]

IDEMPOTENT_METHODS = frozenset(
    {
        "tools/list",
        "resources/list",
        "resources/read",
        "prompts/list",
        "prompts/get",
        "ping",
    }
)

TOOLS_LIST_CHANGED = "notifications/tools/list_changed"
RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"

# Guards against servers that hand out cursors forever
MAX_LIST_PAGES = 100


def is_session_failure(error: Exception) -> bool:
    """True when an error means the server forgot or rejected our session."""
    text = str(error).lower()
    return "session" in text or "404" in text


class MCPClient:
    """
    Outbound MCP client for one server.

    Handles JSON-RPC request/response correlation, the versioned
    initialize handshake, capability discovery, server-initiated requests
    and notifications, and snapshot refresh on ``list_changed``.

    Fresh tool lists produced by ``notifications/tools/list_changed`` are
    put on :attr:`tool_changes` for the owner to consume.

    Args:
        transport: Transport connected to the server.
        name: Server name, used in log lines.
        preferred_version: Protocol version tried first.
        supported_versions: Versions this client accepts, newest first.
        request_timeout: Default timeout for requests in seconds.
        request_handler: Fallback for server requests with no
            per-method handler. Receives method and params.
    """

    def __init__(
        self,
        transport: Transport,
        name: str = "mcp",
        preferred_version: str = PROTOCOL_VERSION,
        supported_versions: list[str] | None = None,
        request_timeout: float = 60.0,
        client_capabilities: ClientCapabilities | None = None,
        client_info: ClientInfo | None = None,
        request_handler: FallbackRequestHandler | None = None,
        max_pending_requests: int = 100,
    ):
        self.transport = transport
        self.name = name
        self.preferred_version = preferred_version
        self.supported_versions = list(supported_versions or SUPPORTED_VERSIONS)
        self.request_timeout = request_timeout
        self.client_capabilities = client_capabilities or ClientCapabilities()
        self.client_info = client_info or ClientInfo()
        self.request_handler = request_handler
        self.max_pending_requests = max_pending_requests

        self.tool_changes: asyncio.Queue[list[ToolDescriptor]] = asyncio.Queue()
        self.negotiation: NegotiationResult | None = None

        self._state = ProtocolStateMachine()
        self._pending_requests: dict[str, asyncio.Future[Any]] = {}
        self._request_handlers: dict[str, RequestHandler] = {"ping": self._handle_ping}
        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._receive_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._closing = False

        self._tools: list[ToolDescriptor] = []
        self._resources: list[ResourceDescriptor] = []
        self._prompts: list[PromptDescriptor] = []

    @property
    def state(self) -> ProtocolState:
        return self._state.state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def is_ready(self) -> bool:
        return self._state.is_ready

    @property
    def session_id(self) -> str | None:
        return self.transport.session_id

    @property
    def protocol_version(self) -> str | None:
        return self.negotiation.protocol_version if self.negotiation else None

    @property
    def server_capabilities(self) -> ServerCapabilities:
        if self.negotiation is None:
            return ServerCapabilities()
        return self.negotiation.server_capabilities

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools)

    @property
    def resources(self) -> list[ResourceDescriptor]:
        return list(self._resources)

    @property
    def prompts(self) -> list[PromptDescriptor]:
        return list(self._prompts)

    def on_state_change(self, callback: Callable[[ProtocolState, ProtocolState], None]) -> None:
        self._state.on_transition(callback)

    async def connect(self) -> None:
        """
        Connect transport and start message receiver.

        After connect(), the client is in INITIALIZING state.
        Call initialize() to complete handshake and reach READY state.
        """
        if self._state.state != ProtocolState.DISCONNECTED:
            raise MCPError(INTERNAL_ERROR, "Client already connected")

        self._closing = False
        self._state.transition(ProtocolState.CONNECTING)

        try:
            await self.transport.connect()
        except Exception as e:
            self._state.transition(ProtocolState.DISCONNECTED)
            raise MCPError(INTERNAL_ERROR, f"Connection failed: {e}") from e

        self._receive_task = asyncio.create_task(
            self._receive_loop(),
            name=f"mcp-receive-{self.name}",
        )
        self._state.transition(ProtocolState.INITIALIZING)

    async def initialize(self) -> NegotiationResult:
        """
        Run the handshake, then discover tools, resources and prompts.

        Returns:
            The negotiation result. The client is READY afterwards.

        Raises:
            IncompatibleProtocolError: If no candidate version was accepted.
        """
        if self._state.state != ProtocolState.INITIALIZING:
            raise MCPError(INTERNAL_ERROR, f"Cannot initialize in state {self._state.state}")

        await self.transport.initialize_session()

        negotiator = CapabilityNegotiator(
            client=self,
            preferred_version=self.preferred_version,
            supported_versions=self.supported_versions,
            client_capabilities=self.client_capabilities,
            client_info=self.client_info,
        )
        try:
            self.negotiation = await negotiator.negotiate(timeout=self.request_timeout)
        except IncompatibleProtocolError:
            self._state.transition(ProtocolState.DISCONNECTED)
            raise

        logger.info(
            f"MCP server '{self.name}' initialized with protocol {self.negotiation.protocol_version}, "
            f"capabilities={self.server_capabilities.get_available_features()}"
        )

        self._state.transition(ProtocolState.DISCOVERING)
        await self._discover()
        self._state.transition(ProtocolState.READY)
        return self.negotiation

    async def _discover(self) -> None:
        caps = self.server_capabilities
        jobs = []
        if caps.supports_tools():
            jobs.append(self.list_tools())
        if caps.supports_resources():
            jobs.append(self.list_resources())
        if caps.supports_prompts():
            jobs.append(self.list_prompts())
        if jobs:
            await asyncio.gather(*jobs)
        logger.info(
            f"MCP server '{self.name}' discovered {len(self._tools)} tools, "
            f"{len(self._resources)} resources, {len(self._prompts)} prompts"
        )

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send a request and wait for the result.

        Idempotent methods are re-sent once on a fresh session when the
        first attempt fails with a session error.

        Args:
            method: The RPC method name.
            params: Optional method parameters.
            timeout: Request timeout (defaults to self.request_timeout).

        Returns:
            The ``result`` member of the response.

        Raises:
            MCPError: On timeout or error response.
            TransportError: If the transport fails.
        """
        try:
            return await self._send_request(method, params, timeout)
        except TransportError as e:
            if method not in IDEMPOTENT_METHODS or not is_session_failure(e):
                raise
            logger.info(f"Retrying {method} on '{self.name}' with a new session: {e}")

        await self.transport.initialize_session()
        return await self._send_request(method, params, timeout)

    async def _send_request(
        self,
        method: str,
        params: dict[str, Any] | None,
        timeout: float | None,
    ) -> Any:
        if not self._state.is_connected:
            raise MCPError(INTERNAL_ERROR, "Client not connected")

        if len(self._pending_requests) >= self.max_pending_requests:
            raise MCPError(INTERNAL_ERROR, "Too many pending requests")

        request = JSONRPCRequest(method=method, id=self.transport.next_request_id(), params=params)
        key = str(request.id)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_requests[key] = future

        effective_timeout = timeout if timeout is not None else self.request_timeout

        try:
            immediate_response = await self.transport.send(request.to_dict())
            if immediate_response is not None:
                await self._handle_message(immediate_response)

            return await asyncio.wait_for(future, timeout=effective_timeout)
        except asyncio.TimeoutError:
            raise MCPError.timeout(effective_timeout)
        finally:
            self._pending_requests.pop(key, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (fire-and-forget)."""
        if not self._state.is_connected:
            raise MCPError(INTERNAL_ERROR, "Client not connected")

        notification = JSONRPCNotification(method=method, params=params)
        await self.transport.send_notification(notification.to_dict())

    async def _list_all(self, method: str, key: str) -> list[dict[str, Any]]:
        """Collect every page of a list method by following ``nextCursor``."""
        items: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(MAX_LIST_PAGES):
            result = await self.request(method, {"cursor": cursor} if cursor else None)
            result = result if isinstance(result, dict) else {}
            items.extend(item for item in result.get(key) or [] if isinstance(item, dict))
            cursor = result.get("nextCursor")
            if not cursor:
                break
        else:
            logger.warning(f"{method} on '{self.name}' exceeded {MAX_LIST_PAGES} pages, truncating")
        return items

    async def list_tools(self) -> list[ToolDescriptor]:
        items = await self._list_all("tools/list", "tools")
        self._tools = [ToolDescriptor.from_dict(item) for item in items if item.get("name")]
        return list(self._tools)

    async def list_resources(self) -> list[ResourceDescriptor]:
        items = await self._list_all("resources/list", "resources")
        self._resources = [ResourceDescriptor.from_dict(item) for item in items if item.get("uri")]
        return list(self._resources)

    async def list_prompts(self) -> list[PromptDescriptor]:
        items = await self._list_all("prompts/list", "prompts")
        self._prompts = [PromptDescriptor.from_dict(item) for item in items if item.get("name")]
        return list(self._prompts)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolCallResult:
        result = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        return ToolCallResult.from_dict(result if isinstance(result, dict) else {})

    async def read_resource(self, uri: str) -> ResourceReadResult:
        result = await self.request("resources/read", {"uri": uri})
        return ResourceReadResult.from_dict(result if isinstance(result, dict) else {})

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> PromptResult:
        params: dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = {k: str(v) for k, v in arguments.items()}
        result = await self.request("prompts/get", params)
        return PromptResult.from_dict(result if isinstance(result, dict) else {})

    async def ping(self) -> None:
        await self.request("ping")

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """
        Register handler for server-initiated requests.

        Args:
            method: The method name to handle.
            handler: Async function receiving params, returning result.
        """
        self._request_handlers[method] = handler

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """
        Register handler for server-initiated notifications.

        ``list_changed`` notifications also start a background refresh of
        the matching snapshot.
        """
        self._notification_handlers[method] = handler

    async def close(self) -> None:
        """Close connection and cleanup resources."""
        if self._closing:
            return
        self._closing = True

        tasks = [t for t in self._background_tasks if not t.done()]
        if self._receive_task is not None and not self._receive_task.done():
            tasks.append(self._receive_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._receive_task = None

        for future in list(self._pending_requests.values()):
            if not future.done():
                future.set_exception(MCPError.cancelled("Client closing"))
        self._pending_requests.clear()

        try:
            await self.transport.shutdown()
        except TransportError as e:
            logger.debug(f"Transport shutdown for '{self.name}' failed: {e}")

        self._state.force_state(ProtocolState.CLOSED)

    async def _receive_loop(self) -> None:
        """Background task processing incoming messages."""
        try:
            async for message in self.transport.receive():
                if self._closing:
                    break
                await self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Receive loop error on '{self.name}': {e}")
            if not self._closing:
                self._state.force_state(ProtocolState.DISCONNECTED)

    async def _handle_message(self, message: dict) -> None:
        """Route incoming message to appropriate handler."""
        try:
            parsed = parse_message(message)
        except ValueError as e:
            logger.warning(f"Unknown message type from '{self.name}': {e}")
            return

        try:
            match parsed:
                case JSONRPCRequest():
                    await self._handle_server_request(parsed)
                case JSONRPCResponse():
                    self._handle_response(parsed)
                case JSONRPCNotification():
                    await self._handle_notification(parsed)
        except Exception as e:
            logger.error(f"Error handling message from '{self.name}': {e}")

    def _handle_response(self, response: JSONRPCResponse) -> None:
        """Complete pending request future with response."""
        if response.id is None:
            logger.warning("Received response without id")
            return

        future = self._pending_requests.get(str(response.id))
        if future is None:
            logger.debug(f"No pending request for id: {response.id}")
            return
        if future.done():
            return

        if response.error is not None:
            future.set_exception(response.error)
        else:
            future.set_result(response.result)

    async def _handle_ping(self, params: dict[str, Any] | None) -> dict[str, Any]:
        return {}

    async def _handle_server_request(self, request: JSONRPCRequest) -> None:
        """Handle request from server, send response."""
        handler = self._request_handlers.get(request.method)

        try:
            if handler is not None:
                result = await handler(request.params)
            elif self.request_handler is not None:
                result = await self.request_handler(request.method, request.params)
            else:
                raise MCPError.method_not_found(request.method)
            response = JSONRPCResponse.success(id=request.id, result=result)
        except MCPError as e:
            response = JSONRPCResponse.failure(request.id, e)
        except Exception as e:
            logger.exception(f"Handler error for {request.method}")
            response = JSONRPCResponse.failure(request.id, MCPError(INTERNAL_ERROR, str(e)))

        await self.transport.send(response.to_dict())

    async def _handle_notification(self, notification: JSONRPCNotification) -> None:
        """Handle notification from server."""
        method = notification.method

        if method in (TOOLS_LIST_CHANGED, RESOURCES_LIST_CHANGED, PROMPTS_LIST_CHANGED):
            self._spawn(self._refresh(method), name=f"mcp-refresh-{self.name}")

        handler = self._notification_handlers.get(method)
        if handler is not None:
            try:
                await handler(notification.params)
            except Exception as e:
                logger.exception(f"Notification handler error for {method}: {e}")

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _refresh(self, method: str) -> None:
        """Re-list after a ``list_changed`` notification. Failures keep the old snapshot."""
        try:
            if method == TOOLS_LIST_CHANGED:
                tools = await self.list_tools()
                self.tool_changes.put_nowait(tools)
                logger.info(f"MCP server '{self.name}' tool list changed ({len(tools)} tools)")
            elif method == RESOURCES_LIST_CHANGED:
                await self.list_resources()
            else:
                await self.list_prompts()
        except (MCPError, TransportError) as e:
            logger.warning(f"Failed to refresh after {method} on '{self.name}': {e}")

    async def __aenter__(self) -> MCPClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
