"""Lifecycle of outbound MCP server connections."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from mcpilot.mcp.auth.oauth import OAuthService
from mcpilot.mcp.auth.token_store import TokenStore
from mcpilot.mcp.capabilities.negotiation import NegotiationResult
from mcpilot.mcp.config import McpServerConfig
from mcpilot.mcp.integration.tool_adapter import McpToolAdapter
from mcpilot.mcp.protocol.client import FallbackRequestHandler, MCPClient
from mcpilot.mcp.protocol.types import ToolDescriptor
from mcpilot.mcp.transport.base import Transport
from mcpilot.mcp.transport.factory import create_transport
from mcpilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

TransportFactory = Callable[[McpServerConfig], Transport]


class ServerState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    ERROR = "ERROR"


class McpServerListener:
    """Receives server lifecycle callbacks. Override what you need."""

    def on_server_state_changed(self, config: McpServerConfig, state: ServerState) -> None:
        pass

    def on_server_stopped(self, server_id: str) -> None:
        pass


@dataclass
class ServerConnection:
    """A running server: its client, transport and tool-change consumer."""

    config: McpServerConfig
    client: MCPClient
    transport: Transport
    watcher: asyncio.Task | None = field(default=None, repr=False)

    @property
    def server_id(self) -> str:
        return self.config.id

    @property
    def prefix(self) -> str:
        return self.config.tool_prefix

    @property
    def negotiation(self) -> NegotiationResult | None:
        return self.client.negotiation

    @property
    def tools(self) -> list[ToolDescriptor]:
        return self.client.tools


class McpServerManager:
    """
    Starts, tracks and stops outbound MCP servers.

    Each running server's tools are registered in the tool registry
    under the ``mcp_<server>_`` prefix and replaced as a group whenever
    the server reports a tool list change.

    Args:
        registry: Registry receiving the tool adapters.
        token_store: OAuth token storage for servers using OAuth2.
        oauth_service: Token endpoint client for refreshes.
        transport_factory: Builds a transport for a config. Defaults to
            :func:`create_transport`.
        request_handler: Fallback handler for server-initiated requests.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        token_store: TokenStore | None = None,
        oauth_service: OAuthService | None = None,
        transport_factory: TransportFactory | None = None,
        request_handler: FallbackRequestHandler | None = None,
    ):
        self.registry = registry
        self.token_store = token_store
        self.oauth_service = oauth_service
        self._transport_factory = transport_factory or self._default_transport
        self.request_handler = request_handler

        self._connections: dict[str, ServerConnection] = {}
        self._states: dict[str, ServerState] = {}
        self._errors: dict[str, str] = {}
        self._starting: dict[str, asyncio.Task[MCPClient | None]] = {}
        # tool prefix -> id of the server holding it
        self._prefix_owners: dict[str, str] = {}
        self._listeners: list[McpServerListener] = []

    def _default_transport(self, config: McpServerConfig) -> Transport:
        return create_transport(config, self.token_store, self.oauth_service)

    async def start_enabled_servers(self, configs: Iterable[McpServerConfig]) -> dict[str, MCPClient | None]:
        """Start every enabled server concurrently."""
        enabled = [c for c in configs if c.enabled]
        logger.info(f"Starting {len(enabled)} enabled MCP servers")
        clients = await asyncio.gather(*(self.start_server(c) for c in enabled))
        return {config.id: client for config, client in zip(enabled, clients)}

    async def start_server(self, config: McpServerConfig) -> MCPClient | None:
        """
        Start a server, or join a start already in progress.

        Returns:
            The ready client, or None when the start failed. The failure
            is available from :meth:`get_server_error`.
        """
        server_id = config.id

        connection = self._connections.get(server_id)
        if connection is not None:
            logger.debug(f"MCP server '{config.name}' already running")
            return connection.client

        task = self._starting.get(server_id)
        if task is None:
            task = asyncio.create_task(self._start(config), name=f"mcp-start-{config.name}")
            self._starting[server_id] = task
            task.add_done_callback(lambda _t: self._starting.pop(server_id, None))
        else:
            logger.debug(f"MCP server '{config.name}' already starting, waiting")

        return await asyncio.shield(task)

    async def _start(self, config: McpServerConfig) -> MCPClient | None:
        server_id = config.id
        logger.info(f"Starting MCP server: {config.name} ({config.transport_type.value})")
        self._errors.pop(server_id, None)
        holder = self._prefix_owners.setdefault(config.tool_prefix, server_id)
        if holder != server_id:
            message = f"Tool prefix '{config.tool_prefix}' is already used by MCP server '{holder}'"
            logger.error(f"Failed to start MCP server '{config.name}': {message}")
            self._errors[server_id] = message
            self._set_state(config, ServerState.ERROR)
            return None

        self._set_state(config, ServerState.STARTING)

        client: MCPClient | None = None
        try:
            transport = self._transport_factory(config)
            client = MCPClient(
                transport,
                name=config.name,
                preferred_version=config.preferred_protocol_version,
                supported_versions=config.supported_protocol_versions,
                request_timeout=config.request_timeout,
                request_handler=self.request_handler,
            )
            await asyncio.wait_for(client.connect(), timeout=config.connection_timeout)
            await client.initialize()

            connection = ServerConnection(config=config, client=client, transport=transport)
            self._register_tools(connection, client.tools)
            connection.watcher = asyncio.create_task(
                self._watch_tool_changes(connection),
                name=f"mcp-tools-{config.name}",
            )
            self._connections[server_id] = connection
        except asyncio.CancelledError:
            if client is not None:
                await self._close_client(client)
            self.registry.unregister_tools_by_prefix(config.tool_prefix, owner=server_id)
            self._release_prefix(config)
            self._set_state(config, ServerState.STOPPED)
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to start MCP server '{config.name}': {message}")
            self._errors[server_id] = message
            self._set_state(config, ServerState.ERROR)
            if client is not None:
                await self._close_client(client)
            self.registry.unregister_tools_by_prefix(config.tool_prefix, owner=server_id)
            self._release_prefix(config)
            return None

        self._set_state(config, ServerState.RUNNING)
        logger.info(f"MCP server '{config.name}' started with {len(client.tools)} tools")
        return client

    def _register_tools(self, connection: ServerConnection, tools: list[ToolDescriptor]) -> None:
        adapters = [McpToolAdapter(connection.client, tool, connection.config.name) for tool in tools]
        count = self.registry.replace_tools_by_prefix(connection.prefix, adapters, owner=connection.server_id)
        logger.debug(f"Registered {count} tools for MCP server '{connection.config.name}'")

    async def _watch_tool_changes(self, connection: ServerConnection) -> None:
        while True:
            tools = await connection.client.tool_changes.get()
            logger.info(f"Re-registering tools for '{connection.config.name}' after list_changed")
            self._register_tools(connection, tools)

    async def stop_server(self, server_id: str) -> bool:
        """
        Stop a server and remove its tools.

        Returns:
            True if a running or starting server was stopped.
        """
        starting = self._starting.pop(server_id, None)
        if starting is not None and not starting.done():
            starting.cancel()
            await asyncio.gather(starting, return_exceptions=True)

        connection = self._connections.pop(server_id, None)
        if connection is None:
            if starting is not None:
                self._states[server_id] = ServerState.STOPPED
            return starting is not None

        if connection.watcher is not None:
            connection.watcher.cancel()
            await asyncio.gather(connection.watcher, return_exceptions=True)

        self.registry.unregister_tools_by_prefix(connection.prefix, owner=server_id)
        await self._close_client(connection.client)
        self._release_prefix(connection.config)

        self._errors.pop(server_id, None)
        self._set_state(connection.config, ServerState.STOPPED)
        logger.info(f"MCP server stopped: {connection.config.name}")
        for listener in list(self._listeners):
            try:
                listener.on_server_stopped(server_id)
            except Exception as e:
                logger.warning(f"MCP server listener failed: {e}")
        return True

    async def stop_all_servers(self) -> None:
        """Stop every server. A failure on one does not prevent the others."""
        for server_id in list({*self._connections, *self._starting}):
            try:
                await self.stop_server(server_id)
            except Exception as e:
                logger.error(f"Error stopping MCP server {server_id}: {e}")

    def _release_prefix(self, config: McpServerConfig) -> None:
        if self._prefix_owners.get(config.tool_prefix) == config.id:
            del self._prefix_owners[config.tool_prefix]

    @staticmethod
    async def _close_client(client: MCPClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing MCP client '{client.name}': {e}")

    def get_server_state(self, server_id: str) -> ServerState:
        return self._states.get(server_id, ServerState.STOPPED)

    def get_server_error(self, server_id: str) -> str | None:
        return self._errors.get(server_id)

    def get_client(self, server_id: str) -> MCPClient | None:
        connection = self._connections.get(server_id)
        return connection.client if connection else None

    def get_connection(self, server_id: str) -> ServerConnection | None:
        return self._connections.get(server_id)

    def get_running_clients(self) -> list[MCPClient]:
        return [c.client for c in self._connections.values()]

    def get_connections(self) -> list[ServerConnection]:
        return list(self._connections.values())

    def is_server_running(self, server_id: str) -> bool:
        return self.get_server_state(server_id) == ServerState.RUNNING

    def add_listener(self, listener: McpServerListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: McpServerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, config: McpServerConfig, state: ServerState) -> None:
        self._states[config.id] = state
        for listener in list(self._listeners):
            try:
                listener.on_server_state_changed(config, state)
            except Exception as e:
                logger.warning(f"MCP server listener failed: {e}")
