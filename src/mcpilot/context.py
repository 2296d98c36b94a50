"""Process-wide object graph, built once and passed explicitly."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from mcpilot.mcp.auth import InMemorySecretStore, OAuthService, SecretStore, TokenStore
from mcpilot.mcp.config import McpServerConfig, load_mcp_config
from mcpilot.mcp.host import HostConfigStore, McpHostServer
from mcpilot.mcp.integration import McpServerManager
from mcpilot.mcp.protocol.client import FallbackRequestHandler
from mcpilot.tools import PermissionManager, StaticPermissionManager, Tool, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ContextConfig:
    """Inputs for :meth:`McpContext.create`."""

    working_dir: Path | None = None
    """Workspace root. Also where the project ``.mcpilot/mcp.json`` is read from."""

    global_config: Path | None = None
    """Override for ``~/.mcpilot/mcp.json``."""

    host_config_path: Path | None = None
    """Override for ``~/.mcpilot/host.json``."""

    tools: list[Tool] = field(default_factory=list)
    """Static local tools."""

    start_host: bool = True
    """Whether :meth:`McpContext.start` also starts the inbound host."""


class McpContext:
    """
    Owns the registry, permission manager, secret store, server manager
    and host server, and the order they start and stop in.

    Nothing here is global: components receive their collaborators from
    this object, and tests build their own.
    """

    def __init__(
        self,
        config: ContextConfig,
        registry: ToolRegistry,
        permission_manager: PermissionManager,
        secret_store: SecretStore,
        token_store: TokenStore,
        oauth_service: OAuthService,
        server_manager: McpServerManager,
        host_config_store: HostConfigStore,
        host_server: McpHostServer,
    ):
        self.config = config
        self.registry = registry
        self.permission_manager = permission_manager
        self.secret_store = secret_store
        self.token_store = token_store
        self.oauth_service = oauth_service
        self.server_manager = server_manager
        self.host_config_store = host_config_store
        self.host_server = host_server

        self.server_configs: dict[str, McpServerConfig] = {}
        self._started = False
        self._lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        config: ContextConfig | None = None,
        permission_manager: PermissionManager | None = None,
        secret_store: SecretStore | None = None,
        request_handler: FallbackRequestHandler | None = None,
    ) -> McpContext:
        """
        Wire the default object graph.

        Args:
            config: Paths and static tools.
            permission_manager: Decides ASK calls. The default answers
                ASK, which the host treats as a denial.
            secret_store: Holds OAuth tokens and the host bearer token.
                Defaults to an in-memory store.
            request_handler: Fallback for server-initiated requests.
        """
        config = config or ContextConfig()
        registry = ToolRegistry(config.tools)
        permission_manager = permission_manager or StaticPermissionManager()
        secret_store = secret_store or InMemorySecretStore()
        token_store = TokenStore(secret_store)
        oauth_service = OAuthService()
        server_manager = McpServerManager(
            registry,
            token_store=token_store,
            oauth_service=oauth_service,
            request_handler=request_handler,
        )
        host_config_store = HostConfigStore(config.host_config_path, secret_store=secret_store)
        host_server = McpHostServer(
            host_config_store.load(),
            registry,
            permission_manager=permission_manager,
            config_store=host_config_store,
            workspace_root=config.working_dir,
            server_manager=server_manager,
        )
        return cls(
            config=config,
            registry=registry,
            permission_manager=permission_manager,
            secret_store=secret_store,
            token_store=token_store,
            oauth_service=oauth_service,
            server_manager=server_manager,
            host_config_store=host_config_store,
            host_server=host_server,
        )

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self, server_configs: Iterable[McpServerConfig] | None = None) -> None:
        """
        Start the enabled outbound servers, then the host.

        Args:
            server_configs: Servers to start. Loaded from ``mcp.json``
                files when None.
        """
        async with self._lock:
            if self._started:
                return
            if server_configs is None:
                self.server_configs = load_mcp_config(self.config.working_dir, self.config.global_config)
            else:
                self.server_configs = {c.id: c for c in server_configs}

            await self.server_manager.start_enabled_servers(self.server_configs.values())
            if self.config.start_host:
                await self.host_server.start()
            self._started = True
            logger.info(
                f"mcpilot context started: {len(self.server_manager.get_connections())} servers running, "
                f"{len(self.registry)} tools registered"
            )

    async def close(self) -> None:
        """Stop the host, then every outbound server."""
        async with self._lock:
            await self.host_server.stop()
            await self.server_manager.stop_all_servers()
            await self.oauth_service.aclose()
            self._started = False
            logger.info("mcpilot context closed")

    async def __aenter__(self) -> McpContext:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
