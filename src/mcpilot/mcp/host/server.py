"""Inbound MCP host: composes policy, providers, router and HTTP transport."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from mcpilot.mcp.host.config import HostConfigStore, McpHostConfig
from mcpilot.mcp.host.oauth import HostOAuthService
from mcpilot.mcp.host.policy import ToolExposurePolicy
from mcpilot.mcp.host.providers import (
    PromptTemplateProvider,
    ResourceProvider,
    StateResourceProvider,
    WorkspaceResourceProvider,
)
from mcpilot.mcp.host.router import HostRequestRouter
from mcpilot.mcp.host.session import HostSession, HostSessionStore
from mcpilot.mcp.host.transport import HostHttpTransport
from mcpilot.mcp.integration.server_manager import McpServerManager
from mcpilot.tools.permissions import PermissionManager
from mcpilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class McpHostServer:
    """
    Serves the local tool registry to external MCP clients.

    Args:
        config: Host settings. Replaced by :meth:`reload_config`.
        registry: Tools to expose.
        permission_manager: Decides calls under the ASK mutation policy.
        config_store: Source for :meth:`reload_config`.
        workspace_root: Root of the workspace resources. No workspace
            resources are served when None.
        server_manager: Outbound servers reported in the state resource.
    """

    def __init__(
        self,
        config: McpHostConfig,
        registry: ToolRegistry,
        permission_manager: PermissionManager | None = None,
        config_store: HostConfigStore | None = None,
        workspace_root: Path | None = None,
        server_manager: McpServerManager | None = None,
    ):
        self.config = config
        self.registry = registry
        self.permission_manager = permission_manager
        self.config_store = config_store
        self.workspace_root = workspace_root
        self.server_manager = server_manager

        self.sessions = HostSessionStore()
        self.router: HostRequestRouter | None = None
        self.http_transport: HostHttpTransport | None = None
        self._running = False
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            await self._start()

    async def _start(self) -> None:
        if self._running:
            return
        if not self.config.enabled:
            logger.info("MCP host is disabled")
            return

        self.router = self._build_router()
        if self.config.http_enabled:
            oauth = HostOAuthService(
                self.config.bind_address,
                self.config.port,
                self.config.bearer_token,
                self.config.auth_mode,
            )
            transport = HostHttpTransport(
                self.config.bind_address,
                self.config.port,
                self.router,
                oauth,
                self.sessions,
            )
            await transport.start()
            self.http_transport = transport

        self._running = True
        logger.info(
            f"MCP host server started (http={self.config.http_enabled}, "
            f"auth={self.config.auth_mode.value}, mutations={self.config.mutation_policy.value})"
        )

    async def stop(self) -> None:
        async with self._lock:
            await self._stop()

    async def _stop(self) -> None:
        if not self._running:
            return
        if self.http_transport is not None:
            await self.http_transport.stop()
            self.http_transport = None
        self.sessions.clear()
        self._running = False
        logger.info("MCP host server stopped")

    async def reload_config(self) -> None:
        """Reload settings from the config store and restart."""
        async with self._lock:
            if self.config_store is not None:
                self.config = self.config_store.load()
            await self._stop()
            await self._start()

    def get_capabilities(self) -> dict[str, Any]:
        if self.router is None:
            return {}
        return self.router.capabilities_snapshot()

    def get_sessions(self) -> list[HostSession]:
        return self.sessions.all()

    def _build_router(self) -> HostRequestRouter:
        resource_providers: list[ResourceProvider] = []
        if self.workspace_root is not None:
            resource_providers.append(WorkspaceResourceProvider(self.workspace_root))
        resource_providers.append(StateResourceProvider(self._state_snapshot))

        return HostRequestRouter(
            registry=self.registry,
            exposure_policy=ToolExposurePolicy(self.config, self.registry),
            resource_providers=resource_providers,
            prompt_providers=[PromptTemplateProvider()],
            mutation_policy=self.config.mutation_policy,
            permission_manager=self.permission_manager,
        )

    def _state_snapshot(self, session: HostSession) -> dict[str, Any]:
        servers = []
        if self.server_manager is not None:
            for connection in self.server_manager.get_connections():
                negotiation = connection.negotiation
                servers.append(
                    {
                        "id": connection.server_id,
                        "name": connection.config.name,
                        "state": self.server_manager.get_server_state(connection.server_id).value,
                        "protocolVersion": negotiation.protocol_version if negotiation else None,
                        "tools": len(connection.tools),
                    }
                )
        return {
            "session": session.to_dict(),
            "sessions": len(self.sessions),
            "mutationPolicy": self.config.mutation_policy.value,
            "exposedTools": [t for t in self.registry.get_tool_names() if self.router.exposure_policy.is_exposed(t)]
            if self.router
            else [],
            "servers": servers,
        }
