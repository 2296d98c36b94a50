"""Tests for wiring and lifecycle of the process-wide context."""

import pytest

from fakes import EchoTool
from mcpilot.context import ContextConfig, McpContext
from mcpilot.lib import oj
from mcpilot.mcp.config import McpServerConfig
from mcpilot.mcp.integration import ServerState
from mcpilot.tools import PermissionDecision, StaticPermissionManager


def _context(tmp_path, **kwargs):
    host_config = tmp_path / "host.json"
    host_config.write_text(oj.dumps({"httpEnabled": False, "mutationPolicy": "ASK"}))
    config = ContextConfig(
        working_dir=tmp_path,
        global_config=tmp_path / "global-mcp.json",
        host_config_path=host_config,
        tools=[EchoTool()],
        **kwargs,
    )
    return McpContext.create(config)


class TestMcpContext:
    """Tests for McpContext.create, start and close."""

    def test_create_wires_shared_collaborators(self, tmp_path):
        context = _context(tmp_path)

        assert context.registry.get_tool_names() == ["echo"]
        assert context.host_server.registry is context.registry
        assert context.server_manager.registry is context.registry
        assert context.host_server.permission_manager is context.permission_manager
        assert isinstance(context.permission_manager, StaticPermissionManager)
        assert context.permission_manager.default == PermissionDecision.ASK
        assert context.host_server.config.mutation_policy.value == "ASK"
        assert not context.is_started

    def test_host_token_lives_in_secret_store(self, tmp_path):
        context = _context(tmp_path)
        assert context.secret_store.read("mcp.host.http.bearerToken") == context.host_server.config.bearer_token

    @pytest.mark.asyncio
    async def test_start_and_close(self, tmp_path):
        context = _context(tmp_path)

        await context.start(server_configs=[])

        assert context.is_started
        assert context.host_server.is_running
        assert context.server_configs == {}

        await context.close()

        assert not context.is_started
        assert not context.host_server.is_running

    @pytest.mark.asyncio
    async def test_start_without_host(self, tmp_path):
        context = _context(tmp_path, start_host=False)

        async with context:
            assert context.is_started
            assert not context.host_server.is_running

    @pytest.mark.asyncio
    async def test_start_reads_mcp_json(self, tmp_path):
        (tmp_path / "global-mcp.json").write_text(
            oj.dumps({"mcpServers": {"off": {"command": "never-run", "enabled": False}}})
        )
        context = _context(tmp_path, start_host=False)

        await context.start()

        assert list(context.server_configs) == ["off"]
        assert context.server_manager.get_connections() == []
        await context.close()

    @pytest.mark.asyncio
    async def test_failed_server_does_not_block_start(self, tmp_path):
        context = _context(tmp_path, start_host=False)
        broken = McpServerConfig(name="broken", id="broken", command="/nonexistent/mcp-server-binary")

        await context.start(server_configs=[broken])

        assert context.is_started
        assert context.server_manager.get_server_state("broken") == ServerState.ERROR
        await context.close()
