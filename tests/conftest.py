"""Pytest configuration and fixtures."""

import pytest

from fakes import EchoTool, FakeMcpServer, FakeTransport
from mcpilot.mcp.host.session import HostSession
from mcpilot.tools.registry import ToolRegistry

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def fake_server():
    """Scriptable MCP server answering through a FakeTransport."""
    return FakeMcpServer()


@pytest.fixture
def fake_transport(fake_server):
    return FakeTransport(fake_server)


@pytest.fixture
def registry():
    """Registry holding a single echo tool."""
    return ToolRegistry([EchoTool()])


@pytest.fixture
def session():
    return HostSession()
