"""
Inbound MCP host.

Serves the local tool registry, workspace resources and prompt templates
to external MCP clients over Streamable HTTP, guarded by bearer/OAuth
authentication, a tool exposure filter and a mutation policy.
"""

from mcpilot.mcp.host.config import (
    HostAuthMode,
    HostConfigStore,
    McpHostConfig,
    MutationPolicy,
    generate_token,
)
from mcpilot.mcp.host.session import HostSession, HostSessionStore
from mcpilot.mcp.host.policy import ToolExposurePolicy
from mcpilot.mcp.host.providers import (
    PromptProvider,
    PromptTemplate,
    PromptTemplateProvider,
    ResourceProvider,
    StateResourceProvider,
    WorkspaceResourceProvider,
)
from mcpilot.mcp.host.router import HostRequestRouter, parse_schema
from mcpilot.mcp.host.oauth import HostOAuthService, OAuthResponse
from mcpilot.mcp.host.transport import HostHttpTransport, create_app
from mcpilot.mcp.host.server import McpHostServer

__all__ = [
    "HostAuthMode",
    "HostConfigStore",
    "McpHostConfig",
    "MutationPolicy",
    "generate_token",
    "HostSession",
    "HostSessionStore",
    "ToolExposurePolicy",
    "ResourceProvider",
    "PromptProvider",
    "WorkspaceResourceProvider",
    "StateResourceProvider",
    "PromptTemplate",
    "PromptTemplateProvider",
    "HostRequestRouter",
    "parse_schema",
    "HostOAuthService",
    "OAuthResponse",
    "HostHttpTransport",
    "create_app",
    "McpHostServer",
]
