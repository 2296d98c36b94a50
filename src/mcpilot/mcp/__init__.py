"""
MCP (Model Context Protocol) engine for mcpilot.

Outbound, mcpilot connects to any number of MCP servers and registers
their tools in the local tool registry. Inbound, it hosts the same
registry for external MCP clients.

Submodules:
- transport: Streamable HTTP and stdio transports
- protocol: JSON-RPC 2.0 messages and the MCP client
- capabilities: Capability model and protocol version negotiation
- config: Server configuration and mcp.json loading
- auth: Static header and OAuth 2.1 authentication
- integration: Server lifecycle and tool adapters
- host: Inbound MCP host
"""

# Import order matters: protocol.client depends on capabilities, which
# depends on protocol.errors.

# Transport layer
from mcpilot.mcp.transport import (
    ConnectionError,
    FallbackTransport,
    HTTPStatusError,
    SessionError,
    StdioTransport,
    StreamableHTTPTransport,
    TimeoutError,
    Transport,
    TransportConfig,
    TransportError,
)

# Protocol layer
from mcpilot.mcp.protocol import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    MCPClient,
    MCPError,
    ProtocolState,
    ProtocolStateMachine,
)

# Capabilities
from mcpilot.mcp.capabilities import (
    PROTOCOL_VERSION,
    SUPPORTED_VERSIONS,
    CapabilityNegotiator,
    ClientCapabilities,
    IncompatibleProtocolError,
    NegotiationResult,
    ServerCapabilities,
)

# Configuration
from mcpilot.mcp.config import AuthMode, McpServerConfig, TransportType, load_mcp_config
from mcpilot.mcp.transport.factory import create_auth_provider, create_transport

# Integration
from mcpilot.mcp.integration import McpServerManager, McpToolAdapter, ServerConnection, ServerState

# Host
from mcpilot.mcp.host import HostRequestRouter, McpHostConfig, McpHostServer

__all__ = [
    # Transport
    "Transport",
    "TransportConfig",
    "TransportError",
    "ConnectionError",
    "TimeoutError",
    "SessionError",
    "HTTPStatusError",
    "StreamableHTTPTransport",
    "FallbackTransport",
    "StdioTransport",
    "create_transport",
    "create_auth_provider",
    # Protocol
    "MCPClient",
    "MCPError",
    "ProtocolState",
    "ProtocolStateMachine",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCNotification",
    # Capabilities
    "ClientCapabilities",
    "ServerCapabilities",
    "CapabilityNegotiator",
    "NegotiationResult",
    "IncompatibleProtocolError",
    "PROTOCOL_VERSION",
    "SUPPORTED_VERSIONS",
    # Configuration
    "McpServerConfig",
    "TransportType",
    "AuthMode",
    "load_mcp_config",
    # Integration
    "McpServerManager",
    "McpToolAdapter",
    "ServerConnection",
    "ServerState",
    # Host
    "McpHostServer",
    "McpHostConfig",
    "HostRequestRouter",
]
