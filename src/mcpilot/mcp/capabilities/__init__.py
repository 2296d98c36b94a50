"""
MCP Capability Negotiation.

Handles the initialization handshake between client and server,
exchanging capability declarations.
"""

from mcpilot.mcp.capabilities.client import (
    ClientCapabilities,
    ClientInfo,
    RootsCapability,
)
from mcpilot.mcp.capabilities.negotiation import (
    PROTOCOL_VERSION,
    SUPPORTED_VERSIONS,
    CapabilityNegotiator,
    IncompatibleProtocolError,
    NegotiationAttempt,
    NegotiationResult,
    ServerInfo,
    candidate_versions,
)
from mcpilot.mcp.capabilities.server import (
    HOST_SERVER_CAPABILITIES,
    ServerCapabilities,
    ServerPromptsCapability,
    ServerResourcesCapability,
    ServerToolsCapability,
)

__all__ = [
    "ClientCapabilities",
    "ClientInfo",
    "RootsCapability",
    "ServerCapabilities",
    "ServerToolsCapability",
    "ServerResourcesCapability",
    "ServerPromptsCapability",
    "HOST_SERVER_CAPABILITIES",
    "CapabilityNegotiator",
    "NegotiationAttempt",
    "NegotiationResult",
    "ServerInfo",
    "IncompatibleProtocolError",
    "candidate_versions",
    "PROTOCOL_VERSION",
    "SUPPORTED_VERSIONS",
]
