"""
MCP Transport Layer.

Streamable HTTP (with legacy SSE mode) and stdio transports. The
config-driven factory lives in :mod:`mcpilot.mcp.transport.factory`.
"""

from mcpilot.mcp.transport.types import TransportConfig, TransportEvent, TransportEventType
from mcpilot.mcp.transport.base import (
    ConnectionError,
    HTTPStatusError,
    SessionError,
    TimeoutError,
    Transport,
    TransportError,
)
from mcpilot.mcp.transport.http import FallbackTransport, StreamableHTTPTransport
from mcpilot.mcp.transport.stdio import StdioTransport

__all__ = [
    "Transport",
    "TransportConfig",
    "TransportEvent",
    "TransportEventType",
    "TransportError",
    "ConnectionError",
    "TimeoutError",
    "SessionError",
    "HTTPStatusError",
    "StreamableHTTPTransport",
    "FallbackTransport",
    "StdioTransport",
]
