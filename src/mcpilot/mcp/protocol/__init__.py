"""
MCP Protocol Layer.

JSON-RPC 2.0 envelopes, MCP content types, the connection state machine
and the outbound client.
"""

from mcpilot.mcp.protocol.messages import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ProtocolMessage,
    parse_message,
)
from mcpilot.mcp.protocol.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    MCPError,
)
from mcpilot.mcp.protocol.state import InvalidStateTransition, ProtocolState, ProtocolStateMachine
from mcpilot.mcp.protocol.types import (
    Content,
    ImageContent,
    PromptDescriptor,
    PromptMessage,
    PromptResult,
    ResourceContent,
    ResourceDescriptor,
    ResourceReadResult,
    TextContent,
    ToolCallResult,
    ToolDescriptor,
    parse_content,
)
from mcpilot.mcp.protocol.client import IDEMPOTENT_METHODS, MCPClient

__all__ = [
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "ProtocolMessage",
    "parse_message",
    "MCPError",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "ProtocolState",
    "ProtocolStateMachine",
    "InvalidStateTransition",
    "Content",
    "TextContent",
    "ImageContent",
    "ResourceContent",
    "parse_content",
    "ToolDescriptor",
    "ResourceDescriptor",
    "PromptDescriptor",
    "PromptMessage",
    "PromptResult",
    "ToolCallResult",
    "ResourceReadResult",
    "MCPClient",
    "IDEMPOTENT_METHODS",
]
