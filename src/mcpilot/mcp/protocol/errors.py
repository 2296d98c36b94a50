"""JSON-RPC error codes and the MCPError exception."""

from dataclasses import dataclass
from typing import Any

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server-defined range
REQUEST_TIMEOUT = -32001
REQUEST_CANCELLED = -32002


@dataclass
class MCPError(Exception):
    """
    A JSON-RPC error, raised on either side of a connection.

    Tool failures are not MCPErrors: they come back inside a successful
    result with ``isError`` set.
    """

    code: int
    message: str
    data: Any = None

    def __post_init__(self):
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    @classmethod
    def from_dict(cls, error: dict[str, Any]) -> "MCPError":
        return cls(error.get("code", INTERNAL_ERROR), error.get("message", "Unknown error"), error.get("data"))

    @classmethod
    def parse_error(cls) -> "MCPError":
        return cls(PARSE_ERROR, "Parse error")

    @classmethod
    def invalid_request(cls, message: str = "Invalid request") -> "MCPError":
        return cls(INVALID_REQUEST, message)

    @classmethod
    def method_not_found(cls, method: str) -> "MCPError":
        return cls(METHOD_NOT_FOUND, f"Method not found: {method}")

    @classmethod
    def invalid_params(cls, message: str = "Invalid params") -> "MCPError":
        return cls(INVALID_PARAMS, message)

    @classmethod
    def internal_error(cls, message: str = "Internal error") -> "MCPError":
        return cls(INTERNAL_ERROR, message)

    @classmethod
    def timeout(cls, seconds: float) -> "MCPError":
        return cls(REQUEST_TIMEOUT, f"Request timed out after {seconds}s", {"timeout": seconds})

    @classmethod
    def cancelled(cls, reason: str = "Request cancelled") -> "MCPError":
        return cls(REQUEST_CANCELLED, reason)
