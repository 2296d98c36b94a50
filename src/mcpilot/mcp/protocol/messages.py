"""JSON-RPC 2.0 envelopes shared by the outbound client and the inbound host."""

from dataclasses import dataclass
from typing import Any

from mcpilot.mcp.protocol.errors import MCPError

JSONRPC_VERSION = "2.0"

RequestId = str | int


@dataclass
class JSONRPCRequest:
    method: str
    id: RequestId
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JSONRPCNotification:
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JSONRPCResponse:
    """A reply carrying either ``result`` or ``error``. A missing result serializes as ``{}``."""

    id: RequestId | None
    result: Any = None
    error: MCPError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, id: RequestId | None, result: Any = None) -> "JSONRPCResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: RequestId | None, error: MCPError) -> "JSONRPCResponse":
        return cls(id=id, error=error)

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        else:
            message["result"] = {} if self.result is None else self.result
        return message


ProtocolMessage = JSONRPCRequest | JSONRPCResponse | JSONRPCNotification


def parse_message(data: Any) -> ProtocolMessage:
    """
    Classify a decoded JSON-RPC envelope.

    A string ``method`` with a non-null ``id`` is a request, without one a
    notification. ``result`` or ``error`` next to an ``id`` (which may be
    null) is a response. Non-object ``params`` are dropped.

    Raises:
        ValueError: If the envelope fits none of these shapes.
    """
    if not isinstance(data, dict):
        raise ValueError("JSON-RPC message must be an object")
    if data.get("jsonrpc", JSONRPC_VERSION) != JSONRPC_VERSION:
        raise ValueError("Invalid JSON-RPC version")

    method = data.get("method")
    params = data.get("params") if isinstance(data.get("params"), dict) else None
    if isinstance(method, str):
        if data.get("id") is not None:
            return JSONRPCRequest(method=method, id=data["id"], params=params)
        return JSONRPCNotification(method=method, params=params)

    if "result" in data and "error" in data:
        raise ValueError("Response carries both result and error")
    if ("result" in data or "error" in data) and "id" in data:
        error = data.get("error")
        return JSONRPCResponse(
            id=data["id"],
            result=data.get("result"),
            error=MCPError.from_dict(error) if isinstance(error, dict) else None,
        )
    raise ValueError("Cannot determine message type")
