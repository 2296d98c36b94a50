"""In-process test doubles: a scriptable transport, an MCP server and local tools."""

import asyncio
from typing import Any, Callable

from mcpilot.lib import oj
from mcpilot.mcp.protocol.errors import MCPError
from mcpilot.mcp.transport.base import Transport
from mcpilot.tools.base import Tool, ToolResult

ECHO_SCHEMA = '{"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]}'


class FakeTransport(Transport):
    """
    Transport whose requests are answered by a plain callable.

    ``handler`` receives each sent envelope and returns the inline
    response, or None. Server-pushed messages are injected with
    :meth:`push`. Exceptions queued in ``failures`` are raised by the
    next sends, one per send. ``delays`` holds seconds to wait before
    answering, per method.
    """

    def __init__(self, handler: Callable[[dict], dict | None] | None = None):
        super().__init__()
        self.handler = handler or (lambda message: None)
        self.sent: list[dict] = []
        self.notifications: list[dict] = []
        self.failures: list[Exception] = []
        self.delays: dict[str, float] = {}
        self.session_inits = 0
        self.connect_error: Exception | None = None
        self.shutdowns = 0
        self._connected = False
        self._inbound: asyncio.Queue[dict | None] = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False
        self._inbound.put_nowait(None)

    async def initialize_session(self) -> None:
        self.session_inits += 1

    async def shutdown(self) -> None:
        self.shutdowns += 1
        await self.disconnect()

    async def send(self, message: dict) -> dict | None:
        self.sent.append(message)
        if self.failures:
            raise self.failures.pop(0)
        delay = self.delays.get(message.get("method"), 0)
        if delay:
            await asyncio.sleep(delay)
        return self.handler(message)

    async def send_notification(self, message: dict) -> None:
        self.notifications.append(message)

    def push(self, message: dict) -> None:
        self._inbound.put_nowait(message)

    async def receive(self):
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    def is_connected(self) -> bool:
        return self._connected

    def requests(self, method: str) -> list[dict]:
        return [m for m in self.sent if m.get("method") == method]


class FakeMcpServer:
    """
    Minimal MCP server logic for :class:`FakeTransport`.

    Answers the handshake, paginated ``tools/list``, ``tools/call``,
    ``resources/*``, ``prompts/list`` and ``ping``. Client responses to
    server-initiated requests are collected in ``client_responses``.
    """

    def __init__(
        self,
        tools: list[dict[str, Any]] | None = None,
        accepted_versions: list[str] | None = None,
        capabilities: dict[str, Any] | None = None,
        page_size: int | None = None,
    ):
        self.tools = list(tools) if tools is not None else [
            {"name": "echo", "description": "Echo text", "inputSchema": oj.loads(ECHO_SCHEMA)},
        ]
        self.accepted_versions = accepted_versions
        self.answer_version: str | None = None
        self.capabilities = capabilities if capabilities is not None else {"tools": {"listChanged": True}}
        self.page_size = page_size
        self.tool_results: dict[str, dict[str, Any]] = {}
        self.resources: dict[str, dict[str, Any]] = {}
        self.requests: list[dict] = []
        self.client_responses: list[dict] = []

    def __call__(self, message: dict) -> dict | None:
        if "method" not in message:
            self.client_responses.append(message)
            return None
        self.requests.append(message)
        try:
            result = self.handle(message["method"], message.get("params") or {})
        except MCPError as e:
            return {"jsonrpc": "2.0", "id": message["id"], "error": e.to_dict()}
        return {"jsonrpc": "2.0", "id": message["id"], "result": result}

    def handle(self, method: str, params: dict[str, Any]) -> Any:
        match method:
            case "initialize":
                requested = params.get("protocolVersion")
                if self.accepted_versions is not None and requested not in self.accepted_versions:
                    raise MCPError.invalid_params(f"Unsupported protocol version: {requested}")
                return {
                    "protocolVersion": self.answer_version or requested,
                    "capabilities": self.capabilities,
                    "serverInfo": {"name": "fake", "version": "0.1"},
                }
            case "tools/list":
                return self._page(self.tools, "tools", params.get("cursor"))
            case "tools/call":
                name = params["name"]
                if name in self.tool_results:
                    return self.tool_results[name]
                arguments = oj.dumps(params.get("arguments") or {})
                return {"content": [{"type": "text", "text": f"{name}:{arguments}"}]}
            case "resources/list":
                return {"resources": [{"uri": uri, "name": uri} for uri in self.resources]}
            case "resources/read":
                uri = params.get("uri")
                if uri not in self.resources:
                    raise MCPError.invalid_params(f"Unknown resource URI: {uri}")
                return self.resources[uri]
            case "prompts/list":
                return {"prompts": []}
            case "ping":
                return {}
            case _:
                raise MCPError.method_not_found(method)

    def _page(self, items: list[dict], key: str, cursor: str | None) -> dict[str, Any]:
        if not self.page_size:
            return {key: list(items)}
        start = int(cursor or 0)
        end = start + self.page_size
        page: dict[str, Any] = {key: items[start:end]}
        if end < len(items):
            page["nextCursor"] = str(end)
        return page

    def calls(self, method: str) -> list[dict]:
        return [r for r in self.requests if r["method"] == method]


class EchoTool(Tool):
    name = "echo"
    description = "Echo the text argument"
    parameters_schema = ECHO_SCHEMA

    def __init__(self):
        self.calls: list[dict[str, Any]] = []

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        self.calls.append(args)
        return ToolResult.ok(str(args.get("text", "")))


class StaticTool(Tool):
    """Tool with a configurable name that always returns the same output."""

    def __init__(self, name: str, output: str = "ok", destructive: bool = False, schema: str | None = None):
        self._name = name
        self._output = output
        self._destructive = destructive
        self._schema = schema

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"Static tool {self._name}"

    @property
    def parameters_schema(self) -> str:
        return self._schema if self._schema is not None else super().parameters_schema

    @property
    def is_destructive(self) -> bool:
        return self._destructive

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        return ToolResult.ok(self._output)


class SlowTool(Tool):
    name = "slow"
    description = "Sleeps before answering"

    def __init__(self, delay: float = 5.0):
        self.delay = delay

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        await asyncio.sleep(self.delay)
        return ToolResult.ok("done")


class FailingTool(Tool):
    name = "explode"
    description = "Always raises"

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        raise RuntimeError("boom")


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until ``predicate`` holds, yielding to background tasks in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
