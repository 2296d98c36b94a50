"""Streamable HTTP transport for remote MCP servers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator

import httpx

from mcpilot.lib import oj
from mcpilot.mcp.auth.base import AuthProvider, NoAuthProvider
from mcpilot.mcp.transport.base import (
    ConnectionError,
    HTTPStatusError,
    SessionError,
    TimeoutError,
    Transport,
    TransportError,
)
from mcpilot.mcp.transport.types import (
    TransportConfig,
    TransportEvent,
    TransportEventType,
)

logger = logging.getLogger(__name__)


class StreamableHTTPTransport(Transport):
    """
    MCP Streamable HTTP transport.

    Every message is an HTTP POST to the endpoint. The server answers
    with a JSON body, an SSE-framed body, or 202 Accepted. The session id
    the server hands out in ``Mcp-Session-Id`` is echoed on every later
    request; a 404 means the server dropped the session.

    Args:
        config: Endpoint and timeout configuration.
        auth_provider: Resolves auth headers per request.
        http_transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    MCP_SESSION_HEADER = "Mcp-Session-Id"

    def __init__(
        self,
        config: TransportConfig,
        auth_provider: AuthProvider | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        self.config = config
        self.auth_provider = auth_provider or NoAuthProvider()
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None
        self._session_id: str | None = None
        self._connected = False
        self._closing = False
        self._inbound: asyncio.Queue[dict] = asyncio.Queue()
        self._request_semaphore: asyncio.Semaphore | None = None

    async def connect(self) -> None:
        if self._connected:
            return

        self._emit_event(
            TransportEvent(
                type=TransportEventType.CONNECTING,
                timestamp=time.time(),
                data={"url": self.config.url},
            )
        )
        try:
            timeout = httpx.Timeout(
                connect=self.config.connect_timeout,
                read=self.config.timeout,
                write=self.config.timeout,
                pool=self.config.timeout,
            )
            # Full URL on every call: base_url would append a trailing slash
            self._client = httpx.AsyncClient(
                timeout=timeout,
                headers=self.config.headers,
                transport=self._http_transport,
            )
        except Exception as e:
            raise ConnectionError(f"Failed to initialize HTTP client: {e}", cause=e)

        self._request_semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self._connected = True
        self._closing = False
        logger.info(f"MCP HTTP transport connected: {self.config.url}")
        self._emit_event(TransportEvent(type=TransportEventType.CONNECTED, timestamp=time.time()))

    async def disconnect(self) -> None:
        if not self._connected and self._client is None:
            return

        self._closing = True
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        self._connected = False
        self._session_id = None
        self._emit_event(TransportEvent(type=TransportEventType.DISCONNECTED, timestamp=time.time()))

    async def initialize_session(self) -> None:
        """Drop the current session id so the next request opens a new one."""
        if self._session_id is not None:
            logger.debug(f"Discarding MCP session {self._session_id}")
        self._session_id = None
        if not self._connected:
            await self.connect()

    async def shutdown(self) -> None:
        """Terminate the server-side session with DELETE, then disconnect."""
        if self._client is not None and self._session_id:
            try:
                headers = await self._build_headers()
                await self._client.delete(self.config.url, headers=headers)
            except httpx.HTTPError as e:
                logger.debug(f"Session termination request failed: {e}")
        await self.disconnect()

    async def send(self, message: dict) -> dict | None:
        """
        POST a request or response.

        Returns:
            The response whose id matches ``message``; None if it will
            arrive later through :meth:`receive`.
        """
        messages = await self._post(message)
        expected_id = message.get("id") if "method" in message else None

        matched: dict | None = None
        for item in messages:
            if (
                matched is None
                and expected_id is not None
                and "method" not in item
                and item.get("id") == expected_id
            ):
                matched = item
            else:
                self._inbound.put_nowait(item)
        return matched

    async def send_notification(self, message: dict) -> None:
        for item in await self._post(message):
            self._inbound.put_nowait(item)

    async def _post(self, message: dict) -> list[dict]:
        if self._client is None or not self._connected:
            raise SessionError("Transport not connected")
        if self._closing:
            raise SessionError("Transport is closing")

        assert self._request_semaphore is not None
        async with self._request_semaphore:
            return await self._post_internal(message)

    async def _build_headers(self) -> dict[str, str]:
        accept = "text/event-stream" if self.config.legacy_sse else "application/json, text/event-stream"
        headers = {"Content-Type": "application/json", "Accept": accept}
        if self._session_id:
            headers[self.MCP_SESSION_HEADER] = self._session_id
        headers.update(await self.auth_provider.get_auth_headers())
        return headers

    async def _post_internal(self, message: dict) -> list[dict]:
        headers = await self._build_headers()
        self._emit_event(
            TransportEvent(
                type=TransportEventType.MESSAGE_SENT,
                timestamp=time.time(),
                data={"method": message.get("method"), "id": message.get("id")},
            )
        )

        try:
            response = await self._client.post(
                self.config.url,
                content=oj.dumpb(message),
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request timed out: {e}", cause=e)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", cause=e)

        new_session = response.headers.get(self.MCP_SESSION_HEADER)
        if new_session and new_session != self._session_id:
            self._session_id = new_session
            self._emit_event(
                TransportEvent(
                    type=TransportEventType.SESSION_ESTABLISHED,
                    timestamp=time.time(),
                    data={"session_id": new_session},
                )
            )

        status = response.status_code
        if status == 404:
            self._session_id = None
            self._emit_event(TransportEvent(type=TransportEventType.SESSION_EXPIRED, timestamp=time.time()))
            raise SessionError("MCP session expired (404)")
        if status == 401:
            self.auth_provider.invalidate()
            raise HTTPStatusError("MCP HTTP request unauthorized (401)", status_code=status)
        if status >= 400:
            raise HTTPStatusError(f"MCP HTTP request failed: {status} {response.text}", status_code=status)
        if status == 202 or not response.content.strip():
            return []

        content_type = response.headers.get("Content-Type", "")
        if "text/event-stream" in content_type:
            messages = self._parse_sse_body(response.text)
        else:
            try:
                payload = oj.loads(response.content)
            except oj.JSONDecodeError as e:
                raise TransportError(f"Failed to parse response: {e}", cause=e)
            messages = payload if isinstance(payload, list) else [payload]

        result = [m for m in messages if isinstance(m, dict)]
        for item in result:
            self._emit_event(
                TransportEvent(
                    type=TransportEventType.MESSAGE_RECEIVED,
                    timestamp=time.time(),
                    data={"id": item.get("id"), "method": item.get("method")},
                )
            )
        return result

    def _parse_sse_body(self, body: str) -> list[dict]:
        """Decode every JSON ``data`` payload in an SSE body, dropping malformed ones."""
        messages: list[dict] = []
        for event_str in body.replace("\r\n", "\n").split("\n\n"):
            event = self._parse_sse_event(event_str)
            if not event or "data" not in event:
                continue
            try:
                messages.append(oj.loads(event["data"]))
            except oj.JSONDecodeError:
                logger.debug(f"Dropping malformed SSE data: {event['data'][:200]}")
        return messages

    def _parse_sse_event(self, event_str: str) -> dict[str, str] | None:
        """
        Parse one SSE event into its fields.

        SSE format:
            event: <event-type>
            data: <data>
            id: <id>

        Multiple ``data`` lines are joined with newlines.
        """
        if not event_str.strip():
            return None

        event: dict[str, str] = {}
        data_lines: list[str] = []

        for line in event_str.split("\n"):
            line = line.strip()
            if not line or line.startswith(":"):
                continue
            if ":" in line:
                field, _, value = line.partition(":")
                value = value.lstrip()
                if field == "data":
                    data_lines.append(value)
                elif field in ("event", "id", "retry"):
                    event[field] = value

        if data_lines:
            event["data"] = "\n".join(data_lines)

        return event if event else None

    async def receive(self) -> AsyncIterator[dict]:
        while self._connected and not self._closing:
            try:
                # Periodic wakeup so a disconnect ends the iteration
                message = await asyncio.wait_for(self._inbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            yield message

    def is_connected(self) -> bool:
        return self._connected and not self._closing

    @property
    def session_id(self) -> str | None:
        return self._session_id


class FallbackTransport(Transport):
    """
    Streamable HTTP with a one-time switch to legacy SSE mode.

    The switch only happens before the primary transport has completed a
    single exchange, when the failure indicates the server predates
    Streamable HTTP.
    """

    FALLBACK_STATUSES = (404, 406, 415, 426)

    def __init__(self, primary: StreamableHTTPTransport, fallback: StreamableHTTPTransport):
        super().__init__()
        self.primary = primary
        self.fallback = fallback
        self.active: StreamableHTTPTransport = primary
        self._primary_established = False

    async def connect(self) -> None:
        await self.active.connect()

    async def disconnect(self) -> None:
        await self.primary.disconnect()
        await self.fallback.disconnect()

    async def initialize_session(self) -> None:
        await self.active.initialize_session()

    async def shutdown(self) -> None:
        await self.active.shutdown()
        await self.disconnect()

    async def send(self, message: dict) -> dict | None:
        try:
            result = await self.active.send(message)
        except TransportError as e:
            if self.active is self.fallback or not self._should_fall_back(e):
                raise
        else:
            self._primary_established = True
            return result

        logger.warning("Switching MCP transport to legacy SSE fallback mode")
        await self.fallback.connect()
        self.active = self.fallback
        await self.primary.disconnect()
        return await self.fallback.send(message)

    async def send_notification(self, message: dict) -> None:
        await self.active.send_notification(message)

    def _should_fall_back(self, error: TransportError) -> bool:
        if self._primary_established:
            return False
        status = getattr(error, "status_code", None)
        if status in self.FALLBACK_STATUSES:
            return True
        text = str(error).lower()
        return "404" in text or "event-stream" in text or "sse" in text

    async def receive(self) -> AsyncIterator[dict]:
        while True:
            source = self.active
            async for message in source.receive():
                yield message
            # The primary stream ends when it is disconnected by the switch
            if source is self.active:
                return

    def is_connected(self) -> bool:
        return self.active.is_connected()

    @property
    def session_id(self) -> str | None:
        return self.active.session_id
