"""Abstract transport contract and transport error types."""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

from mcpilot.mcp.transport.types import TransportEvent

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base exception for transport errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ConnectionError(TransportError):
    """Failed to establish connection to server."""


class TimeoutError(TransportError):
    """Request or connection timed out."""


class SessionError(TransportError):
    """The MCP session is missing, invalid or expired."""


class HTTPStatusError(TransportError):
    """Remote endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class Transport(ABC):
    """
    Abstract base class for MCP transports.

    A transport moves JSON-RPC envelopes between the client and one MCP
    server. Requests may be answered inline by :meth:`send`; everything
    else the server pushes (notifications, server requests, late
    responses) is delivered through the :meth:`receive` channel.
    """

    def __init__(self) -> None:
        self._event_handlers: list[Callable[[TransportEvent], None]] = []
        self._id_counter = itertools.count(1)

    def on_event(self, handler: Callable[[TransportEvent], None]) -> None:
        """Register a callback for transport events."""
        self._event_handlers.append(handler)

    def _emit_event(self, event: TransportEvent) -> None:
        for handler in self._event_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.debug(f"Transport event handler failed for {event}: {e}")

    def next_request_id(self) -> int:
        """Allocate a request id unique for the lifetime of this transport."""
        return next(self._id_counter)

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the underlying connection.

        Raises:
            ConnectionError: If the connection cannot be established.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Release all resources. Safe to call more than once."""

    @abstractmethod
    async def send(self, message: dict) -> dict | None:
        """
        Send a JSON-RPC request or response.

        Returns:
            The matching response when the server answered inline, or None
            when it will arrive through :meth:`receive`.

        Raises:
            TransportError: If the send fails.
            SessionError: If the session is invalid or expired.
        """

    @abstractmethod
    async def send_notification(self, message: dict) -> None:
        """Send a JSON-RPC notification. No response is expected."""

    async def initialize_session(self) -> None:
        """
        Prepare a fresh protocol session.

        Called before the handshake and again when a request fails because
        the server forgot the session. Connection-oriented transports have
        nothing to reset.
        """

    async def shutdown(self) -> None:
        """Politely end the protocol session, then disconnect."""
        await self.disconnect()

    @abstractmethod
    def receive(self) -> AsyncIterator[dict]:
        """Async iterator over messages pushed by the server."""

    @abstractmethod
    def is_connected(self) -> bool:
        """True while the transport can carry messages."""

    @property
    def session_id(self) -> str | None:
        """Server-assigned session id, for transports that have one."""
        return None

    async def __aenter__(self) -> "Transport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
