"""Transport configuration and observability events."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any
from urllib.parse import urlparse


class TransportEventType(Enum):
    """Types of transport events for observability."""

    CONNECTING = auto()
    CONNECTED = auto()
    DISCONNECTED = auto()
    MESSAGE_SENT = auto()
    MESSAGE_RECEIVED = auto()
    SESSION_ESTABLISHED = auto()
    SESSION_EXPIRED = auto()
    ERROR = auto()


@dataclass
class TransportEvent:
    """Event emitted by a transport."""

    type: TransportEventType
    timestamp: float
    data: dict[str, Any] | None = None
    error: Exception | None = None

    def __str__(self) -> str:
        base = f"[{self.type.name}]"
        if self.data:
            base += f" {self.data}"
        if self.error:
            base += f" error={self.error}"
        return base


@dataclass
class TransportConfig:
    """Configuration for the remote HTTP transports."""

    url: str
    """Endpoint URL of the MCP server."""

    timeout: float = 60.0
    """Request timeout in seconds."""

    connect_timeout: float = 10.0
    """Connection establishment timeout in seconds."""

    headers: dict[str, str] = field(default_factory=dict)
    """Extra HTTP headers sent with every request."""

    max_concurrent_requests: int = 10
    """Maximum number of concurrent in-flight requests."""

    allow_insecure_http: bool = False
    """Permit plain http:// for non-local hosts."""

    legacy_sse: bool = False
    """Ask only for text/event-stream responses (pre-2025 HTTP+SSE servers)."""

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url is required")
        scheme = urlparse(self.url).scheme.lower()
        if scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme: {scheme or '<none>'}")
        if scheme == "http" and not (self.allow_insecure_http or self._is_localhost()):
            raise ValueError("Remote connections must use https://")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")

    def _is_localhost(self) -> bool:
        host = urlparse(self.url).hostname or ""
        return host in ("localhost", "127.0.0.1", "::1")
