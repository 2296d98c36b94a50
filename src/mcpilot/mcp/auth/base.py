"""Outbound auth providers: resolve per-request headers for remote MCP servers."""

from abc import ABC, abstractmethod


class AuthProvider(ABC):
    """Supplies the headers a remote transport attaches to every request."""

    @abstractmethod
    async def get_auth_headers(self) -> dict[str, str]:
        """Return headers for the next request. May refresh credentials."""

    def invalidate(self) -> None:
        """Forget stored credentials after the server rejected them."""


class NoAuthProvider(AuthProvider):
    async def get_auth_headers(self) -> dict[str, str]:
        return {}


class StaticHeadersAuthProvider(AuthProvider):
    """Sends a fixed header map, typically an API key configured by the user."""

    def __init__(self, headers: dict[str, str] | None = None):
        self._headers = {k: v for k, v in (headers or {}).items() if k and v is not None}

    async def get_auth_headers(self) -> dict[str, str]:
        return dict(self._headers)
