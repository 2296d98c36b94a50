"""MCP capability negotiation protocol."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mcpilot.mcp.capabilities.client import (
    ClientCapabilities,
    ClientInfo,
)
from mcpilot.mcp.capabilities.server import ServerCapabilities
from mcpilot.mcp.protocol.errors import MCPError
from mcpilot.mcp.transport.base import TransportError

if TYPE_CHECKING:
    from mcpilot.mcp.protocol.client import MCPClient

logger = logging.getLogger(__name__)

# Newest first
PROTOCOL_VERSION = "2025-11-25"
SUPPORTED_VERSIONS = ["2025-11-25", "2025-06-18", "2025-03-26", "2024-11-05"]


class IncompatibleProtocolError(Exception):
    """No candidate protocol version was accepted by the server."""

    def __init__(self, message: str, attempts: list[NegotiationAttempt] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


@dataclass
class ServerInfo:
    """Information about the connected server."""

    name: str
    version: str

    @classmethod
    def from_dict(cls, data: dict | None) -> ServerInfo:
        data = data if isinstance(data, dict) else {}
        return cls(
            name=str(data.get("name", "unknown")),
            version=str(data.get("version", "unknown")),
        )

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}


@dataclass
class NegotiationResult:
    """Everything exchanged during a successful initialize handshake."""

    protocol_version: str
    server_info: ServerInfo
    server_capabilities: ServerCapabilities
    client_capabilities: ClientCapabilities
    instructions: str | None = None

    def __str__(self) -> str:
        features = self.server_capabilities.get_available_features()
        return (
            f"NegotiationResult(version={self.protocol_version}, "
            f"server={self.server_info.name}/{self.server_info.version}, "
            f"features={features})"
        )


@dataclass(frozen=True)
class NegotiationAttempt:
    """Outcome of one ``initialize`` request for a single candidate version."""

    version: str
    result: NegotiationResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def candidate_versions(preferred: str | None, supported: list[str] | None = None) -> list[str]:
    """
    Order the versions to try: preferred first, then the supported list.

    Duplicates and empty entries are dropped while keeping first occurrence.
    """
    ordered: list[str] = []
    for version in [preferred, *(supported or SUPPORTED_VERSIONS)]:
        if version and version not in ordered:
            ordered.append(version)
    return ordered


@dataclass
class CapabilityNegotiator:
    """
    Handles the MCP initialization handshake.

    Tries each candidate version in turn until the server accepts one it
    answers with a version from the supported list, then sends
    ``notifications/initialized``.
    """

    client: MCPClient
    preferred_version: str = PROTOCOL_VERSION
    supported_versions: list[str] = field(default_factory=lambda: list(SUPPORTED_VERSIONS))
    client_capabilities: ClientCapabilities = field(default_factory=ClientCapabilities)
    client_info: ClientInfo = field(default_factory=ClientInfo)
    attempts: list[NegotiationAttempt] = field(default_factory=list)

    async def negotiate(self, timeout: float = 30.0) -> NegotiationResult:
        """
        Perform the initialization handshake.

        Args:
            timeout: Timeout for each initialize request.

        Returns:
            NegotiationResult with server capabilities.

        Raises:
            IncompatibleProtocolError: If every candidate version failed.
        """
        self.attempts = []
        result: NegotiationResult | None = None

        for version in candidate_versions(self.preferred_version, self.supported_versions):
            attempt = await self._attempt(version, timeout)
            self.attempts.append(attempt)
            if attempt.ok:
                result = attempt.result
                break
            logger.info(f"Protocol version {version} rejected: {attempt.error}")

        if result is None:
            summary = "; ".join(f"{a.version}: {a.error}" for a in self.attempts)
            raise IncompatibleProtocolError(
                f"No compatible MCP protocol version ({summary})",
                attempts=list(self.attempts),
            )

        logger.info(f"Connected to server: {result.server_info.name} v{result.server_info.version}")
        logger.info(f"Server capabilities: {result.server_capabilities.get_available_features()}")

        try:
            await self.client.notify("notifications/initialized")
        except (TransportError, MCPError) as e:
            logger.warning(f"Failed to send initialized notification: {e}")

        return result

    async def _attempt(self, version: str, timeout: float) -> NegotiationAttempt:
        params = {
            "protocolVersion": version,
            "capabilities": self.client_capabilities.to_dict(),
            "clientInfo": self.client_info.to_dict(),
        }
        try:
            response: dict[str, Any] = await self.client.request("initialize", params, timeout=timeout)
        except (MCPError, TransportError, asyncio.TimeoutError) as e:
            return NegotiationAttempt(version=version, error=str(e) or type(e).__name__)

        server_version = response.get("protocolVersion") if isinstance(response, dict) else None
        if server_version not in self.supported_versions:
            return NegotiationAttempt(
                version=version,
                error=f"server answered with unsupported version {server_version!r}",
            )

        return NegotiationAttempt(
            version=version,
            result=NegotiationResult(
                protocol_version=server_version,
                server_info=ServerInfo.from_dict(response.get("serverInfo")),
                server_capabilities=ServerCapabilities.from_dict(response.get("capabilities")),
                client_capabilities=self.client_capabilities,
                instructions=response.get("instructions"),
            ),
        )
