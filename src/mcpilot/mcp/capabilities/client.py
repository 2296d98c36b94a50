"""Client capability definitions for MCP negotiation."""

from dataclasses import dataclass
from typing import Any

from mcpilot import __version__


@dataclass
class RootsCapability:
    """Client can declare filesystem roots."""

    list_changed: bool = True
    """Whether client will notify server when roots change."""


@dataclass
class ClientCapabilities:
    """
    Capabilities sent to the server during initialization.

    Empty by default: roots and sampling are only declared when the host
    application wires request handlers that serve them.
    """

    roots: RootsCapability | None = None
    sampling: bool = False
    experimental: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to wire format for initialize request.

        Returns:
            Dict suitable for JSON serialization.
        """
        caps: dict[str, Any] = {}
        if self.roots is not None:
            caps["roots"] = {"listChanged": self.roots.list_changed}
        if self.sampling:
            caps["sampling"] = {}
        if self.experimental is not None:
            caps["experimental"] = self.experimental
        return caps

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ClientCapabilities":
        data = data if isinstance(data, dict) else {}
        roots = data.get("roots")
        return cls(
            roots=RootsCapability(list_changed=bool(roots.get("listChanged", True)))
            if isinstance(roots, dict)
            else None,
            sampling="sampling" in data,
            experimental=data.get("experimental"),
        )


@dataclass
class ClientInfo:
    """Information about this client sent during initialization."""

    name: str = "mcpilot"
    version: str = __version__

    def to_dict(self) -> dict[str, str]:
        """Convert to wire format."""
        return {"name": self.name, "version": self.version}
