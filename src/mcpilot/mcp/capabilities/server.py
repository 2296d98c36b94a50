"""Server capability definitions for MCP negotiation."""

from dataclasses import dataclass
from typing import Any


@dataclass
class ServerToolsCapability:
    """Server provides tools that can be called by the client."""

    list_changed: bool = False
    """Server will notify when tool list changes."""


@dataclass
class ServerResourcesCapability:
    """Server provides resources that can be read by the client."""

    subscribe: bool = False
    """Client can subscribe to resource changes."""

    list_changed: bool = False
    """Server will notify when resource list changes."""


@dataclass
class ServerPromptsCapability:
    """Server provides prompt templates."""

    list_changed: bool = False
    """Server will notify when prompt list changes."""


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


@dataclass
class ServerCapabilities:
    """
    Parsed server capabilities from initialize response.

    Used by both sides: the outbound client parses what a remote server
    advertises, and the host builds its own advertisement from it.
    """

    tools: ServerToolsCapability | None = None
    resources: ServerResourcesCapability | None = None
    prompts: ServerPromptsCapability | None = None
    logging: bool = False
    experimental: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ServerCapabilities":
        """
        Parse from initialize response.

        Args:
            data: The 'capabilities' object from server response.

        Returns:
            ServerCapabilities instance.
        """
        caps = cls()
        if not isinstance(data, dict):
            return caps

        if "tools" in data:
            caps.tools = ServerToolsCapability(
                list_changed=bool(_section(data, "tools").get("listChanged", False))
            )

        if "resources" in data:
            resources = _section(data, "resources")
            caps.resources = ServerResourcesCapability(
                subscribe=bool(resources.get("subscribe", False)),
                list_changed=bool(resources.get("listChanged", False)),
            )

        if "prompts" in data:
            caps.prompts = ServerPromptsCapability(
                list_changed=bool(_section(data, "prompts").get("listChanged", False))
            )

        caps.logging = "logging" in data
        caps.experimental = data.get("experimental")
        return caps

    def to_dict(self) -> dict[str, Any]:
        caps: dict[str, Any] = {}

        if self.tools is not None:
            caps["tools"] = {"listChanged": self.tools.list_changed}

        if self.resources is not None:
            caps["resources"] = {
                "subscribe": self.resources.subscribe,
                "listChanged": self.resources.list_changed,
            }

        if self.prompts is not None:
            caps["prompts"] = {"listChanged": self.prompts.list_changed}

        if self.logging:
            caps["logging"] = {}

        if self.experimental is not None:
            caps["experimental"] = self.experimental

        return caps

    def supports_tools(self) -> bool:
        return self.tools is not None

    def supports_resources(self) -> bool:
        return self.resources is not None

    def supports_prompts(self) -> bool:
        return self.prompts is not None

    def get_available_features(self) -> list[str]:
        """
        List features available with this server.

        Returns:
            List of feature names.
        """
        features = []
        if self.tools is not None:
            features.append("tools")
        if self.resources is not None:
            features.append("resources")
        if self.prompts is not None:
            features.append("prompts")
        if self.logging:
            features.append("logging")
        return features


# What the host advertises to external clients
HOST_SERVER_CAPABILITIES = ServerCapabilities(
    tools=ServerToolsCapability(list_changed=True),
    resources=ServerResourcesCapability(list_changed=True),
    prompts=ServerPromptsCapability(list_changed=True),
    logging=True,
)
