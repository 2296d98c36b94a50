"""MCP server configuration and mcp.json loading."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from mcpilot.lib import oj
from mcpilot.mcp.capabilities.negotiation import PROTOCOL_VERSION, SUPPORTED_VERSIONS

logger = logging.getLogger(__name__)

MCP_CONFIG_FILENAME = "mcp.json"
CONFIG_DIR_NAME = ".mcpilot"
GLOBAL_MCP_CONFIG = Path.home() / CONFIG_DIR_NAME / MCP_CONFIG_FILENAME

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


class TransportType(str, Enum):
    STDIO = "STDIO"
    STREAMABLE_HTTP = "STREAMABLE_HTTP"
    HTTP_SSE_LEGACY = "HTTP_SSE_LEGACY"


class AuthMode(str, Enum):
    NONE = "NONE"
    STATIC_HEADERS = "STATIC_HEADERS"
    OAUTH2 = "OAUTH2"


def _enum_value(enum_cls, raw: Any, default):
    if raw is None:
        return default
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} '{raw}', using {default.value}")
        return default


def sanitize_server_name(name: str) -> str:
    """Lowercase ``name`` and replace characters outside ``[A-Za-z0-9_]`` with ``_``."""
    return _UNSAFE_NAME_CHARS.sub("_", name).lower()


@dataclass
class McpServerConfig:
    """Configuration for one outbound MCP server."""

    name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enabled: bool = True
    transport_type: TransportType = TransportType.STDIO
    auth_mode: AuthMode = AuthMode.NONE

    # stdio
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    working_directory: str | None = None

    # remote
    remote_url: str | None = None
    remote_sse_url: str | None = None
    allow_legacy_fallback: bool = False
    allow_insecure_http: bool = False
    static_headers: dict[str, str] = field(default_factory=dict)
    oauth_profile_id: str | None = None
    oauth_client_id: str | None = None

    preferred_protocol_version: str = PROTOCOL_VERSION
    supported_protocol_versions: list[str] = field(default_factory=lambda: list(SUPPORTED_VERSIONS))

    connection_timeout: float = 30.0
    request_timeout: float = 60.0

    @property
    def tool_prefix(self) -> str:
        """Registry prefix for this server's adapters: ``mcp_<sanitized name>_``."""
        return f"mcp_{sanitize_server_name(self.name)}_"

    @property
    def is_remote(self) -> bool:
        return self.transport_type != TransportType.STDIO

    def is_valid(self) -> bool:
        if not self.name or not self.name.strip():
            return False
        if self.transport_type == TransportType.STDIO:
            return bool(self.command and self.command.strip())
        return bool(self.remote_url and self.remote_url.strip())

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> McpServerConfig:
        """
        Build a config from an ``mcpServers`` entry.

        The transport defaults to STDIO when a ``command`` is given and to
        STREAMABLE_HTTP when only a URL is. ``url``, ``sseUrl`` and
        ``headers`` are accepted as aliases.
        """
        remote_url = data.get("remoteUrl") or data.get("url")
        default_transport = TransportType.STDIO if data.get("command") else TransportType.STREAMABLE_HTTP
        headers = data.get("staticHeaders") or data.get("headers") or {}

        versions = [str(v) for v in data.get("supportedProtocolVersions") or [] if v]
        return cls(
            name=data.get("name") or name,
            id=data.get("id") or name,
            enabled=bool(data.get("enabled", True)),
            transport_type=_enum_value(TransportType, data.get("transportType"), default_transport),
            auth_mode=_enum_value(AuthMode, data.get("authMode"), AuthMode.NONE),
            command=data.get("command"),
            args=[str(a) for a in data.get("args") or []],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            working_directory=data.get("workingDirectory") or data.get("cwd"),
            remote_url=remote_url,
            remote_sse_url=data.get("remoteSseUrl") or data.get("sseUrl"),
            allow_legacy_fallback=bool(data.get("allowLegacyFallback", False)),
            allow_insecure_http=bool(data.get("allowInsecureHttp", False)),
            static_headers={str(k): str(v) for k, v in headers.items()},
            oauth_profile_id=data.get("oauthProfileId"),
            oauth_client_id=data.get("oauthClientId"),
            preferred_protocol_version=data.get("preferredProtocolVersion") or PROTOCOL_VERSION,
            supported_protocol_versions=versions or list(SUPPORTED_VERSIONS),
            connection_timeout=float(data.get("connectionTimeoutMs", 30000)) / 1000.0,
            request_timeout=float(data.get("requestTimeoutMs", 60000)) / 1000.0,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "transportType": self.transport_type.value,
            "authMode": self.auth_mode.value,
            "preferredProtocolVersion": self.preferred_protocol_version,
            "supportedProtocolVersions": list(self.supported_protocol_versions),
            "connectionTimeoutMs": int(self.connection_timeout * 1000),
            "requestTimeoutMs": int(self.request_timeout * 1000),
        }
        if self.transport_type == TransportType.STDIO:
            out.update(command=self.command, args=list(self.args), env=dict(self.env))
            if self.working_directory:
                out["workingDirectory"] = self.working_directory
        else:
            out["remoteUrl"] = self.remote_url
            if self.remote_sse_url:
                out["remoteSseUrl"] = self.remote_sse_url
            if self.allow_legacy_fallback:
                out["allowLegacyFallback"] = True
            if self.allow_insecure_http:
                out["allowInsecureHttp"] = True
            if self.static_headers:
                out["staticHeaders"] = dict(self.static_headers)
            if self.oauth_profile_id:
                out["oauthProfileId"] = self.oauth_profile_id
            if self.oauth_client_id:
                out["oauthClientId"] = self.oauth_client_id
        return out


def _load_file(path: Path, configs: dict[str, McpServerConfig]) -> None:
    try:
        data = oj.loads(path.read_bytes())
    except (OSError, oj.JSONDecodeError) as e:
        logger.warning(f"Skipping unreadable MCP config {path}: {e}")
        return

    servers = data.get("mcpServers", {}) if isinstance(data, dict) else {}
    for name, server_data in servers.items():
        if not isinstance(server_data, dict):
            continue
        config = McpServerConfig.from_dict(name, server_data)
        if not config.is_valid():
            logger.warning(f"Skipping invalid MCP server entry '{name}' in {path}")
            continue
        configs[config.id] = config


def load_mcp_config(
    working_dir: Path | None = None,
    global_config: Path | None = None,
) -> dict[str, McpServerConfig]:
    """Load MCP server configs from the global and project config files.

    Global config (~/.mcpilot/mcp.json) is loaded first.
    Local config ({working_dir}/.mcpilot/mcp.json) overrides global entries
    with the same id.

    Returns:
        Dict mapping server id to config.
    """
    configs: dict[str, McpServerConfig] = {}

    global_path = global_config or GLOBAL_MCP_CONFIG
    if global_path.exists():
        _load_file(global_path, configs)

    if working_dir:
        local_path = working_dir / CONFIG_DIR_NAME / MCP_CONFIG_FILENAME
        if local_path.exists():
            _load_file(local_path, configs)

    return configs
