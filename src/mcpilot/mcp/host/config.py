"""Configuration of the inbound MCP host."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from mcpilot.lib import oj
from mcpilot.mcp.auth.token_store import SecretStore
from mcpilot.mcp.config import CONFIG_DIR_NAME

logger = logging.getLogger(__name__)

HOST_CONFIG_PATH = Path.home() / CONFIG_DIR_NAME / "host.json"
BEARER_TOKEN_KEY = "mcp.host.http.bearerToken"
ENV_PREFIX = "MCPILOT_HOST_"


class HostAuthMode(str, Enum):
    OAUTH_OR_BEARER = "OAUTH_OR_BEARER"
    OAUTH_ONLY = "OAUTH_ONLY"
    BEARER_ONLY = "BEARER_ONLY"
    NONE = "NONE"

    @classmethod
    def parse(cls, value: str | None) -> HostAuthMode:
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OAUTH_OR_BEARER


class MutationPolicy(str, Enum):
    ASK = "ASK"
    DENY = "DENY"
    ALLOW = "ALLOW"

    @classmethod
    def parse(cls, value: str | None) -> MutationPolicy:
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.ALLOW


def generate_token() -> str:
    """48 hex characters from 24 random bytes."""
    return secrets.token_hex(24)


@dataclass
class McpHostConfig:
    enabled: bool = True
    http_enabled: bool = True
    bind_address: str = "127.0.0.1"
    port: int = 8765
    bearer_token: str = field(default_factory=generate_token, repr=False)
    auth_mode: HostAuthMode = HostAuthMode.OAUTH_OR_BEARER
    mutation_policy: MutationPolicy = MutationPolicy.ALLOW
    exposed_tools_filter: str = "*"

    @classmethod
    def defaults(cls) -> McpHostConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> McpHostConfig:
        cfg = cls()
        cfg.enabled = bool(data.get("enabled", cfg.enabled))
        cfg.http_enabled = bool(data.get("httpEnabled", cfg.http_enabled))
        cfg.bind_address = str(data.get("bindAddress") or cfg.bind_address)
        try:
            cfg.port = int(data.get("port", cfg.port))
        except (TypeError, ValueError):
            logger.warning(f"Invalid MCP host port {data.get('port')!r}, using {cfg.port}")
        if data.get("bearerToken"):
            cfg.bearer_token = str(data["bearerToken"])
        if "authMode" in data:
            cfg.auth_mode = HostAuthMode.parse(data["authMode"])
        if "mutationPolicy" in data:
            cfg.mutation_policy = MutationPolicy.parse(data["mutationPolicy"])
        if data.get("exposedToolsFilter") is not None:
            cfg.exposed_tools_filter = str(data["exposedToolsFilter"])
        return cfg

    def to_dict(self, include_token: bool = False) -> dict[str, Any]:
        out = {
            "enabled": self.enabled,
            "httpEnabled": self.http_enabled,
            "bindAddress": self.bind_address,
            "port": self.port,
            "authMode": self.auth_mode.value,
            "mutationPolicy": self.mutation_policy.value,
            "exposedToolsFilter": self.exposed_tools_filter,
        }
        if include_token:
            out["bearerToken"] = self.bearer_token
        return out

    def copy(self) -> McpHostConfig:
        return McpHostConfig(**asdict(self))


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class HostConfigStore:
    """
    Loads and saves :class:`McpHostConfig` as JSON.

    The bearer token goes to the secret store when one is given, and into
    the JSON file otherwise. ``MCPILOT_HOST_*`` environment variables
    override the file on load.

    Args:
        path: JSON file location.
        secret_store: Optional store for the bearer token.
        environ: Environment to read overrides from (``os.environ`` when None).
    """

    def __init__(
        self,
        path: Path | None = None,
        secret_store: SecretStore | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.path = path or HOST_CONFIG_PATH
        self.secret_store = secret_store
        self._environ = environ

    def load(self) -> McpHostConfig:
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                loaded = oj.loads(self.path.read_bytes())
                if isinstance(loaded, dict):
                    data = loaded
            except (OSError, oj.JSONDecodeError) as e:
                logger.warning(f"Failed to read MCP host config {self.path}: {e}")

        cfg = McpHostConfig.from_dict(data)

        if self.secret_store is not None:
            token = self.secret_store.read(BEARER_TOKEN_KEY)
            if not token:
                token = data.get("bearerToken") or generate_token()
                self.secret_store.store(BEARER_TOKEN_KEY, token)
            cfg.bearer_token = token

        self._apply_env_overrides(cfg)
        return cfg

    def _apply_env_overrides(self, cfg: McpHostConfig) -> None:
        env = os.environ if self._environ is None else self._environ

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else None

        if (value := get("ENABLED")) is not None:
            cfg.enabled = _env_bool(value)
        if (value := get("HTTP_ENABLED")) is not None:
            cfg.http_enabled = _env_bool(value)
        if (value := get("BIND_ADDRESS")) is not None:
            cfg.bind_address = value
        if (value := get("PORT")) is not None:
            try:
                cfg.port = int(value)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}PORT={value!r}")
        if (value := get("AUTH_MODE")) is not None:
            cfg.auth_mode = HostAuthMode.parse(value)
        if (value := get("MUTATION_POLICY")) is not None:
            cfg.mutation_policy = MutationPolicy.parse(value)
        if (value := get("EXPOSED_TOOLS")) is not None:
            cfg.exposed_tools_filter = value
        if (value := get("BEARER_TOKEN")) is not None:
            cfg.bearer_token = value

    def save(self, cfg: McpHostConfig) -> None:
        if self.secret_store is not None:
            self.secret_store.store(BEARER_TOKEN_KEY, cfg.bearer_token)
        payload = cfg.to_dict(include_token=self.secret_store is None)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(oj.dumps(payload, indent=True), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save MCP host config {self.path}: {e}")
            raise
