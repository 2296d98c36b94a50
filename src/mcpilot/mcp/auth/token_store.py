"""OAuth token model and profile-keyed persistence over a secret store."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)

KEY_PREFIX = "mcp.oauth."
_ACCESS_TOKEN = ".accessToken"
_REFRESH_TOKEN = ".refreshToken"
_TOKEN_TYPE = ".tokenType"
_EXPIRES_AT = ".expiresAt"


@dataclass(frozen=True)
class OAuthToken:
    """
    A stored OAuth access token.

    ``expires_at_epoch_seconds <= 0`` marks a token that never expires.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at_epoch_seconds: int = 0

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at_epoch_seconds <= 0:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at_epoch_seconds

    def will_expire_soon(self, skew_seconds: float, now: float | None = None) -> bool:
        """True when the token expires within ``skew_seconds`` of ``now``."""
        if self.expires_at_epoch_seconds <= 0:
            return False
        now = time.time() if now is None else now
        return now + skew_seconds >= self.expires_at_epoch_seconds

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.refresh_token.strip())


class SecretStore(ABC):
    """Key/value store for credentials."""

    @abstractmethod
    def read(self, key: str) -> str | None:
        pass

    @abstractmethod
    def store(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemorySecretStore(SecretStore):
    """Process-local secret store. Credentials are lost on exit."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def read(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def store(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class TokenStore:
    """
    Persists one OAuthToken per profile id.

    Each field lives under its own key, ``mcp.oauth.<profile>.<field>``,
    so any flat secret store can hold it.
    """

    def __init__(self, secrets: SecretStore):
        self._secrets = secrets

    def read(self, profile_id: str | None) -> OAuthToken | None:
        if not profile_id or not profile_id.strip():
            return None
        base = KEY_PREFIX + profile_id
        access = self._secrets.read(base + _ACCESS_TOKEN) or ""
        if not access.strip():
            return None
        refresh = self._secrets.read(base + _REFRESH_TOKEN) or None
        token_type = self._secrets.read(base + _TOKEN_TYPE) or "Bearer"
        raw_expiry = self._secrets.read(base + _EXPIRES_AT) or "0"
        try:
            expires_at = int(raw_expiry)
        except ValueError:
            logger.warning(f"Ignoring malformed token expiry for profile {profile_id}: {raw_expiry!r}")
            expires_at = 0
        return OAuthToken(
            access_token=access,
            refresh_token=refresh,
            token_type=token_type,
            expires_at_epoch_seconds=expires_at,
        )

    def save(self, profile_id: str | None, token: OAuthToken) -> None:
        if not profile_id or not profile_id.strip():
            return
        base = KEY_PREFIX + profile_id
        self._secrets.store(base + _ACCESS_TOKEN, token.access_token)
        self._secrets.store(base + _REFRESH_TOKEN, token.refresh_token or "")
        self._secrets.store(base + _TOKEN_TYPE, token.token_type or "Bearer")
        self._secrets.store(base + _EXPIRES_AT, str(int(token.expires_at_epoch_seconds)))

    def clear(self, profile_id: str | None) -> None:
        if not profile_id or not profile_id.strip():
            return
        base = KEY_PREFIX + profile_id
        for suffix in (_ACCESS_TOKEN, _REFRESH_TOKEN, _TOKEN_TYPE, _EXPIRES_AT):
            self._secrets.remove(base + suffix)
