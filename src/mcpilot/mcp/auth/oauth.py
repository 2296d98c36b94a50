"""OAuth 2.1 client support for remote MCP servers."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from urllib.parse import urlparse

import httpx

from mcpilot.lib import oj
from mcpilot.mcp.auth.base import AuthProvider
from mcpilot.mcp.auth.token_store import OAuthToken, TokenStore

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "mcpilot"
REFRESH_SKEW_SECONDS = 60
DEFAULT_EXPIRES_IN = 3600


class OAuthError(Exception):
    """Token endpoint rejected a request or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def generate_code_verifier() -> str:
    """PKCE verifier: 32 random bytes, base64url without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge for a PKCE verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_auth_headers(token: OAuthToken) -> dict[str, str]:
    token_type = token.token_type or "Bearer"
    return {"Authorization": f"{token_type} {token.access_token}"}


class OAuthService:
    """
    Discovery and token-endpoint calls.

    Args:
        http_client: Shared httpx client. One is created lazily when omitted.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def discover_token_endpoint(self, resource_url: str) -> str | None:
        """
        Resolve the token endpoint for a protected MCP resource.

        Follows ``/.well-known/oauth-protected-resource`` on the resource
        origin to the first authorization server, then reads its
        ``/.well-known/openid-configuration``.

        Returns:
            The token endpoint URL, or None when any step fails.
        """
        try:
            parsed = urlparse(resource_url)
            prm_url = f"{parsed.scheme}://{parsed.netloc}/.well-known/oauth-protected-resource"
            prm_resp = await self._http().get(prm_url)
            if not prm_resp.is_success:
                logger.debug(f"Protected resource metadata unavailable at {prm_url}: HTTP {prm_resp.status_code}")
                return None
            prm = oj.loads(prm_resp.content)
            servers = prm.get("authorization_servers") if isinstance(prm, dict) else None
            if not servers:
                return None

            issuer = str(servers[0])
            metadata_url = (
                issuer + ".well-known/openid-configuration"
                if issuer.endswith("/")
                else issuer + "/.well-known/openid-configuration"
            )
            meta_resp = await self._http().get(metadata_url)
            if not meta_resp.is_success:
                logger.debug(f"Authorization server metadata unavailable at {metadata_url}")
                return None
            metadata = oj.loads(meta_resp.content)
            if isinstance(metadata, dict) and metadata.get("token_endpoint"):
                return str(metadata["token_endpoint"])
            return None
        except Exception as e:
            logger.warning(f"OAuth metadata discovery failed for {resource_url}: {e}")
            return None

    async def exchange_authorization_code(
        self,
        token_endpoint: str,
        client_id: str,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthToken:
        return await self._token_request(
            token_endpoint,
            {
                "grant_type": "authorization_code",
                "client_id": client_id,
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri,
            },
        )

    async def refresh_token(self, token_endpoint: str, client_id: str, refresh_token: str) -> OAuthToken:
        return await self._token_request(
            token_endpoint,
            {
                "grant_type": "refresh_token",
                "client_id": client_id,
                "refresh_token": refresh_token,
            },
        )

    async def _token_request(self, token_endpoint: str, form: dict[str, str]) -> OAuthToken:
        response = await self._http().post(token_endpoint, data=form)
        if not response.is_success:
            raise OAuthError(
                f"OAuth token request failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = oj.loads(response.content)
        except oj.JSONDecodeError as e:
            raise OAuthError(f"OAuth token response is not JSON: {e}") from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise OAuthError("OAuth token response missing access_token")

        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        return OAuthToken(
            access_token=str(payload["access_token"]),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "Bearer",
            expires_at_epoch_seconds=int(time.time()) + expires_in,
        )


class OAuth2AuthProvider(AuthProvider):
    """
    Bearer auth backed by a stored OAuth token.

    The token is refreshed when it is within the skew window of its expiry
    and a refresh token exists. Refresh and discovery failures are logged
    and the stale token is still sent.
    """

    def __init__(
        self,
        profile_id: str,
        resource_url: str,
        token_store: TokenStore,
        oauth_service: OAuthService,
        client_id: str | None = None,
        refresh_skew_seconds: float = REFRESH_SKEW_SECONDS,
    ):
        self.profile_id = profile_id
        self.resource_url = resource_url
        self.client_id = client_id or DEFAULT_CLIENT_ID
        self.refresh_skew_seconds = refresh_skew_seconds
        self._tokens = token_store
        self._oauth = oauth_service

    async def get_auth_headers(self) -> dict[str, str]:
        token = self._tokens.read(self.profile_id)
        if token is None:
            return {}

        if token.will_expire_soon(self.refresh_skew_seconds) and token.can_refresh:
            try:
                endpoint = await self._oauth.discover_token_endpoint(self.resource_url)
                if endpoint is not None:
                    refreshed = await self._oauth.refresh_token(endpoint, self.client_id, token.refresh_token)
                    if not refreshed.can_refresh:
                        # Servers may omit the refresh token when it is not rotated
                        refreshed = OAuthToken(
                            access_token=refreshed.access_token,
                            refresh_token=token.refresh_token,
                            token_type=refreshed.token_type,
                            expires_at_epoch_seconds=refreshed.expires_at_epoch_seconds,
                        )
                    self._tokens.save(self.profile_id, refreshed)
                    token = refreshed
                    logger.info(f"Refreshed OAuth token for profile {self.profile_id}")
            except Exception as e:
                logger.warning(f"OAuth refresh failed for profile {self.profile_id}: {e}")

        return build_auth_headers(token)

    def invalidate(self) -> None:
        logger.info(f"Invalidating OAuth credentials for profile {self.profile_id}")
        self._tokens.clear(self.profile_id)
