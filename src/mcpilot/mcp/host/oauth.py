"""OAuth 2.1 authorization server embedded in the host HTTP transport.

Implements protected resource metadata (RFC 9728), authorization server
metadata, dynamic client registration (RFC 7591), the authorization code
grant with PKCE S256, and refresh token rotation. All state is in memory
and expired entries are swept lazily on each call.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import urlencode, urlsplit

from mcpilot.mcp.auth.oauth import generate_code_challenge
from mcpilot.mcp.host.config import HostAuthMode

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "mcp"
REALM = "mcpilot"
AUTH_CODE_TTL = 5 * 60
ACCESS_TOKEN_TTL = 60 * 60
REFRESH_TOKEN_TTL = 30 * 24 * 60 * 60

AUTH_METHOD_NONE = "none"
AUTH_METHOD_SECRET_POST = "client_secret_post"
SUPPORTED_TOKEN_AUTH_METHODS = (AUTH_METHOD_NONE, AUTH_METHOD_SECRET_POST)
CLIENT_ID_PREFIX = "mcpilot_"


@dataclass(frozen=True)
class OAuthResponse:
    """JSON body or redirect produced by an OAuth endpoint."""

    status_code: int
    body: dict[str, Any] | None = None
    location: str | None = None

    @property
    def is_redirect(self) -> bool:
        return bool(self.location)

    @classmethod
    def json(cls, status_code: int, body: dict[str, Any]) -> OAuthResponse:
        return cls(status_code=status_code, body=body)

    @classmethod
    def redirect(cls, location: str) -> OAuthResponse:
        return cls(status_code=302, location=location)

    @classmethod
    def error(cls, status_code: int, error: str, description: str) -> OAuthResponse:
        return cls.json(status_code, {"error": error, "error_description": description})


@dataclass
class RegisteredClient:
    client_id: str
    client_secret: str | None
    token_auth_method: str
    redirect_uris: frozenset[str] = field(default_factory=frozenset)


@dataclass
class Grant:
    """An authorization code, access token or refresh token."""

    client_id: str
    scope: str
    expires_at: float
    redirect_uri: str | None = None
    code_challenge: str | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


def normalize_host(bind_address: str | None) -> str:
    """Host part of the issuer URL. Wildcard binds map to loopback and IPv6 is bracketed."""
    host = (bind_address or "").strip() or "127.0.0.1"
    if host == "0.0.0.0":
        host = "127.0.0.1"
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


def is_valid_redirect_uri(uri: str | None) -> bool:
    if not uri or not uri.strip():
        return False
    try:
        scheme = urlsplit(uri).scheme
    except ValueError:
        return False
    return bool(scheme) and scheme.lower() != "javascript"


def append_query(uri: str, params: dict[str, str]) -> str:
    base, sep, fragment = uri.partition("#")
    joiner = "&" if "?" in base else "?"
    return f"{base}{joiner}{urlencode(params)}{sep}{fragment}"


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization[:7].lower() == "bearer ":
        return None
    token = authorization[7:].strip()
    return token or None


def _constant_time_equals(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class HostOAuthService:
    """
    Minimal OAuth server guarding the host's ``/mcp`` endpoint.

    Args:
        bind_address: Address the host listens on; determines the issuer.
        port: Port the host listens on.
        static_bearer_token: Pre-shared token accepted as-is.
        auth_mode: Which credentials :meth:`is_authorized` accepts.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        bind_address: str,
        port: int,
        static_bearer_token: str | None = None,
        auth_mode: HostAuthMode = HostAuthMode.OAUTH_OR_BEARER,
        clock: Callable[[], float] = time.time,
    ):
        self.issuer = f"http://{normalize_host(bind_address)}:{port}"
        self.resource_endpoint = f"{self.issuer}/mcp"
        self.protected_resource_metadata_endpoint = f"{self.issuer}/.well-known/oauth-protected-resource"
        self.authorization_endpoint = f"{self.issuer}/oauth/authorize"
        self.token_endpoint = f"{self.issuer}/oauth/token"
        self.registration_endpoint = f"{self.issuer}/oauth/register"
        self.static_bearer_token = (static_bearer_token or "").strip()
        self.auth_mode = auth_mode
        self._clock = clock

        self._clients: dict[str, RegisteredClient] = {}
        self._codes: dict[str, Grant] = {}
        self._access_tokens: dict[str, Grant] = {}
        self._refresh_tokens: dict[str, Grant] = {}

    def is_authorized(self, authorization: str | None) -> bool:
        """Check an ``Authorization`` header value against the configured auth mode."""
        if self.auth_mode == HostAuthMode.NONE:
            return True

        token = extract_bearer_token(authorization)
        if token is None:
            return False

        if self.auth_mode in (HostAuthMode.OAUTH_OR_BEARER, HostAuthMode.BEARER_ONLY):
            if self.static_bearer_token and _constant_time_equals(self.static_bearer_token, token):
                return True
        if self.auth_mode in (HostAuthMode.OAUTH_OR_BEARER, HostAuthMode.OAUTH_ONLY):
            now = self._cleanup_expired()
            grant = self._access_tokens.get(token)
            return grant is not None and not grant.is_expired(now)
        return False

    def www_authenticate(self) -> str:
        return (
            f'Bearer realm="{REALM}", '
            f'resource_metadata="{self.protected_resource_metadata_endpoint}", '
            f'scope="{DEFAULT_SCOPE}"'
        )

    def protected_resource_metadata(self) -> dict[str, Any]:
        return {
            "resource": self.resource_endpoint,
            "authorization_servers": [self.issuer],
            "scopes_supported": [DEFAULT_SCOPE],
            "bearer_methods_supported": ["header"],
        }

    def authorization_server_metadata(self) -> dict[str, Any]:
        return {
            "issuer": self.issuer,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "registration_endpoint": self.registration_endpoint,
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": list(SUPPORTED_TOKEN_AUTH_METHODS),
            "code_challenge_methods_supported": ["S256"],
            "scopes_supported": [DEFAULT_SCOPE],
        }

    def register_client(self, request: Mapping[str, Any]) -> OAuthResponse:
        """Dynamic client registration."""
        self._cleanup_expired()
        raw_uris = request.get("redirect_uris")
        redirect_uris = (
            [str(u).strip() for u in raw_uris if u is not None and str(u).strip()]
            if isinstance(raw_uris, list)
            else []
        )
        if not redirect_uris:
            return OAuthResponse.error(400, "invalid_client_metadata", "redirect_uris is required")
        for uri in redirect_uris:
            if not is_valid_redirect_uri(uri):
                return OAuthResponse.error(400, "invalid_client_metadata", f"Invalid redirect URI: {uri}")

        auth_method = str(request.get("token_endpoint_auth_method") or "").strip() or AUTH_METHOD_NONE
        if auth_method not in SUPPORTED_TOKEN_AUTH_METHODS:
            return OAuthResponse.error(
                400, "invalid_client_metadata", f"Unsupported token_endpoint_auth_method: {auth_method}"
            )

        client_id = CLIENT_ID_PREFIX + secrets.token_urlsafe(18)
        client_secret = secrets.token_urlsafe(24) if auth_method == AUTH_METHOD_SECRET_POST else None
        self._clients[client_id] = RegisteredClient(
            client_id=client_id,
            client_secret=client_secret,
            token_auth_method=auth_method,
            redirect_uris=frozenset(redirect_uris),
        )
        logger.info(f"Registered OAuth client {client_id} ({auth_method})")

        payload: dict[str, Any] = {
            "client_id": client_id,
            "client_id_issued_at": int(self._clock()),
        }
        if client_secret is not None:
            payload["client_secret"] = client_secret
            payload["client_secret_expires_at"] = 0
        payload.update(
            redirect_uris=redirect_uris,
            grant_types=["authorization_code", "refresh_token"],
            response_types=["code"],
            token_endpoint_auth_method=auth_method,
            scope=DEFAULT_SCOPE,
        )
        return OAuthResponse.json(201, payload)

    def authorize(self, query: Mapping[str, str]) -> OAuthResponse:
        """
        Authorization endpoint. Consent is implicit: a valid request is
        answered with a redirect carrying a fresh code.

        Unknown client ids are registered on the fly as public clients
        bound to the given redirect URI.
        """
        now = self._cleanup_expired()
        if query.get("response_type") != "code":
            return OAuthResponse.error(400, "unsupported_response_type", "response_type must be code")

        client_id = query.get("client_id")
        redirect_uri = query.get("redirect_uri")
        code_challenge = query.get("code_challenge")
        requested_scope = query.get("scope")
        state = query.get("state")

        if _blank(client_id):
            return OAuthResponse.error(400, "invalid_request", "client_id is required")
        if not is_valid_redirect_uri(redirect_uri):
            return OAuthResponse.error(400, "invalid_request", "redirect_uri is invalid")
        if _blank(code_challenge):
            return OAuthResponse.error(400, "invalid_request", "code_challenge is required")
        if query.get("code_challenge_method") != "S256":
            return OAuthResponse.error(400, "invalid_request", "code_challenge_method must be S256")
        if not _blank(requested_scope) and DEFAULT_SCOPE not in requested_scope:
            return OAuthResponse.error(400, "invalid_scope", "Scope mcp is required")

        client = self._clients.get(client_id)
        if client is None:
            client = RegisteredClient(
                client_id=client_id,
                client_secret=None,
                token_auth_method=AUTH_METHOD_NONE,
                redirect_uris=frozenset({redirect_uri}),
            )
            self._clients[client_id] = client
        if redirect_uri not in client.redirect_uris:
            return OAuthResponse.error(400, "invalid_request", "redirect_uri is not registered")

        code = secrets.token_urlsafe(24)
        self._codes[code] = Grant(
            client_id=client_id,
            scope=DEFAULT_SCOPE if _blank(requested_scope) else requested_scope.strip(),
            expires_at=now + AUTH_CODE_TTL,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
        )

        params = {"code": code}
        if not _blank(state):
            params["state"] = state
        params["iss"] = self.issuer
        return OAuthResponse.redirect(append_query(redirect_uri, params))

    def exchange_token(self, form: Mapping[str, str]) -> OAuthResponse:
        """Token endpoint for the authorization_code and refresh_token grants."""
        self._cleanup_expired()
        grant_type = form.get("grant_type")
        if _blank(grant_type):
            return OAuthResponse.error(400, "invalid_request", "grant_type is required")
        match grant_type:
            case "authorization_code":
                return self._exchange_code(form)
            case "refresh_token":
                return self._exchange_refresh_token(form)
            case _:
                return OAuthResponse.error(400, "unsupported_grant_type", f"Unsupported grant_type: {grant_type}")

    def _exchange_code(self, form: Mapping[str, str]) -> OAuthResponse:
        code = form.get("code")
        client_id = form.get("client_id")
        redirect_uri = form.get("redirect_uri")
        verifier = form.get("code_verifier")
        if any(_blank(v) for v in (code, client_id, redirect_uri, verifier)):
            return OAuthResponse.error(400, "invalid_request", "Missing required parameters")

        failure = self._authenticate_client(client_id, form)
        if failure is not None:
            return failure

        grant = self._codes.pop(code, None)
        if grant is None or grant.is_expired(self._clock()):
            return OAuthResponse.error(400, "invalid_grant", "Authorization code is invalid or expired")
        if not _constant_time_equals(client_id, grant.client_id) or not _constant_time_equals(
            redirect_uri, grant.redirect_uri
        ):
            return OAuthResponse.error(400, "invalid_grant", "Authorization code validation failed")
        if not _constant_time_equals(grant.code_challenge, generate_code_challenge(verifier)):
            return OAuthResponse.error(400, "invalid_grant", "PKCE verification failed")

        return OAuthResponse.json(200, self._issue_tokens(client_id, grant.scope))

    def _exchange_refresh_token(self, form: Mapping[str, str]) -> OAuthResponse:
        refresh_token = form.get("refresh_token")
        client_id = form.get("client_id")
        if _blank(refresh_token) or _blank(client_id):
            return OAuthResponse.error(400, "invalid_request", "Missing required parameters")

        failure = self._authenticate_client(client_id, form)
        if failure is not None:
            return failure

        # Refresh tokens are single use; a new pair is issued on success
        grant = self._refresh_tokens.pop(refresh_token, None)
        if grant is None or grant.is_expired(self._clock()) or not _constant_time_equals(grant.client_id, client_id):
            return OAuthResponse.error(400, "invalid_grant", "Refresh token is invalid or expired")

        return OAuthResponse.json(200, self._issue_tokens(client_id, grant.scope))

    def _authenticate_client(self, client_id: str, form: Mapping[str, str]) -> OAuthResponse | None:
        client = self._clients.get(client_id)
        if client is None:
            return OAuthResponse.error(401, "invalid_client", "Unknown client_id")
        if client.token_auth_method == AUTH_METHOD_NONE:
            return None
        if client.token_auth_method == AUTH_METHOD_SECRET_POST and _constant_time_equals(
            client.client_secret, form.get("client_secret")
        ):
            return None
        return OAuthResponse.error(401, "invalid_client", "Client authentication failed")

    def _issue_tokens(self, client_id: str, scope: str) -> dict[str, Any]:
        now = self._clock()
        access_token = secrets.token_urlsafe(32)
        refresh_token = secrets.token_urlsafe(32)
        self._access_tokens[access_token] = Grant(client_id=client_id, scope=scope, expires_at=now + ACCESS_TOKEN_TTL)
        self._refresh_tokens[refresh_token] = Grant(
            client_id=client_id, scope=scope, expires_at=now + REFRESH_TOKEN_TTL
        )
        logger.debug(f"Issued OAuth tokens for client {client_id}")
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": ACCESS_TOKEN_TTL,
            "refresh_token": refresh_token,
            "scope": scope,
        }

    def _cleanup_expired(self) -> float:
        now = self._clock()
        for grants in (self._codes, self._access_tokens, self._refresh_tokens):
            for key in [k for k, g in grants.items() if g.is_expired(now)]:
                del grants[key]
        return now
