"""
Outbound authentication for remote MCP servers.

Providers resolve per-request headers: none, static headers, or OAuth 2.1
bearer tokens with PKCE and refresh.
"""

from mcpilot.mcp.auth.base import AuthProvider, NoAuthProvider, StaticHeadersAuthProvider
from mcpilot.mcp.auth.token_store import (
    InMemorySecretStore,
    OAuthToken,
    SecretStore,
    TokenStore,
)
from mcpilot.mcp.auth.oauth import (
    OAuth2AuthProvider,
    OAuthError,
    OAuthService,
    build_auth_headers,
    generate_code_challenge,
    generate_code_verifier,
)

__all__ = [
    "AuthProvider",
    "NoAuthProvider",
    "StaticHeadersAuthProvider",
    "OAuthToken",
    "SecretStore",
    "InMemorySecretStore",
    "TokenStore",
    "OAuthService",
    "OAuthError",
    "OAuth2AuthProvider",
    "build_auth_headers",
    "generate_code_verifier",
    "generate_code_challenge",
]
