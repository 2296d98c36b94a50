"""Build the transport and auth provider for a configured MCP server."""

from __future__ import annotations

import logging

from mcpilot.mcp.auth.base import AuthProvider, NoAuthProvider, StaticHeadersAuthProvider
from mcpilot.mcp.auth.oauth import OAuth2AuthProvider, OAuthService
from mcpilot.mcp.auth.token_store import TokenStore
from mcpilot.mcp.config import AuthMode, McpServerConfig, TransportType
from mcpilot.mcp.transport.base import Transport
from mcpilot.mcp.transport.http import FallbackTransport, StreamableHTTPTransport
from mcpilot.mcp.transport.stdio import StdioTransport
from mcpilot.mcp.transport.types import TransportConfig

logger = logging.getLogger(__name__)


def create_auth_provider(
    config: McpServerConfig,
    token_store: TokenStore | None = None,
    oauth_service: OAuthService | None = None,
) -> AuthProvider:
    if config.auth_mode == AuthMode.STATIC_HEADERS:
        return StaticHeadersAuthProvider(config.static_headers)
    if config.auth_mode == AuthMode.OAUTH2:
        if config.oauth_profile_id and token_store is not None and oauth_service is not None:
            return OAuth2AuthProvider(
                profile_id=config.oauth_profile_id,
                resource_url=config.remote_url or "",
                token_store=token_store,
                oauth_service=oauth_service,
                client_id=config.oauth_client_id,
            )
        logger.warning(f"MCP server '{config.name}' uses OAuth2 without a profile, sending no credentials")
    return NoAuthProvider()


def _http_config(config: McpServerConfig, url: str, legacy_sse: bool) -> TransportConfig:
    # Static-header auth already injects these per request
    headers = {} if config.auth_mode == AuthMode.STATIC_HEADERS else dict(config.static_headers)
    return TransportConfig(
        url=url,
        timeout=config.request_timeout,
        connect_timeout=config.connection_timeout,
        headers=headers,
        allow_insecure_http=config.allow_insecure_http,
        legacy_sse=legacy_sse,
    )


def create_transport(
    config: McpServerConfig,
    token_store: TokenStore | None = None,
    oauth_service: OAuthService | None = None,
) -> Transport:
    """
    Create the transport described by ``config``.

    Raises:
        ValueError: If the config is incomplete or the URL is rejected.
    """
    if not config.is_valid():
        raise ValueError(f"Invalid MCP server config: {config.name!r}")

    if config.transport_type == TransportType.STDIO:
        return StdioTransport(
            command=config.command or "",
            args=config.args,
            env=config.env,
            cwd=config.working_directory,
        )

    auth = create_auth_provider(config, token_store, oauth_service)

    if config.transport_type == TransportType.HTTP_SSE_LEGACY:
        url = config.remote_sse_url or config.remote_url or ""
        return StreamableHTTPTransport(_http_config(config, url, legacy_sse=True), auth_provider=auth)

    primary = StreamableHTTPTransport(
        _http_config(config, config.remote_url or "", legacy_sse=False),
        auth_provider=auth,
    )
    if not config.allow_legacy_fallback:
        return primary

    fallback_url = config.remote_sse_url or config.remote_url or ""
    fallback = StreamableHTTPTransport(_http_config(config, fallback_url, legacy_sse=True), auth_provider=auth)
    return FallbackTransport(primary, fallback)
