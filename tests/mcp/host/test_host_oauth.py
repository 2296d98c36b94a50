"""Tests for the host's embedded OAuth authorization server."""

from urllib.parse import parse_qs, urlsplit

import pytest

from mcpilot.mcp.auth.oauth import generate_code_challenge, generate_code_verifier
from mcpilot.mcp.host import HostAuthMode, HostOAuthService
from mcpilot.mcp.host.oauth import ACCESS_TOKEN_TTL, AUTH_CODE_TTL, append_query, normalize_host

REDIRECT = "http://127.0.0.1:9999/callback"


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def oauth(clock):
    return HostOAuthService("127.0.0.1", 8765, static_bearer_token="static-token", clock=clock)


def _authorize(oauth, client_id, verifier, **overrides):
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": REDIRECT,
        "code_challenge": generate_code_challenge(verifier),
        "code_challenge_method": "S256",
        "state": "xyz",
    }
    query.update(overrides)
    return oauth.authorize({k: v for k, v in query.items() if v is not None})


def _code(response):
    return parse_qs(urlsplit(response.location).query)["code"][0]


def _tokens(oauth, client_id="cli", **form):
    verifier = generate_code_verifier()
    code = _code(_authorize(oauth, client_id, verifier))
    response = oauth.exchange_token(
        {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
            **form,
        }
    )
    assert response.status_code == 200, response.body
    return response.body


class TestMetadata:
    """Tests for issuer and discovery documents."""

    def test_issuer_normalization(self):
        assert normalize_host("0.0.0.0") == "127.0.0.1"
        assert normalize_host("::1") == "[::1]"
        assert normalize_host("") == "127.0.0.1"
        assert HostOAuthService("0.0.0.0", 9000).issuer == "http://127.0.0.1:9000"

    def test_protected_resource_metadata(self, oauth):
        metadata = oauth.protected_resource_metadata()
        assert metadata["resource"] == "http://127.0.0.1:8765/mcp"
        assert metadata["authorization_servers"] == ["http://127.0.0.1:8765"]

    def test_authorization_server_metadata(self, oauth):
        metadata = oauth.authorization_server_metadata()
        assert metadata["token_endpoint"] == "http://127.0.0.1:8765/oauth/token"
        assert metadata["code_challenge_methods_supported"] == ["S256"]
        assert metadata["token_endpoint_auth_methods_supported"] == ["none", "client_secret_post"]

    def test_www_authenticate(self, oauth):
        assert oauth.www_authenticate() == (
            'Bearer realm="mcpilot", '
            'resource_metadata="http://127.0.0.1:8765/.well-known/oauth-protected-resource", '
            'scope="mcp"'
        )

    def test_append_query_keeps_fragment(self):
        assert append_query("app://cb?x=1#frag", {"code": "c"}) == "app://cb?x=1&code=c#frag"


class TestRegistration:
    """Tests for dynamic client registration."""

    def test_public_client(self, oauth):
        response = oauth.register_client({"redirect_uris": [REDIRECT]})

        assert response.status_code == 201
        assert response.body["client_id"].startswith("mcpilot_")
        assert "client_secret" not in response.body
        assert response.body["token_endpoint_auth_method"] == "none"

    def test_secret_post_client(self, oauth):
        response = oauth.register_client(
            {"redirect_uris": [REDIRECT], "token_endpoint_auth_method": "client_secret_post"}
        )
        assert response.body["client_secret"]
        assert response.body["client_secret_expires_at"] == 0

    @pytest.mark.parametrize(
        "request_body",
        [
            {},
            {"redirect_uris": []},
            {"redirect_uris": ["javascript:alert(1)"]},
            {"redirect_uris": ["no-scheme"]},
            {"redirect_uris": [REDIRECT], "token_endpoint_auth_method": "private_key_jwt"},
        ],
    )
    def test_invalid_metadata(self, oauth, request_body):
        response = oauth.register_client(request_body)
        assert response.status_code == 400
        assert response.body["error"] == "invalid_client_metadata"


class TestAuthorize:
    """Tests for the authorization endpoint."""

    def test_redirect_carries_code_state_and_issuer(self, oauth):
        response = _authorize(oauth, "cli", generate_code_verifier())

        assert response.is_redirect
        assert response.status_code == 302
        query = parse_qs(urlsplit(response.location).query)
        assert query["state"] == ["xyz"]
        assert query["iss"] == ["http://127.0.0.1:8765"]
        assert response.location.startswith(REDIRECT + "?code=")

    @pytest.mark.parametrize(
        "overrides,error",
        [
            ({"response_type": "token"}, "unsupported_response_type"),
            ({"client_id": " "}, "invalid_request"),
            ({"redirect_uri": "javascript:x"}, "invalid_request"),
            ({"code_challenge": None}, "invalid_request"),
            ({"code_challenge_method": "plain"}, "invalid_request"),
            ({"scope": "openid"}, "invalid_scope"),
        ],
    )
    def test_invalid_requests(self, oauth, overrides, error):
        overrides = dict(overrides)
        client_id = overrides.pop("client_id", "cli")
        response = _authorize(oauth, client_id, generate_code_verifier(), **overrides)
        assert response.status_code == 400
        assert response.body["error"] == error

    def test_unregistered_redirect_rejected(self, oauth):
        client_id = oauth.register_client({"redirect_uris": ["http://localhost/a"]}).body["client_id"]

        response = _authorize(oauth, client_id, generate_code_verifier())

        assert response.status_code == 400
        assert response.body["error_description"] == "redirect_uri is not registered"

    def test_unknown_client_is_bound_to_first_redirect(self, oauth):
        _authorize(oauth, "cli", generate_code_verifier())
        response = _authorize(oauth, "cli", generate_code_verifier(), redirect_uri="http://localhost/other")
        assert response.status_code == 400


class TestTokenExchange:
    """Tests for the token endpoint."""

    def test_code_exchange(self, oauth):
        body = _tokens(oauth)

        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == ACCESS_TOKEN_TTL
        assert body["scope"] == "mcp"
        assert oauth.is_authorized(f"Bearer {body['access_token']}")

    def test_code_is_single_use(self, oauth):
        verifier = generate_code_verifier()
        form = {
            "grant_type": "authorization_code",
            "code": _code(_authorize(oauth, "cli", verifier)),
            "client_id": "cli",
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
        }
        assert oauth.exchange_token(form).status_code == 200

        response = oauth.exchange_token(form)
        assert response.status_code == 400
        assert response.body["error"] == "invalid_grant"

    def test_pkce_mismatch(self, oauth):
        code = _code(_authorize(oauth, "cli", generate_code_verifier()))
        response = oauth.exchange_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": "cli",
                "redirect_uri": REDIRECT,
                "code_verifier": generate_code_verifier(),
            }
        )
        assert response.body == {"error": "invalid_grant", "error_description": "PKCE verification failed"}

    def test_expired_code(self, oauth, clock):
        verifier = generate_code_verifier()
        code = _code(_authorize(oauth, "cli", verifier))
        clock.now += AUTH_CODE_TTL + 1

        response = oauth.exchange_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": "cli",
                "redirect_uri": REDIRECT,
                "code_verifier": verifier,
            }
        )
        assert response.body["error"] == "invalid_grant"

    def test_redirect_mismatch(self, oauth):
        verifier = generate_code_verifier()
        code = _code(_authorize(oauth, "cli", verifier))
        response = oauth.exchange_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": "cli",
                "redirect_uri": "http://127.0.0.1:9999/other",
                "code_verifier": verifier,
            }
        )
        assert response.body["error_description"] == "Authorization code validation failed"

    @pytest.mark.parametrize(
        "form,status,error",
        [
            ({}, 400, "invalid_request"),
            ({"grant_type": "client_credentials"}, 400, "unsupported_grant_type"),
            ({"grant_type": "authorization_code", "code": "c"}, 400, "invalid_request"),
            ({"grant_type": "refresh_token", "client_id": "cli"}, 400, "invalid_request"),
            (
                {
                    "grant_type": "authorization_code",
                    "code": "c",
                    "client_id": "ghost",
                    "redirect_uri": REDIRECT,
                    "code_verifier": "v",
                },
                401,
                "invalid_client",
            ),
        ],
    )
    def test_invalid_token_requests(self, oauth, form, status, error):
        response = oauth.exchange_token(form)
        assert response.status_code == status
        assert response.body["error"] == error

    def test_refresh_rotation(self, oauth):
        first = _tokens(oauth)

        response = oauth.exchange_token(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "client_id": "cli"}
        )
        second = response.body

        assert response.status_code == 200
        assert second["refresh_token"] != first["refresh_token"]
        assert oauth.is_authorized(f"Bearer {second['access_token']}")

        reused = oauth.exchange_token(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "client_id": "cli"}
        )
        assert reused.status_code == 400
        assert reused.body["error"] == "invalid_grant"

    def test_refresh_for_other_client_rejected(self, oauth):
        tokens = _tokens(oauth)
        _authorize(oauth, "other", generate_code_verifier())

        response = oauth.exchange_token(
            {"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], "client_id": "other"}
        )
        assert response.body["error"] == "invalid_grant"

    def test_confidential_client_needs_secret(self, oauth):
        registered = oauth.register_client(
            {"redirect_uris": [REDIRECT], "token_endpoint_auth_method": "client_secret_post"}
        ).body
        client_id = registered["client_id"]

        verifier = generate_code_verifier()
        form = {
            "grant_type": "authorization_code",
            "code": _code(_authorize(oauth, client_id, verifier)),
            "client_id": client_id,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
        }
        denied = oauth.exchange_token({**form, "client_secret": "wrong"})
        assert denied.status_code == 401
        assert denied.body["error"] == "invalid_client"

        # The code survives a failed client authentication
        allowed = oauth.exchange_token({**form, "client_secret": registered["client_secret"]})
        assert allowed.status_code == 200


class TestIsAuthorized:
    """Tests for bearer checks under each auth mode."""

    def test_static_token(self, oauth):
        assert oauth.is_authorized("Bearer static-token")
        assert oauth.is_authorized("bearer static-token")
        assert not oauth.is_authorized("Bearer wrong")
        assert not oauth.is_authorized("Basic static-token")
        assert not oauth.is_authorized(None)

    def test_access_token_expires(self, oauth, clock):
        token = _tokens(oauth)["access_token"]
        clock.now += ACCESS_TOKEN_TTL + 1
        assert not oauth.is_authorized(f"Bearer {token}")

    def test_bearer_only(self, clock):
        oauth = HostOAuthService("127.0.0.1", 8765, "static-token", HostAuthMode.BEARER_ONLY, clock=clock)
        token = _tokens(oauth)["access_token"]

        assert oauth.is_authorized("Bearer static-token")
        assert not oauth.is_authorized(f"Bearer {token}")

    def test_oauth_only(self, clock):
        oauth = HostOAuthService("127.0.0.1", 8765, "static-token", HostAuthMode.OAUTH_ONLY, clock=clock)
        token = _tokens(oauth)["access_token"]

        assert not oauth.is_authorized("Bearer static-token")
        assert oauth.is_authorized(f"Bearer {token}")

    def test_none(self):
        assert HostOAuthService("127.0.0.1", 8765, auth_mode=HostAuthMode.NONE).is_authorized(None)
