"""Streamable HTTP endpoint for the inbound host (starlette app served by uvicorn)."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any
from urllib.parse import parse_qsl

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from mcpilot.lib import oj
from mcpilot.mcp.host.oauth import HostOAuthService, OAuthResponse
from mcpilot.mcp.host.router import HostRequestRouter
from mcpilot.mcp.host.session import HostSession, HostSessionStore
from mcpilot.mcp.protocol.errors import MCPError

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
SSE_MEDIA_TYPE = "text/event-stream"
SSE_READY = 'event: ready\ndata: {"status":"ok"}\n\n'
STARTUP_TIMEOUT = 10.0
_NO_CACHE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class OrjsonResponse(JSONResponse):
    def render(self, content: Any) -> bytes:
        return oj.dumpb(content)


def _error(status_code: int, error: str, description: str | None = None, headers=None) -> Response:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return OrjsonResponse(body, status_code=status_code, headers=headers)


def _method_not_allowed() -> Response:
    return _error(405, "method_not_allowed")


def _accepts_sse(request: Request) -> bool:
    return SSE_MEDIA_TYPE in request.headers.get("accept", "")


def _oauth_response(response: OAuthResponse) -> Response:
    if response.is_redirect:
        return RedirectResponse(response.location, status_code=response.status_code, headers=_NO_CACHE)
    return OrjsonResponse(response.body or {}, status_code=response.status_code, headers=_NO_CACHE)


def create_app(
    router: HostRequestRouter,
    oauth: HostOAuthService,
    sessions: HostSessionStore,
) -> Starlette:
    """
    Build the host's ASGI application.

    Routes:
        ``/mcp``: POST JSON-RPC, GET SSE ready event, DELETE ends a session.
        ``/health``: liveness.
        OAuth metadata, registration, authorize and token endpoints, also
        under the short ``/register``, ``/authorize`` and ``/token`` aliases.

    Anything else is a JSON 404. Wrong methods are a JSON 405.
    """

    def unauthorized() -> Response:
        return _error(
            401,
            "unauthorized",
            "Bearer token is missing, invalid or expired",
            headers={"WWW-Authenticate": oauth.www_authenticate()},
        )

    async def mcp_endpoint(request: Request) -> Response:
        if request.method == "GET":
            if _accepts_sse(request):
                return Response(
                    SSE_READY,
                    media_type=SSE_MEDIA_TYPE,
                    headers={"Cache-Control": "no-cache"},
                )
            return _method_not_allowed()
        if request.method == "DELETE":
            return await end_session(request)
        if request.method != "POST":
            return _method_not_allowed()

        if not oauth.is_authorized(request.headers.get("authorization")):
            return unauthorized()

        try:
            message = oj.loads(await request.body())
        except oj.JSONDecodeError:
            error = MCPError.parse_error()
            return OrjsonResponse({"jsonrpc": "2.0", "id": None, "error": error.to_dict()}, status_code=400)

        # Only initialize mints a tracked session; other header-less calls get a throwaway one
        requested_id = request.headers.get(SESSION_HEADER, "").strip()
        if requested_id:
            session = sessions.get_or_create(requested_id)
        elif isinstance(message, dict) and message.get("method") == "initialize":
            session = sessions.create()
        else:
            session = None
        headers = {SESSION_HEADER: session.session_id} if session is not None else {}
        if session is None:
            session = HostSession()

        try:
            response = await router.route(message, session)
        except Exception:
            logger.exception("Unhandled MCP HTTP handler error")
            return _error(500, "internal_error")

        if response is None:
            return Response(status_code=202, headers=headers)
        if _accepts_sse(request):
            payload = f"event: message\ndata: {oj.dumps(response)}\n\n"
            return Response(payload, media_type=SSE_MEDIA_TYPE, headers=headers)
        return OrjsonResponse(response, headers=headers)

    async def end_session(request: Request) -> Response:
        if not oauth.is_authorized(request.headers.get("authorization")):
            return unauthorized()
        session = sessions.remove(request.headers.get(SESSION_HEADER))
        if session is None:
            return _error(404, "session_not_found")
        logger.info(f"MCP host session {session.session_id} closed by {session.client_label}")
        return Response(status_code=204)

    async def health(request: Request) -> Response:
        return PlainTextResponse("ok")

    async def authorization_metadata(request: Request) -> Response:
        if request.method != "GET":
            return _method_not_allowed()
        return OrjsonResponse(oauth.authorization_server_metadata())

    async def protected_resource_metadata(request: Request) -> Response:
        if request.method != "GET":
            return _method_not_allowed()
        return OrjsonResponse(oauth.protected_resource_metadata())

    async def register(request: Request) -> Response:
        if request.method != "POST":
            return _method_not_allowed()
        body = await request.body()
        try:
            payload = oj.loads(body) if body.strip() else {}
        except oj.JSONDecodeError:
            return _error(400, "invalid_client_metadata", "Invalid JSON body")
        if not isinstance(payload, dict):
            return _error(400, "invalid_client_metadata", "Invalid JSON body")
        return _oauth_response(oauth.register_client(payload))

    async def authorize(request: Request) -> Response:
        if request.method != "GET":
            return _method_not_allowed()
        return _oauth_response(oauth.authorize(dict(request.query_params)))

    async def token(request: Request) -> Response:
        if request.method != "POST":
            return _method_not_allowed()
        body = (await request.body()).decode("utf-8", errors="replace")
        return _oauth_response(oauth.exchange_token(dict(parse_qsl(body, keep_blank_values=True))))

    async def not_found(request: Request) -> Response:
        return _error(404, "not_found")

    routes = [
        Route("/mcp", mcp_endpoint, methods=ALL_METHODS),
        Route("/health", health, methods=ALL_METHODS),
        Route("/.well-known/oauth-authorization-server", authorization_metadata, methods=ALL_METHODS),
        Route("/.well-known/openid-configuration", authorization_metadata, methods=ALL_METHODS),
        Route("/.well-known/oauth-protected-resource", protected_resource_metadata, methods=ALL_METHODS),
        Route("/.well-known/oauth-protected-resource/{resource:path}", protected_resource_metadata, methods=ALL_METHODS),
    ]
    for prefix in ("/oauth", ""):
        routes += [
            Route(f"{prefix}/register", register, methods=ALL_METHODS),
            Route(f"{prefix}/authorize", authorize, methods=ALL_METHODS),
            Route(f"{prefix}/token", token, methods=ALL_METHODS),
        ]
    routes.append(Route("/{path:path}", not_found, methods=ALL_METHODS))

    return Starlette(routes=routes)


class HostHttpTransport:
    """
    Runs the host app on a uvicorn server inside the current event loop.

    The listening socket is bound in :meth:`start`, so address errors
    surface there and ``port=0`` picks a free port (see :attr:`port`).
    """

    def __init__(
        self,
        bind_address: str,
        port: int,
        router: HostRequestRouter,
        oauth: HostOAuthService,
        sessions: HostSessionStore | None = None,
    ):
        self.bind_address = bind_address
        self.port = port
        self.router = router
        self.oauth = oauth
        self.sessions = sessions if sessions is not None else HostSessionStore()
        self.app = create_app(router, oauth, self.sessions)

        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    async def start(self) -> None:
        if self.is_running:
            return

        family = socket.AF_INET6 if ":" in self.bind_address else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_address, self.port))
        except OSError:
            sock.close()
            raise
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_level="info",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]), name="mcp-host-http")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not self._server.started:
            if self._serve_task.done():
                self._serve_task.result()
                raise RuntimeError("MCP host HTTP server exited during startup")
            if loop.time() > deadline:
                await self.stop()
                raise RuntimeError("MCP host HTTP server did not start in time")
            await asyncio.sleep(0.05)

        logger.info(f"MCP host HTTP transport started on {self.bind_address}:{self.port}")

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await asyncio.wait_for(self._serve_task, timeout=STARTUP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("MCP host HTTP server did not stop in time, cancelling")
                self._serve_task.cancel()
                await asyncio.gather(self._serve_task, return_exceptions=True)
        self._server = None
        self._serve_task = None
        self.sessions.clear()
        logger.info("MCP host HTTP transport stopped")
