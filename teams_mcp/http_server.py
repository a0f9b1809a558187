"""HTTP mode: health endpoint plus the MCP request dispatcher, served by uvicorn."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import anyio
import uvicorn
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Message, Receive, Scope, Send

from . import SERVER_NAME, __version__
from .config import ServerSettings
from .graph import GraphClientProvider
from .server import build_provider, build_server
from .session import session_context
from .transport_cache import TransportSessionCache

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_CODE = -32000
INTERNAL_ERROR_CODE = -32603
NO_CACHE = b"no-cache, no-store, must-revalidate"


async def health(request: Request) -> JSONResponse:
    return JSONResponse({
        "status": "healthy",
        "server": SERVER_NAME,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    })


class _ResponseGuard:
    """Wraps ASGI ``send`` so a request gets exactly one response.

    Once the dispatcher has written its own error response, anything the (cancelled)
    transport still tries to send is dropped.
    """

    def __init__(self, send: Send):
        self._send = send
        self.started = False
        self.finished = False
        self.status: Optional[int] = None

    async def __call__(self, message: Message) -> None:
        if self.finished:
            return
        if message["type"] == "http.response.start":
            if self.started:
                return
            self.started = True
            self.status = message["status"]
            headers = list(message.get("headers", []))
            if not any(name.lower() == b"cache-control" for name, _ in headers):
                headers.append((b"cache-control", NO_CACHE))
            message = {**message, "headers": headers}
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.finished = True
        await self._send(message)

    async def error(self, status: int, code: int, text: str) -> None:
        """Write a JSON-RPC error if nothing was sent yet, otherwise end the body."""
        if self.finished:
            return
        if not self.started:
            body = json.dumps({
                "jsonrpc": "2.0",
                "error": {"code": code, "message": text},
                "id": None,
            }).encode()
            await self({
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                ],
            })
            await self({"type": "http.response.body", "body": body})
        else:
            await self({"type": "http.response.body", "body": b"", "more_body": False})


class RequestDispatcher:
    """ASGI app that routes MCP traffic to cached transport sessions.

    Per request: derive the session id (client header or a fresh one), run the
    transport inside that session's logging context, and answer with a JSON-RPC
    timeout error if handling exceeds ``request_timeout``. The timeout cancels the
    handling task; tool calls carry their own deadline of the same length.
    """

    def __init__(self, cache: TransportSessionCache, request_timeout: float = 25.0):
        self.cache = cache
        self.request_timeout = request_timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return
        method, path = scope["method"], scope["path"]
        client_session_id = Headers(scope=scope).get(MCP_SESSION_ID_HEADER)
        session_id = client_session_id or uuid4().hex
        guard = _ResponseGuard(send)

        with session_context(session_id):
            logger.info("Received request: %s %s", method, path)
            with anyio.move_on_after(self.request_timeout) as deadline:
                try:
                    session = await self.cache.acquire(session_id, resume=client_session_id is not None)
                    logger.debug("Using cached transport %s", session.id)
                    with session.in_use():
                        await session.transport.handle_request(scope, receive, guard)
                    if session.transport.is_terminated:
                        self.cache.discard(session)
                except Exception:
                    logger.exception("Error handling request %s %s", method, path)
                    await guard.error(500, INTERNAL_ERROR_CODE, "Internal server error")

            if deadline.cancelled_caught:
                logger.warning("Request timeout for %s %s", method, path)
                await guard.error(408, REQUEST_TIMEOUT_CODE, "Request timeout")

            logger.info("Response: %s %s - Status: %s", method, path, guard.status)


def create_app(
    settings: ServerSettings,
    provider: Optional[GraphClientProvider] = None,
    cache: Optional[TransportSessionCache] = None,
) -> Starlette:
    """Build the HTTP application. ``GET /health`` never reaches the session cache."""
    if provider is None:
        provider = build_provider(settings)
    if cache is None:
        cache = TransportSessionCache(
            lambda: build_server(provider, settings.request_timeout),
            maxsize=settings.session_cache_size,
            ttl=settings.session_ttl,
            drain_timeout=settings.request_timeout,
        )
    dispatcher = RequestDispatcher(cache, settings.request_timeout)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        async with cache.run():
            logger.info(
                "Microsoft Teams MCP Server listening on http://%s:%d/mcp",
                settings.host, settings.port,
            )
            try:
                yield
            finally:
                await provider.aclose()

    app = Starlette(
        routes=[
            Route("/health", endpoint=health, methods=["GET"]),
            Mount("/", app=dispatcher),
        ],
        lifespan=lifespan,
    )
    app.state.cache = cache
    app.state.provider = provider
    return app


def run_http(settings: ServerSettings) -> None:
    """Serve over HTTP until interrupted. Malformed HTTP gets uvicorn's 400 reply."""
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=5,
        log_level=settings.log_level.lower(),
    )
