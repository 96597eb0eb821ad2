"""HTTP transport: CORS middleware and the uvicorn runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from titulky.config import Settings

log = structlog.get_logger()

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Accept, Authorization"
PREFLIGHT_MAX_AGE = "86400"


class CORSMiddleware:
    """Pure ASGI middleware adding CORS headers to every HTTP response.

    Media players fetch subtitle URLs cross-origin, so every response
    carries ``Access-Control-Allow-Origin``. Preflight ``OPTIONS`` requests
    are answered directly without reaching the app.

    Implemented as pure ASGI (not BaseHTTPMiddleware) so that response
    bodies are never buffered by the middleware layer.
    """

    def __init__(self, app: ASGIApp, *, allow_origin: str = "*") -> None:
        self.app = app
        self.allow_origin = allow_origin

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        if scope["method"] == "OPTIONS" and "access-control-request-method" in headers:
            response = Response(
                status_code=204,
                headers={
                    "Access-Control-Allow-Origin": self.allow_origin,
                    "Access-Control-Allow-Methods": ALLOWED_METHODS,
                    "Access-Control-Allow-Headers": ALLOWED_HEADERS,
                    "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
                },
            )
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = MutableHeaders(scope=message)
                response_headers["Access-Control-Allow-Origin"] = self.allow_origin
            await send(message)

        await self.app(scope, receive, send_with_cors)


def run_http_server(app: ASGIApp, settings: Settings) -> None:
    """Serve the app with uvicorn behind the CORS middleware."""
    http_log = log.bind(transport="http")
    http_log.info("http_server_starting", host=settings.server.host, port=settings.server.port)

    uvicorn.run(
        CORSMiddleware(app, allow_origin=settings.server.cors_allow_origin),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )
