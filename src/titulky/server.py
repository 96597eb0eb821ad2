"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState in the Starlette lifespan context manager
- Map routes onto handlers and errors onto the JSON envelope
- Start uvicorn
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote

import aiosqlite
import structlog
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

import titulky.handlers.convert_subtitle as h_convert
import titulky.handlers.search_subtitles as h_search
import titulky.handlers.serve_custom_subtitle as h_custom
import titulky.handlers.serve_subtitle as h_serve
from titulky import __version__
from titulky.cache import SubtitleCache
from titulky.config import Settings
from titulky.download import DownloadPipeline
from titulky.errors import ErrorCode, TitulkyError
from titulky.schedulers import run_local_cache_sweeper, run_store_index_loader
from titulky.search import SearchEngine
from titulky.session import SessionPool, build_http_client
from titulky.state import AppState
from titulky.store import SqliteObjectStore
from titulky.transport import run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings: Settings = app.state.settings

    log.info("server_starting", version=__version__, base_url=settings.site.base_url)
    if not settings.site.username:
        log.warning(
            "site_credentials_missing",
            message="Requests without their own credentials will return no results",
        )

    http_client = build_http_client(settings.site)
    sessions = SessionPool(settings.site, http_client)
    session = sessions.default

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = SqliteObjectStore(db)
    await store.init_db()

    pipeline = DownloadPipeline(session, settings.download)
    cache = SubtitleCache(store, pipeline, memory_ttl_seconds=settings.cache.memory_ttl_seconds)

    state = AppState(
        settings=settings,
        session=session,
        search_engine=SearchEngine(session),
        store=store,
        cache=cache,
        http_client=http_client,
        sessions=sessions,
    )
    app.state.app_state = state

    index_task = asyncio.create_task(run_store_index_loader(state))
    sweeper_task = asyncio.create_task(run_local_cache_sweeper(state))

    log.info("server_started", version=__version__, db_path=str(db_path))

    try:
        yield
    finally:
        index_task.cancel()
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await index_task
        with suppress(asyncio.CancelledError):
            await sweeper_task
        await sessions.aclose()
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNSUPPORTED_FORMAT: 415,
    ErrorCode.NOT_FOUND: 404,
}


def _error_response(route: str, error: TitulkyError) -> JSONResponse:
    """Convert a TitulkyError to the JSON error envelope."""
    log.warning(
        "route_error",
        route=route,
        code=error.code,
        message=error.message,
        recoverable=error.recoverable,
    )
    return JSONResponse(error.to_dict(), status_code=_ERROR_STATUS.get(error.code, 502))


def _int_param(request: Request, name: str) -> int | None:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Query parameter '{name}' must be an integer, got {raw!r}",
        ) from exc


def _bool_param(request: Request, name: str) -> bool:
    return request.query_params.get(name, "").lower() in ("1", "true", "yes", "on")


def _credentials(request: Request) -> tuple[str, str]:
    """titulky.com account from an HTTP Basic Authorization header, if any."""
    header = request.headers.get("authorization", "")
    if not header:
        return "", ""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic":
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Unsupported authorization scheme {scheme!r}, expected Basic",
        )
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message="Malformed Basic authorization header",
        ) from exc
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message="Basic authorization must carry username:password",
        )
    return username, password


async def healthz(request: Request) -> JSONResponse:
    state: AppState = request.app.state.app_state
    return JSONResponse(
        {
            "status": "ok",
            "version": __version__,
            "authenticated": state.session.is_fresh(),
            "cached_subtitles": len(state.cache.cached_ids),
        }
    )


async def search(request: Request) -> Response:
    """Search titulky.com and return ranked subtitles as JSON."""
    state: AppState = request.app.state.app_state
    params = request.query_params
    try:
        username, password = _credentials(request)
        limit = _int_param(request, "limit")
        result = await h_search.handle(
            params.getlist("title"),
            state,
            kind="series" if params.get("kind") == "series" else "movie",
            work_id=params.get("work_id", ""),
            season=_int_param(request, "season"),
            episode=_int_param(request, "episode"),
            target_name=params.get("target_name", ""),
            playing_filename=params.get("filename", ""),
            prefer_cached=_bool_param(request, "prefer_cached"),
            limit=limit if limit is not None else 10,
            username=username,
            password=password,
        )
    except TitulkyError as exc:
        return _error_response("search", exc)
    except Exception:
        log.error("route_unexpected_error", route="search", exc_info=True)
        raise
    return JSONResponse(result)


async def serve_subtitle(request: Request) -> Response:
    """Serve one subtitle as plain text, or WebVTT with ``?vtt=1``."""
    state: AppState = request.app.state.app_state
    try:
        username, password = _credentials(request)
        result = await h_serve.handle(
            request.path_params["sub_id"],
            request.path_params["link_file"],
            state,
            vtt=_bool_param(request, "vtt"),
            username=username,
            password=password,
        )
    except TitulkyError as exc:
        return _error_response("serve_subtitle", exc)
    except Exception:
        log.error("route_unexpected_error", route="serve_subtitle", exc_info=True)
        raise

    disposition = "inline" if result["media_type"].startswith("text/vtt") else "attachment"
    return Response(
        result["content"],
        media_type=result["media_type"],
        headers={
            "Content-Disposition": f"{disposition}; filename=\"{quote(result['filename'])}\"",
            "X-Subtitle-Source": result["source"],
        },
    )


async def serve_custom_subtitle(request: Request) -> Response:
    """Serve a user-supplied subtitle, as WebVTT where it can be rendered."""
    return await _custom_response(request, raw=False)


async def serve_custom_subtitle_raw(request: Request) -> Response:
    """Serve a user-supplied subtitle exactly as stored, as plain text."""
    return await _custom_response(request, raw=True)


async def _custom_response(request: Request, *, raw: bool) -> Response:
    state: AppState = request.app.state.app_state
    route = "serve_custom_subtitle_raw" if raw else "serve_custom_subtitle"
    try:
        result = await h_custom.handle(
            request.path_params["work_key"],
            request.path_params["filename"],
            state,
            raw=raw,
        )
    except TitulkyError as exc:
        return _error_response(route, exc)
    except Exception:
        log.error("route_unexpected_error", route=route, exc_info=True)
        raise

    return Response(
        result["content"],
        media_type=result["media_type"],
        headers={"Content-Disposition": f"inline; filename=\"{quote(result['filename'])}\""},
    )


async def convert_subtitle(request: Request) -> Response:
    """Convert the raw request body to WebVTT. ``?format=`` names the source format."""
    try:
        result = await h_convert.handle(
            await request.body(), request.query_params.get("format", "srt")
        )
    except TitulkyError as exc:
        return _error_response("convert_subtitle", exc)
    except Exception:
        log.error("route_unexpected_error", route="convert_subtitle", exc_info=True)
        raise
    return Response(result["content"], media_type=result["media_type"])


def create_app(settings: Settings | None = None, *, with_lifespan: bool = True) -> Starlette:
    """Build the Starlette app.

    Without the lifespan, the caller sets ``app.state.app_state`` itself.
    """
    app = Starlette(
        routes=[
            Route("/healthz", healthz, methods=["GET"]),
            Route("/search", search, methods=["GET"]),
            Route("/sub/{sub_id}/{link_file}", serve_subtitle, methods=["GET"]),
            Route("/custom-sub/{work_key}/{filename}", serve_custom_subtitle, methods=["GET"]),
            Route(
                "/custom-sub-raw/{work_key}/{filename}",
                serve_custom_subtitle_raw,
                methods=["GET"],
            ),
            Route("/convert", convert_subtitle, methods=["POST"]),
        ],
        lifespan=lifespan if with_lifespan else None,
    )
    app.state.settings = settings or Settings()
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)
    run_http_server(create_app(settings), settings)


if __name__ == "__main__":
    main()
