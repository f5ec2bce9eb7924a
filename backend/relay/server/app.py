from __future__ import annotations

import contextlib
import time
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from relay.messaging.router import MessageRouter
from relay.server.settings import RelayServerSettings
from relay.server.websocket import websocket_endpoint
from relay.session.bindings import ConnectionRegistry
from relay.session.engine import RelayEngine
from relay.session.heartbeat import HeartbeatMonitor
from relay.session.janitor import SessionJanitor
from relay.session.legacy import LegacyAdapter
from relay.session.models import to_millis
from relay.session.session_store import SessionStore
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

ROOT_MESSAGE = "Rinascimento Oscuro relay server"


async def root(request: Request) -> JSONResponse:
    store: SessionStore = request.app.state.store
    return JSONResponse(
        {
            "message": ROOT_MESSAGE,
            "status": "ok",
            "sessions": store.session_count,
            "timestamp": to_millis(store.now()),
        },
    )


async def health(request: Request) -> JSONResponse:
    store: SessionStore = request.app.state.store
    return JSONResponse(
        {
            "status": "ok",
            "sessions": store.session_count,
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
        },
    )


async def list_sessions(request: Request) -> JSONResponse:
    store: SessionStore = request.app.state.store
    return JSONResponse({"sessions": [info.model_dump() for info in store.list_sessions()]})


def create_app(
    settings: RelayServerSettings | None = None,
    store: SessionStore | None = None,
    bindings: ConnectionRegistry | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = RelayServerSettings()

    if store is None:
        store = SessionStore(id_prefix=settings.session_id_prefix)
    if bindings is None:
        bindings = ConnectionRegistry()

    janitor = SessionJanitor(
        store,
        interval_seconds=settings.janitor_interval_seconds,
        idle_seconds=settings.session_idle_seconds,
    )
    heartbeat = HeartbeatMonitor(bindings, timeout_seconds=settings.heartbeat_timeout_seconds)

    if message_router is None:
        engine = RelayEngine(store, bindings)
        message_router = MessageRouter(engine, legacy=LegacyAdapter(engine), heartbeat=heartbeat)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router)

    routes = [
        Route("/", root, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
        Route("/sessions", list_sessions, methods=["GET"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        janitor.start()
        heartbeat.start()
        logger.info("relay server started", sessions=store.session_count)
        try:
            yield
        finally:
            await heartbeat.stop()
            await janitor.stop()
            logger.info("relay server stopped")

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.bindings = bindings
    app.state.janitor = janitor
    app.state.heartbeat = heartbeat
    app.state.started_at = time.monotonic()

    logger.info("relay server ready")
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = RelayServerSettings()
    setup_logging(level=settings.log_level, log_format=settings.log_format, log_dir=settings.log_dir)
    return create_app(settings=settings)
