# main.py

"""FastAPI application exposing the table and order reconciliation core."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, StoreBackend, get_settings

from .db import get_engine
from .errors import PosError
from .events import ChangeFeed
from .gateway import PayOSClient
from .middlewares import LoggingMiddleware, PrometheusMiddleware, RequestIdMiddleware
from .obs import capture_exception, configure_logging, init_sentry
from .routes_menu import router as menu_router
from .routes_metrics import router as metrics_router
from .routes_orders import router as orders_router
from .routes_payments import router as payments_router
from .routes_reports import router as reports_router
from .routes_tables import router as tables_router
from .routes_tables_sse import router as tables_sse_router
from .services import build_services
from .store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from .utils.clock import utcnow
from .utils.responses import err, error_response, ok

logger = logging.getLogger("api")


def build_store(settings: Settings, feed: ChangeFeed | None = None) -> DocumentStore:
    """Return the document store selected by ``settings.store_backend``."""

    if settings.store_backend == StoreBackend.SQL:
        return SqlDocumentStore(get_engine(settings.database_url), feed)
    return InMemoryDocumentStore(feed)


def create_app(
    settings: Settings | None = None,
    *,
    store: DocumentStore | None = None,
    gateway: PayOSClient | None = None,
    redis_client=None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Build the API with explicit collaborators.

    Anything not passed in is constructed from ``settings``.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level.upper())
    init_sentry(settings.error_dsn)

    if redis_client is None and settings.redis_url:
        redis_client = redis.from_url(settings.redis_url)
    feed = ChangeFeed(redis_client) if redis_client is not None else None
    if store is None:
        store = build_store(settings, feed)
    elif feed is not None and store.feed is None:
        store.feed = feed
    services = build_services(store, gateway or PayOSClient.from_settings(settings), clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(feed.run(store)) if feed is not None else None
        logger.info("smartorder started with %s store", settings.store_backend.value)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            await services.aclose()
            if redis_client is not None:
                await redis_client.aclose()

    app = FastAPI(title="Smart Order API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.state.feed = feed

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        logger.warning(
            exc.message,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else "invalid request"
        return JSONResponse(err("VALIDATION_ERROR", message), status_code=422)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(exc.detail, extra={"status": exc.status_code, "route": request.url.path})
        return JSONResponse(err(exc.status_code, exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", extra={"status": 500, "route": request.url.path})
        capture_exception(exc, route=request.url.path)
        return JSONResponse(err(500, "Internal Server Error"), status_code=500)

    @app.get("/health")
    async def health() -> dict:
        return ok({"status": "ok"})

    app.include_router(tables_router)
    app.include_router(tables_sse_router)
    app.include_router(orders_router)
    app.include_router(menu_router)
    app.include_router(payments_router)
    app.include_router(reports_router)
    app.include_router(metrics_router)
    return app
