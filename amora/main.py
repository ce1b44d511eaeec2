"""
Amora — application factory.

``create_app()`` wires settings, logging, middleware, error mapping and the
routers; the lifespan owns the database engine, the change bus and the
service container.  Serve it with::

    uvicorn --factory amora.main:create_app
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from amora.api.deps import Services
from amora.config import Settings, get_settings
from amora.database import create_engine_from_settings, create_session_factory, create_tables
from amora.errors import (
    AuthenticationError,
    NotFoundError,
    RemoteOperationError,
    ValidationError,
)
from amora.logging_config import configure_logging
from amora.services.change_bus import LocalChangeBus, RedisChangeBus

logger = structlog.get_logger("amora")

REQUEST_TIMEOUT_SECONDS = 30.0


def _build_bus(settings: Settings) -> LocalChangeBus:
    if settings.REDIS_URL:
        return RedisChangeBus.from_url(settings.REDIS_URL, settings.REDIS_CHANNEL_PREFIX)
    return LocalChangeBus()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    logger.info(
        "amora_starting",
        environment=settings.ENVIRONMENT,
        strict_matching=settings.STRICT_MATCHING,
        redis=bool(settings.REDIS_URL),
    )

    engine = create_engine_from_settings(settings)
    if settings.AUTO_CREATE_TABLES:
        await create_tables(engine)
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    bus = _build_bus(settings)
    try:
        await bus.start()
    except RemoteOperationError:
        await engine.dispose()
        raise

    app.state.services = Services.build(settings, engine, create_session_factory(engine), bus)
    logger.info("amora_ready", bus=type(bus).__name__)

    try:
        yield
    finally:
        await bus.close()
        await engine.dispose()
        logger.info("amora_stopped")


class RequestMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the log context, enforce a deadline, log the outcome."""

    def __init__(self, app, timeout_seconds: float = REQUEST_TIMEOUT_SECONDS) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("request_timeout", timeout=self.timeout_seconds)
            response = JSONResponse(status_code=504, content={"detail": "Request timed out"})
        except Exception:
            logger.exception("request_failed", elapsed_ms=_elapsed_ms(started))
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")

        logger.info(
            "request_handled",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=_elapsed_ms(started),
        )
        response.headers["x-request-id"] = request_id
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (AuthenticationError, 401),
    (RemoteOperationError, 502),
)


def _register_error_handlers(app: FastAPI) -> None:
    for error_type, status_code in _STATUS_BY_ERROR:

        async def _handle(request: Request, exc: Exception, status_code: int = status_code) -> JSONResponse:
            if status_code >= 500:
                logger.error("remote_operation_failed", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        app.add_exception_handler(error_type, _handle)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Amora",
        description="Swipe, match and chat backend",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    app.state.settings = settings

    app.add_middleware(RequestMiddleware)
    # Added last, so CORS is outermost and answers preflights itself
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    from amora.api import health
    from amora.api.router import router as api_router

    app.include_router(health.router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")
    return app
