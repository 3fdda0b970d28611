"""
ReelMatch — FastAPI Application Entry Point

Application shell with:
- Async lifespan management (DB pool, Redis, notification dispatcher)
- CORS, timeout, and structured-logging middleware
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from reelmatch.api.deps import set_notification_dispatcher
from reelmatch.config import get_settings
from reelmatch.database import async_session_factory, engine
from reelmatch.services.notification_service import RedisNotificationDispatcher

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("reelmatch")

# ---------------------------------------------------------------------------
# Active request counter for graceful shutdown
# ---------------------------------------------------------------------------

_active_requests: int = 0
_active_requests_lock = asyncio.Lock()
_shutdown_event = asyncio.Event()

DRAIN_TIMEOUT_SECONDS = 15


async def _increment_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests += 1


async def _decrement_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests -= 1


async def _drain_active_requests() -> None:
    """Wait until all in-flight requests complete or timeout expires."""
    deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
    while True:
        async with _active_requests_lock:
            if _active_requests <= 0:
                break
        if time.monotonic() >= deadline:
            logger.warning(
                "drain_timeout_exceeded",
                remaining_requests=_active_requests,
            )
            break
        await asyncio.sleep(0.25)


# ---------------------------------------------------------------------------
# Redis helpers
# ---------------------------------------------------------------------------

_redis_client = None


async def _connect_redis() -> None:
    """Connect to Redis if configured; notifications are dropped otherwise."""
    global _redis_client
    import redis.asyncio as aioredis

    settings = get_settings()
    if not settings.REDIS_URL:
        logger.info("redis_skip", reason="REDIS_URL not configured")
        return

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except Exception:
        logger.exception("redis_connect_failed")
        await client.aclose()
        return

    _redis_client = client
    logger.info("redis_connected")


async def _close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_closed")


def get_redis():
    """Return the shared Redis client (for use in health checks, etc.)."""
    return _redis_client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    settings = get_settings()

    # -- Startup --------------------------------------------------------- #
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
    )
    _shutdown_event.clear()

    # 1. Database connection pool: engine is created at import time in
    #    reelmatch.database; a trivial query warms the pool.
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    # 2. Redis + notification dispatcher
    await _connect_redis()
    if _redis_client is not None:
        set_notification_dispatcher(RedisNotificationDispatcher(_redis_client))
        logger.info("notification_dispatcher_ready", transport="redis")
    else:
        set_notification_dispatcher(None)
        logger.info("notification_dispatcher_ready", transport="null")

    logger.info("startup_complete")

    yield

    # -- Shutdown -------------------------------------------------------- #
    logger.info("shutdown_begin")

    # 1. Drain in-flight requests
    _shutdown_event.set()
    await _drain_active_requests()

    # 2. Stop publishing, then close Redis
    set_notification_dispatcher(None)
    await _close_redis()

    # 3. Dispose DB engine (closes the connection pool)
    await engine.dispose()
    logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout.

    The handler task is cancelled, which rolls back any open transaction.
    """

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration.

    Once shutdown has begun, new requests get a 503 while in-flight ones
    drain.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if _shutdown_event.is_set():
            logger.info(
                "request_rejected_shutting_down",
                method=request.method,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=503,
                content={"detail": "Server is shutting down"},
            )

        start = time.perf_counter()

        await _increment_active()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise
        finally:
            await _decrement_active()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="ReelMatch",
    description="Movie-taste matching and mutual-match resolution",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (applied in reverse order: last added runs first) ---------- #

app.add_middleware(StructuredLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Lightweight liveness probe: healthy whenever the process is running."""
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Deep readiness probe: verifies database and Redis connectivity."""
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "redis": "connected",
    }

    # Database
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    # Redis (optional: absent configuration is not a failure)
    if not get_settings().REDIS_URL:
        result["redis"] = "not_configured"
    else:
        try:
            redis = get_redis()
            if redis is None:
                raise RuntimeError("Redis client not initialised")
            await redis.ping()
        except Exception as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from reelmatch.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
