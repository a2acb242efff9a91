"""Main application entry point."""
import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

import uvicorn
import httpx
import redis
from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    API_VERSION,
    CORS_ORIGINS,
    DATABASE_URL,
    DB_HEALTHCHECK_INTERVAL,
    ENVIRONMENT,
    HOST,
    LOGIN_RATE_LIMIT_PER_MINUTE,
    NOTIFIER_TIMEOUT_SECONDS,
    PORT,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_PER_MINUTE,
    REDIS_URL,
)
from database import create_db_engine
from dependencies import get_gateway
from errors import ServiceError
from logging_config import setup_logging
from monitoring import init_profiling
from redis_rate_limiter import RedisRateLimiter
from routers import admin, orders, products
from schemas import DatabaseStatus, HealthResponse, StatusResponse
from security import hash_password
from services.notifier import OrderNotifier
from storage import StorageGateway

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)

PROCESS_STARTED = time.monotonic()

AVAILABLE_ENDPOINTS = [
    "GET /",
    "GET /health",
    "GET /api/products",
    "GET /api/products/:id",
    "POST /api/products",
    "PUT /api/products/:id",
    "DELETE /api/products/:id",
    "GET /api/orders",
    "POST /api/orders",
    "PUT /api/orders/:id",
    "POST /api/admin/login",
]


async def watch_backend(gateway: StorageGateway, interval: float) -> None:
    """Probe the durable store periodically, reconnecting when it comes back."""
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(gateway.check_connection)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    gateway: StorageGateway = app.state.gateway
    if await asyncio.to_thread(gateway.connect):
        logger.info("Durable store connected")

    http_client = None
    if app.state.notifier is None:
        http_client = httpx.AsyncClient(timeout=NOTIFIER_TIMEOUT_SECONDS)
        HTTPXClientInstrumentor().instrument_client(http_client)
        app.state.notifier = OrderNotifier(http_client)
        logger.info("HTTP client initialized")

    monitor = None
    if app.state.healthcheck_interval > 0:
        monitor = asyncio.create_task(watch_backend(gateway, app.state.healthcheck_interval))

    init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    if monitor is not None:
        monitor.cancel()
        with suppress(asyncio.CancelledError):
            await monitor
    if http_client is not None:
        await http_client.aclose()
    await asyncio.to_thread(gateway.close)
    logger.info("Application shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"success": false, ...}`` with a matching status."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("Request failed", extra={
                "method": request.method,
                "path": request.url.path,
                "error": exc.message
            })
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())[1:])
            messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation Error", "message": "Invalid request body", "messages": messages}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and unsupported methods both count as unmatched routes
        if exc.status_code in (404, 405):
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "Endpoint not found",
                    "availableEndpoints": AVAILABLE_ENDPOINTS
                }
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={
            "method": request.method,
            "path": request.url.path
        })
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal Server Error", "message": "An unexpected error occurred"}
        )


def create_app(
    gateway: Optional[StorageGateway] = None,
    notifier: Optional[OrderNotifier] = None,
    redis_client: Optional[redis.Redis] = None,
    rate_limit_enabled: bool = RATE_LIMIT_ENABLED,
    healthcheck_interval: float = DB_HEALTHCHECK_INTERVAL
) -> FastAPI:
    """
    Build the application.

    Args:
        gateway: Storage gateway; built from DATABASE_URL when omitted
        notifier: Order notifier; built with its own HTTP client at startup when omitted
        redis_client: Redis connection for rate limiting; built from REDIS_URL when omitted
        rate_limit_enabled: Install the rate limiting middleware
        healthcheck_interval: Seconds between durable store probes, 0 disables

    Returns:
        FastAPI application
    """
    if gateway is None:
        engine = create_db_engine(DATABASE_URL)
        SQLAlchemyInstrumentor().instrument(engine=engine)
        gateway = StorageGateway(engine, ADMIN_USERNAME, hash_password(ADMIN_PASSWORD))

    app = FastAPI(
        title="Las Valkyrie Shop API",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.healthcheck_interval = healthcheck_interval

    if rate_limit_enabled:
        if redis_client is None:
            redis_client = redis.from_url(
                REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1
            )
            RedisInstrumentor().instrument(redis_client=redis_client)
        app.add_middleware(
            RedisRateLimiter,
            redis_client=redis_client,
            requests_per_minute=RATE_LIMIT_PER_MINUTE,
            login_requests_per_minute=LOGIN_RATE_LIMIT_PER_MINUTE
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    register_exception_handlers(app)

    @app.get("/", response_model=StatusResponse)
    async def index(gateway: StorageGateway = Depends(get_gateway)):
        """Service status and durable store connectivity."""
        url = gateway.engine.url
        return StatusResponse(
            message="Las Valkyrie API is running!",
            timestamp=datetime.now(timezone.utc),
            environment=ENVIRONMENT,
            version=API_VERSION,
            storage="durable" if gateway.is_backend_available() else "fallback",
            database=DatabaseStatus(
                status=gateway.state.value,
                name=url.database,
                host=url.host
            )
        )

    @app.get("/health", response_model=HealthResponse)
    async def health(gateway: StorageGateway = Depends(get_gateway)):
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc),
            uptime=round(time.monotonic() - PROCESS_STARTED, 3),
            database="connected" if gateway.is_backend_available() else "disconnected"
        )

    app.include_router(products.router)
    app.include_router(orders.router)
    app.include_router(admin.router)

    FastAPIInstrumentor.instrument_app(app)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)
