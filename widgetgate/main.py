from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from widgetgate import __version__
from widgetgate.core.config import settings
from widgetgate.core.exceptions import BaseAPIException, StoreError
from widgetgate.core.logging import configure_structlog, get_structlog_logger
from widgetgate.db.session import dispose_engine
from widgetgate.middleware.auth import AuthMiddleware
from widgetgate.middleware.logging import LoggingMiddleware
from widgetgate.middleware.rate_limiter import RateLimitingMiddleware
from widgetgate.middleware.request_id import RequestIdMiddleware
from widgetgate.routes import embed_router, health_router, widget_keys_router, widgets_router
from widgetgate.services.redis import close_redis_pool, init_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    logger = get_structlog_logger(__name__)
    logger.info("application.starting", environment=settings.environment)

    # Redis only backs the edge throttle; the gate works without it.
    try:
        await init_redis_pool()
    except Exception as e:
        logger.error("redis.connection_failed", error=str(e))

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            release=f"widgetgate@{__version__}",
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")
    await close_redis_pool()
    await dispose_engine()
    logger.info("application.shutdown_complete")


# Configure logging before creating app
configure_structlog()
logger = get_structlog_logger(__name__)

app = FastAPI(
    title="WidgetGate API",
    version=__version__,
    description="Admission control, key issuance and lead capture for embedded calculator widgets",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

# Middleware added last runs first; CORS must wrap everything so that
# preflights and error responses carry the headers.
app.add_middleware(AuthMiddleware)
if not (settings.is_development or settings.is_testing):
    app.add_middleware(RateLimitingMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins(),
    allow_credentials=False,
    allow_methods=settings.methods(),
    allow_headers=settings.headers(),
    expose_headers=["X-Request-ID", "X-Response-Time", "Retry-After"],
    max_age=600,
)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    logger.warning(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400, and never reaches the stores."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]

    logger.warning("validation.error", path=request.url.path, method=request.method, errors=errors)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "Request validation failed",
            "code": "validation_error",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
    logger.error("store.failed", operation=exc.operation, error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error. Please try again later.",
            "code": "store_error",
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = f"err_{uuid.uuid4().hex[:12]}"

    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )

    message = "Internal server error. Please try again later."
    if settings.is_development:
        message = f"Internal server error: {exc}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": message,
            "code": "internal_error",
            "details": {"error_id": error_id},
        },
        headers={"X-Error-ID": error_id},
    )


app.include_router(health_router, prefix=settings.api_prefix)
app.include_router(widgets_router, prefix=settings.api_prefix)
app.include_router(widget_keys_router, prefix=settings.api_prefix)
app.include_router(embed_router)

if not settings.is_testing:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
async def root():
    return {
        "name": "WidgetGate API",
        "version": app.version,
        "environment": settings.environment,
        "docs": "/docs" if settings.is_development else None,
        "health": f"{settings.api_prefix}/health",
        "embed_script": "/widget/v1/embed.js",
    }


logger.info("application.configured", environment=settings.environment)
