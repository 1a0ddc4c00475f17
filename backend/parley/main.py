from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from parley.api.v1.router import api_v1_router
from parley.clients import close_clients
from parley.config import settings
from parley.exceptions import AppError
from parley.logging_config import setup_logging
from parley.middleware.logging import RequestLoggingMiddleware
from parley.middleware.rate_limit import limiter

setup_logging(settings.LOG_LEVEL, json_logs=settings.ENVIRONMENT != "dev")

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: warn about a missing provider key, close clients on shutdown.

    Args:
        application: The FastAPI application instance (unused directly but
            required by the lifespan protocol).
    """
    if settings.OPENAI_API_KEY is None:
        logger.warning("provider_key_missing", detail="OPENAI_API_KEY is not set in server environment")

    yield
    await close_clients()


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{location}: {message}" if location else message
    return JSONResponse({"error": detail}, status_code=400)


def create_app() -> FastAPI:
    """Create and configure the relay application.

    Returns:
        A fully configured FastAPI instance with middleware and routers applied.
    """
    application = FastAPI(
        title="Parley Relay",
        description="Chat relay that keeps the provider credential server-side",
        version="0.1.0",
        lifespan=lifespan,
    )

    Instrumentator().instrument(application).expose(application, endpoint="/metrics")

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(AppError, _app_error_handler)
    application.add_exception_handler(RequestValidationError, _validation_error_handler)

    # Middleware (order matters: last added is first executed)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Requested-With", "X-Request-ID"],
    )
    application.add_middleware(SlowAPIMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    # Routers
    application.include_router(api_v1_router)

    return application


app = create_app()
