from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the log context and logs each relay request.

    For streamed replies ``duration_ms`` covers the time to the first byte;
    the full stream duration is recorded by the chat route's metrics.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start_time = time.perf_counter()

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "relay_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            ttfb_ms=round((time.perf_counter() - start_time) * 1000, 2),
            client_ip=request.client.host if request.client else None,
        )
        return response
