from __future__ import annotations

import time
from collections.abc import AsyncGenerator, AsyncIterator

import httpx
import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.responses import Response

from parley.clients import get_provider_client
from parley.exceptions import BadRequestError, ProviderError
from parley.metrics import provider_errors_total, relay_requests_total, relay_stream_duration
from parley.pipelines.provider import complete_provider_reply, stream_provider_reply
from parley.schemas.chat import ChatCompletionResponse, ChatRequest, ErrorResponse, encode_stream_error

logger = structlog.get_logger()
router = APIRouter(prefix="/chat", tags=["chat"])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _provider_error_response(endpoint: str, exc: ProviderError) -> JSONResponse:
    provider_errors_total.labels(status=str(exc.status_code)).inc()
    relay_requests_total.labels(endpoint=endpoint, outcome="error").inc()
    logger.warning("relay_provider_error", endpoint=endpoint, status=exc.status_code, code=exc.code, error=exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def _relay_tokens(first: str, tokens: AsyncGenerator[str, None]) -> AsyncIterator[bytes]:
    """Re-emit provider tokens as UTF-8 bytes, closing the provider stream at the end.

    The status line is already sent by then, so a provider failure after the
    first token ends the body with an error trailer rather than a clean finish.
    """
    start_time = time.perf_counter()
    outcome = "ok"
    try:
        if first:
            yield first.encode("utf-8")
        async for token in tokens:
            yield token.encode("utf-8")
    except ProviderError as exc:
        outcome = "interrupted"
        provider_errors_total.labels(status=str(exc.status_code)).inc()
        logger.error("relay_stream_interrupted", status=exc.status_code, error=exc.message)
        yield encode_stream_error(exc.message, exc.status_code)
    finally:
        await tokens.aclose()
        relay_stream_duration.observe(time.perf_counter() - start_time)
        relay_requests_total.labels(endpoint="chat", outcome=outcome).inc()


@router.post("", responses=_ERROR_RESPONSES)
async def stream_chat(
    body: ChatRequest,
    client: httpx.AsyncClient = Depends(get_provider_client),
) -> Response:
    """Forward a conversation window to the provider and stream the reply text.

    The provider call is started before the response is returned so that a
    provider rejection (quota, rate limit, bad key) becomes a JSON error with
    the matching status instead of a broken 200 stream.

    Args:
        body: Messages (oldest first) and the context block.
        client: Shared provider HTTP client.

    Raises:
        BadRequestError: 400 if ``messages`` is empty.

    Returns:
        A ``text/plain`` streaming response, or ``{"error": ...}`` on failure.
    """
    if not body.messages:
        raise BadRequestError("Messages array is required")

    tokens = stream_provider_reply(client, body.messages, body.context)
    try:
        first = await anext(tokens)
    except StopAsyncIteration:
        first = ""
    except ProviderError as exc:
        return _provider_error_response("chat", exc)

    logger.info("relay_stream_started", message_count=len(body.messages), context_chars=len(body.context))
    return StreamingResponse(
        _relay_tokens(first, tokens),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/complete", response_model=ChatCompletionResponse, responses=_ERROR_RESPONSES)
async def complete_chat(
    body: ChatRequest,
    client: httpx.AsyncClient = Depends(get_provider_client),
) -> Response | ChatCompletionResponse:
    """Non-streaming variant: answer with a single ``{"response": ...}`` object."""
    if not body.messages:
        raise BadRequestError("Messages array is required")

    try:
        reply = await complete_provider_reply(client, body.messages, body.context)
    except ProviderError as exc:
        return _provider_error_response("complete", exc)

    relay_requests_total.labels(endpoint="complete", outcome="ok").inc()
    return ChatCompletionResponse(response=reply)
