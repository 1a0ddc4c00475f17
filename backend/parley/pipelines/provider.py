from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Sequence

import httpx
import structlog

from parley.config import settings
from parley.exceptions import ProviderError
from parley.schemas.chat import ChatMessage

logger = structlog.get_logger()

SYSTEM_BASE = """\
You are AuraXPro AI — a helpful, professional assistant.

You answer questions about AuraXPro's services, stack, process, and general dev topics.

If the user asks about AuraXPro, prioritize the knowledge provided as truth.

Be concise. Provide steps or examples when useful.\
"""

COMPLETE_SYSTEM_PROMPT = "You are AuraXPro AI Assistant. Be concise, helpful, and friendly."

QUOTA_EXCEEDED_MESSAGE = "API quota exceeded. Please check your OpenAI billing."
RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please try again later."
INVALID_KEY_MESSAGE = "Invalid API key. Please check your server configuration."
DEFAULT_ERROR_MESSAGE = "Failed to get response"


def build_system_prompt(context: str) -> str:
    """Base instructions, followed by the context block inside a knowledge banner."""
    if not context:
        return SYSTEM_BASE
    return f"{SYSTEM_BASE}\n\n=== AuraXPro Knowledge ===\n{context}\n=========================="


def build_provider_messages(
    messages: Sequence[ChatMessage],
    system_prompt: str,
    limit: int | None = None,
) -> list[dict[str, str]]:
    """System prompt plus the last ``limit`` conversation messages."""
    window = settings.CONTEXT_WINDOW_MESSAGES if limit is None else limit
    recent = list(messages)[-window:] if window > 0 else []
    return [{"role": "system", "content": system_prompt}] + [
        {"role": m.role.value, "content": m.content} for m in recent
    ]


def provider_error_from_response(status_code: int, body: bytes) -> ProviderError:
    """Map a provider error answer to the relay's error contract.

    429 is split into quota exhaustion and plain rate limiting by the
    provider's error code; 401 means the server credential is wrong.
    """
    message: str | None = None
    code: str | None = None
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            code = error.get("code") or error.get("type")
        elif isinstance(error, str):
            message = error

    if status_code == 429:
        message = QUOTA_EXCEEDED_MESSAGE if code == "insufficient_quota" else RATE_LIMITED_MESSAGE
    elif status_code == 401:
        message = INVALID_KEY_MESSAGE

    return ProviderError(status_code=status_code, message=message or DEFAULT_ERROR_MESSAGE, code=code)


def _request_headers() -> dict[str, str]:
    if settings.OPENAI_API_KEY is None:
        raise ProviderError(status_code=500, message="OPENAI_API_KEY is not set in server environment")
    return {"Authorization": f"Bearer {settings.OPENAI_API_KEY.get_secret_value()}"}


async def stream_provider_reply(
    client: httpx.AsyncClient,
    messages: Sequence[ChatMessage],
    context: str = "",
) -> AsyncGenerator[str, None]:
    """Stream reply tokens from the OpenAI-compatible chat completions SSE API.

    Sends a streaming chat completion request and yields the ``delta.content``
    of every chunk until the ``data: [DONE]`` sentinel.

    Args:
        client: HTTP client used for the provider call.
        messages: Conversation messages, oldest first; only the most recent
            ``settings.CONTEXT_WINDOW_MESSAGES`` are forwarded.
        context: Context block appended to the system prompt.

    Yields:
        Individual token strings as they arrive from the provider.

    Raises:
        ProviderError: Before the first token, when the key is missing or the
            provider answers with a non-200 status.
    """
    payload: dict[str, object] = {
        "model": settings.LLM_MODEL,
        "messages": build_provider_messages(messages, build_system_prompt(context)),
        "stream": True,
    }
    url = f"{settings.LLM_BASE_URL}/chat/completions"
    headers = _request_headers()

    try:
        async with client.stream("POST", url, json=payload, headers=headers) as response:
            if response.status_code != 200:
                body = await response.aread()
                logger.error("provider_http_error", status=response.status_code, body=body[:500])
                raise provider_error_from_response(response.status_code, body)

            async for raw_line in response.aiter_lines():
                line: str = raw_line.decode() if isinstance(raw_line, bytes) else raw_line
                if not line.startswith("data: "):
                    continue

                data_str = line[6:]  # strip "data: " prefix
                if data_str.strip() == "[DONE]":
                    break

                try:
                    chunk = json.loads(data_str)
                    delta = chunk.get("choices", [{}])[0].get("delta", {})
                    content = delta.get("content")
                    if content:
                        yield content
                except (json.JSONDecodeError, IndexError, KeyError, AttributeError) as exc:
                    logger.warning("provider_parse_error", error=str(exc), line=line[:100])
                    continue

    except httpx.TimeoutException as exc:
        logger.error("provider_timeout", timeout=settings.LLM_STREAM_TIMEOUT)
        raise ProviderError(status_code=504, message="Provider request timed out") from exc
    except httpx.HTTPError as exc:
        logger.error("provider_transport_error", error=str(exc))
        raise ProviderError(status_code=502, message=str(exc) or DEFAULT_ERROR_MESSAGE) from exc


async def complete_provider_reply(
    client: httpx.AsyncClient,
    messages: Sequence[ChatMessage],
    context: str = "",
) -> str:
    """Non-streaming completion with the lighter model.

    Returns:
        The reply text, or ``"No response received"`` when the provider sends none.

    Raises:
        ProviderError: On a missing key, a non-200 status or a transport failure.
    """
    system_prompt = f"{COMPLETE_SYSTEM_PROMPT}\n\n{context}" if context else COMPLETE_SYSTEM_PROMPT
    payload: dict[str, object] = {
        "model": settings.LLM_COMPLETE_MODEL,
        "messages": build_provider_messages(messages, system_prompt),
        "stream": False,
    }
    url = f"{settings.LLM_BASE_URL}/chat/completions"

    try:
        response = await client.post(url, json=payload, headers=_request_headers())
    except httpx.HTTPError as exc:
        logger.error("provider_transport_error", error=str(exc))
        raise ProviderError(status_code=502, message=str(exc) or DEFAULT_ERROR_MESSAGE) from exc

    if response.status_code != 200:
        logger.error("provider_http_error", status=response.status_code, body=response.content[:500])
        raise provider_error_from_response(response.status_code, response.content)

    try:
        content = response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        content = None
    return content or "No response received"
