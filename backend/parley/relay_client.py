from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from types import TracebackType

import httpx
import structlog

from parley.config import settings
from parley.exceptions import RelayError
from parley.schemas.chat import STREAM_ERROR_MARKER, ChatMessage

logger = structlog.get_logger()

DEFAULT_ERROR_MESSAGE = "Failed to get response"


def _error_message(body: bytes) -> str:
    """Extract the relay's ``{"error": ...}`` message, falling back to raw text."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text or DEFAULT_ERROR_MESSAGE
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return DEFAULT_ERROR_MESSAGE


def _trailer_error(trailer: bytes) -> tuple[str, int | None]:
    try:
        data = json.loads(trailer.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return DEFAULT_ERROR_MESSAGE, None
    if not isinstance(data, dict):
        return DEFAULT_ERROR_MESSAGE, None
    status_code = data.get("status")
    return str(data.get("error") or DEFAULT_ERROR_MESSAGE), status_code if isinstance(status_code, int) else None


class RelayClient:
    """Client for the chat relay that fronts the language-model provider.

    The relay answers either with a raw text stream or with a single JSON
    object ``{"response": ...}``; both are surfaced as an async iterator of
    byte chunks. Any error answer is raised as :class:`RelayError`.

    Args:
        base_url: Relay root URL; defaults to ``settings.RELAY_URL``.
        client: Optional pre-built ``httpx.AsyncClient`` (tests pass one with a
            mock transport). A client created here is closed by :meth:`aclose`.
    """

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = (base_url or settings.RELAY_URL).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.RELAY_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def stream_reply(self, messages: Sequence[ChatMessage], context: str = "") -> AsyncIterator[bytes]:
        """Send a conversation window and yield the reply body as it arrives.

        Args:
            messages: Role-tagged turns, oldest first.
            context: Opaque context block (knowledge pack + project text).

        Yields:
            Raw byte chunks of the reply text.

        Raises:
            RelayError: On a non-200 status, a JSON body carrying ``error``, a
                JSON body without ``response``, or a text stream ending in an
                error trailer (the relay failed after the first byte).
            httpx.HTTPError: On transport failures.
        """
        payload = {
            "messages": [m.model_dump(mode="json") for m in messages],
            "context": context,
        }
        url = f"{self.base_url}/api/v1/chat"

        async with self._client.stream("POST", url, json=payload) as response:
            if response.status_code != 200:
                body = await response.aread()
                message = _error_message(body)
                logger.warning("relay_error_response", status=response.status_code, error=message)
                raise RelayError(message, status_code=response.status_code)

            content_type = response.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                body = await response.aread()
                try:
                    data = json.loads(body)
                except json.JSONDecodeError as exc:
                    raise RelayError(f"Malformed relay response: {exc}") from exc
                if not isinstance(data, dict):
                    raise RelayError("Malformed relay response")
                if data.get("error"):
                    raise RelayError(str(data["error"]), status_code=response.status_code)
                if not isinstance(data.get("response"), str):
                    raise RelayError("No response body")
                yield data["response"].encode("utf-8")
                return

            trailer: bytes | None = None
            async for chunk in response.aiter_bytes():
                if trailer is not None:
                    trailer += chunk
                    continue
                text, marker, rest = chunk.partition(STREAM_ERROR_MARKER)
                if text:
                    yield text
                if marker:
                    trailer = rest

            if trailer is not None:
                message, status_code = _trailer_error(trailer)
                logger.warning("relay_stream_interrupted", status=status_code, error=message)
                raise RelayError(message, status_code=status_code)
