from __future__ import annotations

import json

import httpx
import pytest

from parley.exceptions import RelayError
from parley.models.base import Role
from parley.relay_client import RelayClient
from parley.schemas.chat import ChatMessage, encode_stream_error

_MESSAGES = [ChatMessage(role=Role.USER, content="hi")]


def _relay(handler) -> RelayClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RelayClient("http://relay.test", client=client)


async def _collect(relay: RelayClient) -> bytes:
    return b"".join([chunk async for chunk in relay.stream_reply(_MESSAGES, "ctx")])


@pytest.mark.anyio
async def test_stream_reply_yields_body_and_posts_window() -> None:
    """The relay client should POST messages + context and yield the streamed text."""
    seen: list[httpx.Request] = []

    async def body():
        yield b"Hel"
        yield b"lo"

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"content-type": "text/plain; charset=utf-8"}, content=body())

    assert await _collect(_relay(handler)) == b"Hello"
    assert seen[0].url.path == "/api/v1/chat"
    assert json.loads(seen[0].content) == {
        "messages": [{"role": "user", "content": "hi"}],
        "context": "ctx",
    }


@pytest.mark.anyio
async def test_error_status_raises_relay_error_with_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "API quota exceeded. Please check your OpenAI billing."})

    with pytest.raises(RelayError) as exc_info:
        await _collect(_relay(handler))

    assert exc_info.value.status_code == 429
    assert "quota" in exc_info.value.message


@pytest.mark.anyio
async def test_error_status_with_text_body_uses_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad gateway")

    with pytest.raises(RelayError) as exc_info:
        await _collect(_relay(handler))

    assert exc_info.value.message == "Bad gateway"


@pytest.mark.anyio
async def test_error_status_with_empty_body_uses_default_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(RelayError) as exc_info:
        await _collect(_relay(handler))

    assert exc_info.value.message == "Failed to get response"


@pytest.mark.anyio
async def test_non_streaming_json_variant_is_supported() -> None:
    """A ``{"response": ...}`` JSON body should be surfaced as one chunk."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": "All at once"})

    assert await _collect(_relay(handler)) == b"All at once"


@pytest.mark.anyio
async def test_json_error_with_ok_status_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "provider exploded"})

    with pytest.raises(RelayError, match="provider exploded"):
        await _collect(_relay(handler))


@pytest.mark.anyio
async def test_json_without_response_is_missing_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(RelayError, match="No response body"):
        await _collect(_relay(handler))


@pytest.mark.anyio
async def test_transport_failure_propagates_as_httpx_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(httpx.HTTPError):
        await _collect(_relay(handler))


@pytest.mark.anyio
async def test_error_trailer_after_text_raises_relay_error() -> None:
    """Text before the trailer is still yielded; the trailer becomes a RelayError."""
    yielded: list[bytes] = []

    async def body():
        yield b"Hel"
        yield b"lo" + encode_stream_error("Provider request timed out", 504)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/plain; charset=utf-8"}, content=body())

    with pytest.raises(RelayError) as exc_info:
        async for chunk in _relay(handler).stream_reply(_MESSAGES):
            yielded.append(chunk)

    assert yielded == [b"Hel", b"lo"]
    assert exc_info.value.message == "Provider request timed out"
    assert exc_info.value.status_code == 504


@pytest.mark.anyio
async def test_garbled_error_trailer_uses_default_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/plain"}, content=b"partial\x00{oops")

    with pytest.raises(RelayError, match="Failed to get response"):
        await _collect(_relay(handler))
