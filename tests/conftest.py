from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from parley.clients import get_provider_client
from parley.config import settings
from parley.main import app


@pytest.fixture
def anyio_backend() -> str:
    """Configure anyio to use the asyncio backend for all async tests."""
    return "asyncio"


@pytest.fixture
async def api_client() -> AsyncClient:
    """Async HTTP client for relay integration tests.

    Yields an ``AsyncClient`` wired directly to the FastAPI ASGI app so no
    real network socket is required during testing.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def provider_key(monkeypatch: pytest.MonkeyPatch) -> str:
    """Configure a fake provider credential for the duration of a test."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", SecretStr("sk-test"))
    return "sk-test"


@pytest.fixture
def use_provider() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Route the relay's provider calls to a mock transport handler.

    Returns a function that installs ``handler`` as the provider and returns
    the client the relay will use.
    """

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app.dependency_overrides[get_provider_client] = lambda: client
        return client

    yield _install
    app.dependency_overrides.pop(get_provider_client, None)
