from __future__ import annotations

import httpx
import structlog

from parley.config import settings

logger = structlog.get_logger()

_provider_client: httpx.AsyncClient | None = None


def get_provider_client() -> httpx.AsyncClient:
    """Get or create the singleton HTTP client for the language-model provider.

    Returns:
        The shared ``httpx.AsyncClient``. Created on first call and reused
        on subsequent calls (singleton pattern).
    """
    global _provider_client
    if _provider_client is None:
        _provider_client = httpx.AsyncClient(timeout=settings.LLM_STREAM_TIMEOUT)
        logger.info("provider_client_created", base_url=settings.LLM_BASE_URL)
    return _provider_client


async def close_clients() -> None:
    """Close all singleton clients. Called on app shutdown."""
    global _provider_client
    if _provider_client:
        await _provider_client.aclose()
        _provider_client = None
        logger.info("provider_client_closed")
