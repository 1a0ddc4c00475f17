from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends

from parley.clients import get_provider_client
from parley.config import settings
from parley.schemas.health import HealthResponse, ServiceStatus

logger = structlog.get_logger()
router = APIRouter()


async def _check_provider(client: httpx.AsyncClient) -> ServiceStatus:
    if settings.OPENAI_API_KEY is None:
        return ServiceStatus(status="unconfigured", detail="OPENAI_API_KEY is not set")
    try:
        resp = await client.get(
            f"{settings.LLM_BASE_URL}/models",
            headers={"Authorization": f"Bearer {settings.OPENAI_API_KEY.get_secret_value()}"},
            timeout=10,
        )
        if resp.status_code == 200:
            return ServiceStatus(status="healthy")
        return ServiceStatus(status="unhealthy", detail=f"HTTP {resp.status_code}")
    except Exception as e:
        logger.error("health_check_provider_failed", error=str(e))
        return ServiceStatus(status="unhealthy", detail=str(e))


@router.get("/health", response_model=HealthResponse)
async def health_check(client: httpx.AsyncClient = Depends(get_provider_client)) -> HealthResponse:
    """Report relay liveness and whether the provider is reachable with the configured key."""
    provider = await _check_provider(client)
    return HealthResponse(
        status="healthy" if provider.status == "healthy" else "degraded",
        provider=provider,
    )
