from __future__ import annotations

from fastapi import APIRouter

from parley.api.v1.chat import router as chat_router
from parley.api.v1.health import router as health_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(chat_router)
