"""
GET /health — liveness plus the state of what the AI routes depend on.

Always 200 while the process is up. The body says whether MongoDB answers
a ping (without it guest requests get 503) and whether Gemini calls are
live or served from canned mock responses.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from travelai.core import database as db_module
from travelai.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str  # "connected" | "disconnected"
    guest_mode: str  # "available" | "unavailable"
    ai_mode: str  # "mock" | "live"
    environment: str


async def _ping_database() -> bool:
    # Read through the module so tests can swap db_client.client
    client = db_module.db_client.client
    if client is None:
        return False
    try:
        await client.admin.command("ping")
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)
        return False
    return True


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    connected = await _ping_database()
    return HealthResponse(
        status="ok",
        version="0.1.0",
        database="connected" if connected else "disconnected",
        guest_mode="available" if connected else "unavailable",
        ai_mode="mock" if settings.ai_mock_mode else "live",
        environment=settings.environment,
    )
