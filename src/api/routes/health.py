"""
Health check endpoint.
"""

from fastapi import APIRouter

from src.api.schemas import HealthResponse
from src.core.config import ProviderConfig
from src.core.storage import is_r2_configured
from src.db.engine import get_session_factory

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Report which backends are wired up and whether generation runs live.
    """
    provider = ProviderConfig()
    database_ready = get_session_factory() is not None
    return HealthResponse(
        openrouter_configured=provider.validate(),
        database_configured=database_ready,
        storage_configured=is_r2_configured(),
        generation_mode="live" if provider.live_enabled else "offline",
        story_store="postgres" if database_ready else "memory",
        text_model=provider.text_model,
        image_model=provider.image_model,
    )
