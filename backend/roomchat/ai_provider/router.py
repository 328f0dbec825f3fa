"""AI Provider API router.

Endpoints:
    GET /ai/status - Get current AI provider status
"""
import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from .resolver import get_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class AIStatusResponse(BaseModel):
    """Response model for GET /ai/status endpoint."""
    enabled: bool
    provider: Optional[str]
    configured: bool
    healthy: bool
    model: Optional[str]
    active_provider: Optional[str]


@router.get("/status", response_model=AIStatusResponse)
async def get_ai_status() -> AIStatusResponse:
    """Get the current AI provider status.

    Returns:
        AIStatusResponse with the configured provider, its health, and the
        name of the provider answering mentions (or null).
    """
    resolver = get_resolver()

    if resolver is None:
        # AI disabled or startup not complete
        return AIStatusResponse(
            enabled=False,
            provider=None,
            configured=False,
            healthy=False,
            model=None,
            active_provider=None,
        )

    status = resolver.get_status()
    active = resolver.get_active_provider()

    return AIStatusResponse(
        enabled=status.enabled,
        provider=status.provider,
        configured=status.configured,
        healthy=status.healthy,
        model=status.model,
        active_provider=active.name if active else None,
    )
