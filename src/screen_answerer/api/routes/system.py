"""System routes.

Endpoints:
    GET /health
        - Response: HealthResponse (status, tracked files, governor counters)
        - Rate Limited: No (health checks should be fast)
        - Never calls the upstream API
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from screen_answerer.api.dependencies import get_governor, get_registry
from screen_answerer.api.models import HealthResponse
from screen_answerer.core.config import settings
from screen_answerer.core.governor import CallGovernor
from screen_answerer.core.registry import TemporaryFileRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", tags=["System"], response_model=HealthResponse)
async def health_check(
    registry: TemporaryFileRegistry = Depends(get_registry),  # noqa: B008
    governor: CallGovernor = Depends(get_governor),  # noqa: B008
) -> HealthResponse:
    """Report service status and the relay's in-memory counters."""
    return HealthResponse(
        status="healthy",
        version=settings.api.version,
        tracked_files=len(registry),
        governor=governor.stats(),
    )


__all__ = ["router"]
