"""Versioned liveness check."""

import logging

from fastapi import APIRouter

from ..core.config import settings
from ..core.database import utcnow
from ..core.observability import SERVICE_VERSION
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping() -> HealthResponse:
    response = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=utcnow(),
        version=SERVICE_VERSION,
        hold_ttl_minutes=settings.hold_ttl_minutes,
        currency=settings.default_currency,
    )
    logger.debug("Health ping", extra={"timestamp": response.timestamp.isoformat()})
    return response
