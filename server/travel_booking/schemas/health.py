"""Schemas for the versioned liveness check."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"


class HealthResponse(BaseModel):
    """Liveness answer, including the booking knobs clients depend on."""

    status: HealthStatus = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current server time (ISO 8601)")
    version: str = Field(..., description="API version")
    hold_ttl_minutes: int = Field(..., description="Lifetime of a new inventory hold")
    currency: str = Field(..., description="Currency all prices are quoted in")
