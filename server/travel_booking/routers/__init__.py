"""FastAPI routers package."""

from .availability import router as availability_router
from .booking import router as booking_router
from .cancellation_policy import router as cancellation_policy_router
from .health import router as health_router
from .metrics import router as metrics_router

__all__ = [
    "availability_router",
    "booking_router",
    "cancellation_policy_router",
    "health_router",
    "metrics_router",
]
