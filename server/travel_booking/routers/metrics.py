"""Prometheus scrape endpoint for the booking counters."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ..core.observability import get_prometheus_metrics

router = APIRouter(tags=["Observability"])


@router.get("/metrics", summary="Booking metrics", response_class=Response)
async def metrics():
    """Hold, booking, cancellation, capacity and idempotency counters."""
    return Response(content=get_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)
