"""Availability router exposing the capacity ledger."""

import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentUser, get_current_user, get_db
from ..schemas.availability import AvailabilityResponse
from ..services.capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/packages", tags=["availability"])

DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_user)
DATE_QUERY = Query(..., alias="date", description="Travel date (YYYY-MM-DD)")


@router.get("/{package_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    package_id: UUID,
    travel_date: date = DATE_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> AvailabilityResponse:
    """Current capacity breakdown for a package on a date."""
    ledger = CapacityLedger(db)
    package = await ledger.get_package_or_raise(package_id)
    snapshot = await ledger.snapshot(package, travel_date)

    return AvailabilityResponse(
        package_id=snapshot.package_id,
        date=snapshot.date,
        base_capacity=snapshot.base_capacity,
        booked_slots=snapshot.booked_slots,
        held_slots=snapshot.held_slots,
        available_slots=snapshot.available_slots,
        is_available=snapshot.is_available,
    )
