"""Capacity ledger Pydantic schemas."""

import datetime as dt
from uuid import UUID

from pydantic import BaseModel, Field


class AvailabilityResponse(BaseModel):
    """Point-in-time capacity breakdown for one package date."""

    package_id: UUID
    date: dt.date
    base_capacity: int = Field(..., ge=0, description="Capacity for the date")
    booked_slots: int = Field(..., ge=0, description="Slots consumed by bookings")
    held_slots: int = Field(..., ge=0, description="Slots claimed by live holds")
    available_slots: int = Field(..., ge=0, description="Slots that can still be held or booked")
    is_available: bool = Field(..., description="False when the date is closed for sale")
