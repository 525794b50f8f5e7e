"""Inventory hold Pydantic schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models.hold import HoldStatus


class CreateHoldRequest(BaseModel):
    """Request schema for holding capacity ahead of a booking."""

    package_id: UUID = Field(..., description="Package to hold")
    travel_date: date = Field(..., description="Date of travel, must be in the future")
    adults: int = Field(..., ge=1, le=50, description="Adults in the party")
    children: int = Field(0, ge=0, le=50, description="Children in the party")

    @property
    def slots(self) -> int:
        return self.adults + self.children


class ReleaseHoldRequest(BaseModel):
    """Request schema for releasing a hold before it expires."""

    hold_token: str = Field(..., min_length=1, max_length=64)


class HoldResponse(BaseModel):
    """Hold response schema. The token is the client's handle on the hold."""

    model_config = ConfigDict(from_attributes=True)

    hold_token: str
    package_id: UUID
    travel_date: date
    slots_held: int = Field(..., ge=1)
    status: HoldStatus
    expires_at: datetime = Field(..., description="Hold expiration time (UTC)")


class ReleaseHoldResponse(BaseModel):
    """Confirmation that a hold was released."""

    hold_token: str
    status: HoldStatus
