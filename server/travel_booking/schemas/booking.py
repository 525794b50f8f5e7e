"""Booking, pricing and cancellation Pydantic schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models.booking import BookingStatus, PaymentStatus


class PartyMixin(BaseModel):
    """Party composition shared by quotes and bookings."""

    package_id: UUID = Field(..., description="Package to book")
    travel_date: date = Field(..., description="Date of travel")
    adults: int = Field(..., ge=1, le=50)
    children: int = Field(0, ge=0, le=50)

    @property
    def participants(self) -> int:
        return self.adults + self.children


class QuoteRequest(PartyMixin):
    """Request schema for a price preview."""

    promo_code: Optional[str] = Field(None, max_length=50)


class QuoteResponse(BaseModel):
    """Price breakdown in minor units."""

    currency: str
    unit_price: int
    participants: int
    subtotal: int
    discount: int
    tax: int
    total: int
    promo_code: Optional[str] = None


class ValidatePromoRequest(BaseModel):
    """Request schema for checking a promo code against an amount."""

    code: str = Field(..., min_length=1, max_length=50)
    package_id: UUID
    amount: int = Field(..., ge=0, description="Order amount in minor units")


class PromoValidationResponse(BaseModel):
    """Discount a promo code would give on the supplied amount."""

    code: str
    name: str
    discount_type: str
    discount_value: Decimal
    discount_amount: int
    final_amount: int


class CreateBookingRequest(PartyMixin):
    """Request schema for creating a booking, optionally from a hold."""

    infants: int = Field(0, ge=0, le=20, description="Infants do not occupy a slot")
    hold_token: Optional[str] = Field(None, max_length=64)
    promo_code: Optional[str] = Field(None, max_length=50)
    agent_id: Optional[UUID] = None
    travelers_info: Optional[list[dict[str, Any]]] = None
    special_requests: Optional[str] = Field(None, max_length=2000)


class BookingResponse(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_number: str
    package_id: UUID
    user_id: UUID
    agent_id: Optional[UUID] = None
    travel_date: date
    adults: int
    children: int
    infants: int
    currency: str
    package_price: int
    discount: int
    promo_code_id: Optional[UUID] = None
    promo_discount: int
    tax: int
    total_amount: int
    paid_amount: int
    status: BookingStatus
    payment_status: PaymentStatus
    cancellation_fee: int
    refund_amount: int
    cancellation_reason: Optional[str] = None
    hold_token: Optional[str] = None
    special_requests: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class CancelBookingRequest(BaseModel):
    """Request schema for cancelling a booking."""

    reason: Optional[str] = Field(None, max_length=500)


class RefundQuoteResponse(BaseModel):
    """Refund a cancellation would yield, in minor units."""

    days_until_travel: int
    refund_percentage: Decimal
    refund_amount: int
    cancellation_fee: int
    policy_id: Optional[UUID] = None
    rule_days_before_travel: Optional[int] = None


class CancelBookingResponse(BaseModel):
    """Result of a cancellation."""

    refund_amount: int
    cancellation_fee: int
    refund_percentage: Decimal
    booking: BookingResponse


class RecordPaymentRequest(BaseModel):
    """Payment notification from the payments subsystem."""

    amount: int = Field(..., gt=0, description="Amount received in minor units")
