"""Booking router for holds, pricing, bookings and cancellations."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentUser, get_current_user, get_db, get_idempotency_key
from ..models.booking import Booking, BookingStatus
from ..models.hold import HoldStatus
from ..schemas.booking import (
    BookingResponse,
    CancelBookingRequest,
    CancelBookingResponse,
    CreateBookingRequest,
    PromoValidationResponse,
    QuoteRequest,
    QuoteResponse,
    RecordPaymentRequest,
    RefundQuoteResponse,
    ValidatePromoRequest,
)
from ..schemas.hold import CreateHoldRequest, HoldResponse, ReleaseHoldRequest, ReleaseHoldResponse
from ..services.booking_service import BookingDraft, BookingService
from ..services.cancellation_service import RefundQuote
from ..services.capacity_ledger import CapacityLedger
from ..services.hold_service import HoldService
from ..services.pricing_service import PricingService
from .idempotent import PRIVILEGED_ROLES, handle_idempotent_operation, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_user)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)
STATUS_QUERY = Query(None, alias="status")


def _convert_booking_to_schema(booking: Booking) -> BookingResponse:
    return BookingResponse.model_validate(booking)


def _convert_refund_to_schema(refund: RefundQuote) -> RefundQuoteResponse:
    return RefundQuoteResponse(
        days_until_travel=refund.days_until_travel,
        refund_percentage=refund.refund_percentage,
        refund_amount=refund.refund_amount,
        cancellation_fee=refund.cancellation_fee,
        policy_id=refund.policy_id,
        rule_days_before_travel=refund.rule_days_before_travel,
    )


@router.post("/hold", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def create_hold(
    payload: CreateHoldRequest,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """
    Hold capacity for the party while the customer completes checkout.

    Replaces any active hold the customer already has for this package and date.
    """
    async def operation():
        hold = await HoldService(db).create_hold(
            package_id=payload.package_id,
            travel_date=payload.travel_date,
            user_id=user.user_id,
            slots=payload.slots,
        )
        return status.HTTP_201_CREATED, HoldResponse.model_validate(hold).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, payload.model_dump(mode="json"), operation
    )


@router.post("/hold/release", response_model=ReleaseHoldResponse)
async def release_hold(
    payload: ReleaseHoldRequest,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Release an active hold before it expires."""
    async def operation():
        await HoldService(db).release_hold(payload.hold_token, user.user_id)
        body = ReleaseHoldResponse(hold_token=payload.hold_token, status=HoldStatus.RELEASED)
        return status.HTTP_200_OK, body.model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, payload.model_dump(mode="json"), operation
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote_booking(
    payload: QuoteRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> QuoteResponse:
    """Price preview for a party, including any promo code. Writes nothing."""
    package = await CapacityLedger(db).get_package_or_raise(payload.package_id)
    quote = await PricingService(db).quote(
        package,
        payload.travel_date,
        payload.participants,
        promo_code=payload.promo_code,
        user_id=user.user_id,
    )
    return QuoteResponse(
        currency=quote.currency,
        unit_price=quote.unit_price,
        participants=quote.participants,
        subtotal=quote.subtotal,
        discount=quote.discount,
        tax=quote.tax,
        total=quote.total,
        promo_code=quote.promo.code if quote.promo else None,
    )


@router.post("/validate-promo", response_model=PromoValidationResponse)
async def validate_promo(
    payload: ValidatePromoRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> PromoValidationResponse:
    """Check a promo code against a package and order amount."""
    validation = await PricingService(db).validate_promo(
        payload.code, payload.package_id, payload.amount, user_id=user.user_id
    )
    promo = validation.promo
    return PromoValidationResponse(
        code=promo.code,
        name=promo.name,
        discount_type=promo.discount_type,
        discount_value=promo.discount_value,
        discount_amount=validation.discount_amount,
        final_amount=validation.final_amount,
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: CreateBookingRequest,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """
    Create a booking from a hold token, or directly if capacity allows.

    Pricing, promo redemption, agent commission and hold conversion commit together.
    """
    draft = BookingDraft(
        package_id=payload.package_id,
        travel_date=payload.travel_date,
        adults=payload.adults,
        children=payload.children,
        infants=payload.infants,
        promo_code=payload.promo_code,
        hold_token=payload.hold_token,
        agent_id=payload.agent_id,
        travelers_info=payload.travelers_info,
        special_requests=payload.special_requests,
    )

    async def operation():
        booking = await BookingService(db).create_booking(user.user_id, draft)
        return status.HTTP_201_CREATED, _convert_booking_to_schema(booking).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, payload.model_dump(mode="json"), operation
    )


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    booking_status: Optional[BookingStatus] = STATUS_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> list[BookingResponse]:
    """The caller's bookings, newest first."""
    bookings = await BookingService(db).list_bookings(user.user_id, booking_status)
    return [_convert_booking_to_schema(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> BookingResponse:
    booking = await BookingService(db).get_booking_for_user(
        booking_id, user.user_id, privileged=user.has_role(*PRIVILEGED_ROLES)
    )
    return _convert_booking_to_schema(booking)


@router.get("/{booking_id}/cancellation-preview", response_model=RefundQuoteResponse)
async def preview_cancellation(
    booking_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> RefundQuoteResponse:
    """Refund and fee the booking would get if cancelled today."""
    service = BookingService(db)
    await service.get_booking_for_user(booking_id, user.user_id, privileged=user.has_role(*PRIVILEGED_ROLES))
    refund = await service.preview_cancellation(booking_id)
    return _convert_refund_to_schema(refund)


@router.put("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Confirm a pending booking. Agents and admins only."""
    require_role(user, *PRIVILEGED_ROLES)

    async def operation():
        booking = await BookingService(db).confirm_booking(booking_id)
        return status.HTTP_200_OK, _convert_booking_to_schema(booking).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, {"booking_id": str(booking_id)}, operation
    )


@router.put("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Mark a confirmed booking as travelled. Agents and admins only."""
    require_role(user, *PRIVILEGED_ROLES)

    async def operation():
        booking = await BookingService(db).complete_booking(booking_id)
        return status.HTTP_200_OK, _convert_booking_to_schema(booking).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, {"booking_id": str(booking_id)}, operation
    )

@router.put("/{booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: UUID,
    request: Request,
    payload: Optional[CancelBookingRequest] = None,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Cancel a booking under its cancellation policy and release its slots."""
    reason = payload.reason if payload else None

    async def operation():
        booking, refund = await BookingService(db).cancel_booking(
            booking_id,
            user.user_id,
            privileged=user.has_role(*PRIVILEGED_ROLES),
            reason=reason,
        )
        body = CancelBookingResponse(
            refund_amount=refund.refund_amount,
            cancellation_fee=refund.cancellation_fee,
            refund_percentage=refund.refund_percentage,
            booking=_convert_booking_to_schema(booking),
        )
        return status.HTTP_200_OK, body.model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, {"booking_id": str(booking_id), "reason": reason}, operation
    )


@router.post("/{booking_id}/payments", response_model=BookingResponse)
async def record_payment(
    booking_id: UUID,
    payload: RecordPaymentRequest,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Payment callback from the payments subsystem."""
    require_role(user, "admin", "payments")

    async def operation():
        booking = await BookingService(db).record_payment(booking_id, payload.amount)
        return status.HTTP_200_OK, _convert_booking_to_schema(booking).model_dump(mode="json")

    return await handle_idempotent_operation(
        request,
        db,
        user,
        idempotency_key,
        {"booking_id": str(booking_id), **payload.model_dump(mode="json")},
        operation,
    )
