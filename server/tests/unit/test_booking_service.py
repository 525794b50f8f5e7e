"""Unit tests for the booking transaction coordinator."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from travel_booking.core.database import utcnow
from travel_booking.core.exceptions import (
    AuthorizationError,
    BookingStateError,
    CapacityExceededError,
    HoldExpiredError,
    PromoInvalidError,
    ValidationError,
)
from travel_booking.models import (
    AgentCommission,
    Booking,
    BookingStatus,
    CommissionStatus,
    HoldStatus,
    InventoryHold,
    PackageAvailability,
    PaymentStatus,
    PromoCode,
    PromoCodeUsage,
)
from travel_booking.services.booking_service import BookingDraft, BookingService, generate_booking_number
from travel_booking.services.capacity_ledger import CapacityLedger
from travel_booking.services.hold_service import HoldService


async def _counts(session_factory, package_id, travel_date):
    async with session_factory() as session:
        bookings = (await session.execute(select(func.count(Booking.id)))).scalar_one()
        usages = (await session.execute(select(func.count(PromoCodeUsage.id)))).scalar_one()
        booked = (await session.execute(
            select(PackageAvailability.booked_slots).where(
                PackageAvailability.package_id == package_id,
                PackageAvailability.date == travel_date,
            )
        )).scalar_one_or_none()
    return bookings, usages, booked or 0


async def _hold_status(session_factory, token):
    async with session_factory() as session:
        return (await session.execute(
            select(InventoryHold.status).where(InventoryHold.hold_token == token)
        )).scalar_one()


def test_booking_numbers():
    number = generate_booking_number()
    assert number.startswith("BK")
    assert len(number) == 12


@pytest.mark.asyncio
async def test_create_booking_from_hold(test_session, session_factory, seed):
    hold = await HoldService(test_session).create_hold(seed.package_id, seed.travel_date, seed.customer_id, 2)

    booking = await BookingService(test_session).create_booking(
        seed.customer_id,
        BookingDraft(
            package_id=seed.package_id,
            travel_date=seed.travel_date,
            adults=2,
            infants=1,
            hold_token=hold.hold_token,
        ),
    )

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.package_price == 20000
    assert booking.tax == 2000
    assert booking.total_amount == 22000
    assert booking.hold_token == hold.hold_token

    async with session_factory() as session:
        stored_hold = (await session.execute(
            select(InventoryHold).where(InventoryHold.hold_token == hold.hold_token)
        )).scalar_one()
    assert stored_hold.status == HoldStatus.CONVERTED
    assert stored_hold.booking_id == booking.id

    # Infants ride free and take no slot
    ledger = CapacityLedger(test_session)
    package = await ledger.get_package_or_raise(seed.package_id)
    snapshot = await ledger.snapshot(package, seed.travel_date)
    assert snapshot.booked_slots == 2
    assert snapshot.held_slots == 0
    assert snapshot.available_slots == 8


@pytest.mark.asyncio
async def test_create_booking_without_hold(test_session, seed):
    booking = await BookingService(test_session).create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.small_package_id, travel_date=seed.travel_date, adults=1, children=1),
    )

    assert booking.package_price == 10000
    assert booking.hold_token is None

    with pytest.raises(CapacityExceededError):
        await BookingService(test_session).create_booking(
            seed.other_customer_id,
            BookingDraft(package_id=seed.small_package_id, travel_date=seed.travel_date, adults=1),
        )


@pytest.mark.asyncio
async def test_direct_booking_respects_other_users_holds(test_session, seed):
    await HoldService(test_session).create_hold(seed.small_package_id, seed.travel_date, seed.customer_id, 2)

    with pytest.raises(CapacityExceededError):
        await BookingService(test_session).create_booking(
            seed.other_customer_id,
            BookingDraft(package_id=seed.small_package_id, travel_date=seed.travel_date, adults=1),
        )


@pytest.mark.asyncio
async def test_expired_hold_cannot_be_converted(test_session, session_factory, seed):
    hold = await HoldService(test_session).create_hold(seed.package_id, seed.travel_date, seed.customer_id, 2)
    async with session_factory() as session:
        await session.execute(
            update(InventoryHold)
            .where(InventoryHold.id == hold.id)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await session.commit()

    with pytest.raises(HoldExpiredError):
        await BookingService(test_session).create_booking(
            seed.customer_id,
            BookingDraft(
                package_id=seed.package_id, travel_date=seed.travel_date, adults=2, hold_token=hold.hold_token
            ),
        )

    assert await _counts(session_factory, seed.package_id, seed.travel_date) == (0, 0, 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [("adults", 3), ("travel_date", None), ("owner", None)])
async def test_hold_must_match_the_booking(test_session, session_factory, seed, field, value):
    hold = await HoldService(test_session).create_hold(seed.package_id, seed.travel_date, seed.customer_id, 2)
    token = hold.hold_token
    draft = BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=2, hold_token=token)
    user_id = seed.customer_id
    if field == "adults":
        draft.adults = value
    elif field == "travel_date":
        draft.travel_date = seed.travel_date + timedelta(days=1)
    else:
        user_id = seed.other_customer_id

    with pytest.raises(HoldExpiredError):
        await BookingService(test_session).create_booking(user_id, draft)

    assert await _hold_status(session_factory, token) == HoldStatus.ACTIVE
    assert await _counts(session_factory, seed.package_id, seed.travel_date) == (0, 0, 0)


@pytest.mark.asyncio
async def test_hold_converts_only_once(test_session, seed):
    hold = await HoldService(test_session).create_hold(seed.package_id, seed.travel_date, seed.customer_id, 1)
    draft = BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1, hold_token=hold.hold_token)
    service = BookingService(test_session)

    await service.create_booking(seed.customer_id, draft)
    with pytest.raises(HoldExpiredError) as exc_info:
        await service.create_booking(seed.customer_id, draft)
    assert exc_info.value.problem_details["reason"] == "converted"


@pytest.mark.asyncio
async def test_booking_with_promo_records_usage(test_session, session_factory, seed):
    booking = await BookingService(test_session).create_booking(
        seed.customer_id,
        BookingDraft(
            package_id=seed.package_id, travel_date=seed.travel_date, adults=2, promo_code=seed.capped_promo_code
        ),
    )

    assert booking.discount == 3000
    assert booking.promo_discount == 3000
    assert booking.total_amount == 18700

    async with session_factory() as session:
        promo = (await session.execute(
            select(PromoCode).where(PromoCode.code == seed.capped_promo_code)
        )).scalar_one()
        usage = (await session.execute(select(PromoCodeUsage))).scalar_one()
    assert promo.usage_count == 1
    assert usage.booking_id == booking.id
    assert usage.discount_applied == 3000


@pytest.mark.asyncio
async def test_exhausted_promo_rolls_back_everything(test_session, session_factory, seed):
    service = BookingService(test_session)
    await service.create_booking(
        seed.customer_id,
        BookingDraft(
            package_id=seed.package_id, travel_date=seed.travel_date, adults=1, promo_code=seed.capped_promo_code
        ),
    )
    hold = await HoldService(test_session).create_hold(seed.package_id, seed.travel_date, seed.other_customer_id, 1)
    token = hold.hold_token

    with pytest.raises(PromoInvalidError) as exc_info:
        await service.create_booking(
            seed.other_customer_id,
            BookingDraft(
                package_id=seed.package_id,
                travel_date=seed.travel_date,
                adults=1,
                promo_code=seed.capped_promo_code,
                hold_token=token,
            ),
        )
    assert exc_info.value.code == "PROMO_USAGE_LIMIT"

    assert await _counts(session_factory, seed.package_id, seed.travel_date) == (1, 1, 1)
    assert await _hold_status(session_factory, token) == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_agent_booking_earns_commission(test_session, session_factory, seed):
    booking = await BookingService(test_session).create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1, agent_id=seed.agent_id),
    )

    async with session_factory() as session:
        commission = (await session.execute(select(AgentCommission))).scalar_one()
    assert booking.agent_id == seed.agent_id
    assert commission.booking_id == booking.id
    assert commission.commission_rate == Decimal("10.00")
    assert commission.commission_amount == 1100
    assert commission.status == CommissionStatus.PENDING


@pytest.mark.asyncio
async def test_non_agent_cannot_be_attributed(test_session, session_factory, seed):
    with pytest.raises(ValidationError):
        await BookingService(test_session).create_booking(
            seed.customer_id,
            BookingDraft(
                package_id=seed.package_id,
                travel_date=seed.travel_date,
                adults=1,
                agent_id=seed.other_customer_id,
            ),
        )
    assert await _counts(session_factory, seed.package_id, seed.travel_date) == (0, 0, 0)


@pytest.mark.asyncio
async def test_confirm_booking(test_session, seed):
    service = BookingService(test_session)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )

    confirmed = await service.confirm_booking(booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.confirmed_at is not None

    again = await service.confirm_booking(booking.id)
    assert again.confirmed_at == confirmed.confirmed_at


@pytest.mark.asyncio
async def test_record_payment(test_session, seed):
    service = BookingService(test_session)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )

    partial = await service.record_payment(booking.id, 5000)
    assert partial.payment_status == PaymentStatus.PARTIAL

    paid = await service.record_payment(booking.id, booking.total_amount - 5000)
    assert paid.payment_status == PaymentStatus.PAID
    assert paid.paid_amount == booking.total_amount

    with pytest.raises(ValidationError):
        await service.record_payment(booking.id, 0)


@pytest.mark.asyncio
async def test_cancel_booking_refunds_and_releases(test_session, session_factory, seed):
    service = BookingService(test_session)
    travel_date = utcnow().date() + timedelta(days=10)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=travel_date, adults=2, agent_id=seed.agent_id),
    )
    await service.record_payment(booking.id, 20000)

    preview = await service.preview_cancellation(booking.id)
    cancelled, refund = await service.cancel_booking(booking.id, seed.customer_id, reason="Change of plans")

    assert refund == preview
    assert refund.refund_amount == 8000
    assert refund.cancellation_fee == 12000
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_amount == 8000
    assert cancelled.cancellation_fee == 12000
    assert cancelled.cancellation_reason == "Change of plans"
    assert cancelled.cancelled_at is not None

    async with session_factory() as session:
        commission = (await session.execute(select(AgentCommission))).scalar_one()
    assert commission.status == CommissionStatus.CANCELLED
    assert await _counts(session_factory, seed.package_id, travel_date) == (1, 0, 0)

    with pytest.raises(BookingStateError):
        await service.cancel_booking(booking.id, seed.customer_id)


@pytest.mark.asyncio
async def test_only_owner_or_staff_can_cancel(test_session, seed):
    service = BookingService(test_session)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )

    with pytest.raises(AuthorizationError):
        await service.cancel_booking(booking.id, seed.other_customer_id)

    cancelled, refund = await service.cancel_booking(booking.id, seed.agent_id, privileged=True)
    assert cancelled.status == BookingStatus.CANCELLED
    assert refund.refund_amount == 0


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_confirmed(test_session, seed):
    service = BookingService(test_session)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )
    await service.cancel_booking(booking.id, seed.customer_id)

    with pytest.raises(BookingStateError):
        await service.confirm_booking(booking.id)


@pytest.mark.asyncio
async def test_list_bookings_by_status(test_session, seed):
    service = BookingService(test_session)
    first = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )
    await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )
    await service.confirm_booking(first.id)

    assert len(await service.list_bookings(seed.customer_id)) == 2
    confirmed = await service.list_bookings(seed.customer_id, BookingStatus.CONFIRMED)
    assert [booking.id for booking in confirmed] == [first.id]
    assert await service.list_bookings(seed.other_customer_id) == []


@pytest.mark.asyncio
async def test_booking_for_today_is_rejected(test_session, seed):
    with pytest.raises(ValidationError):
        await BookingService(test_session).create_booking(
            seed.customer_id,
            BookingDraft(package_id=seed.package_id, travel_date=utcnow().date(), adults=1),
        )


@pytest.mark.asyncio
async def test_complete_booking(test_session, session_factory, seed):
    service = BookingService(test_session)
    booking = await service.create_booking(
        seed.customer_id,
        BookingDraft(package_id=seed.package_id, travel_date=seed.travel_date, adults=1),
    )
    booking_id = booking.id

    with pytest.raises(BookingStateError):
        await service.complete_booking(booking_id)

    await service.confirm_booking(booking_id)
    completed = await service.complete_booking(booking_id)
    assert completed.status == BookingStatus.COMPLETED
    assert (await service.complete_booking(booking_id)).status == BookingStatus.COMPLETED

    with pytest.raises(BookingStateError):
        await service.preview_cancellation(booking_id)
    with pytest.raises(BookingStateError):
        await service.cancel_booking(booking_id, seed.customer_id)

    assert await _counts(session_factory, seed.package_id, seed.travel_date) == (1, 0, 1)
