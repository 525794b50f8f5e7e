"""Booking transaction coordinator: hold conversion, pricing, promo usage and commission in one unit of work."""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import run_in_transaction, utcnow
from ..core.exceptions import (
    AuthorizationError,
    BookingStateError,
    CapacityExceededError,
    HoldExpiredError,
    NotFoundError,
    PromoInvalidError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.commission import AgentCommission, CommissionStatus
from ..models.hold import HoldStatus, InventoryHold
from ..models.package import Package
from ..models.promo import PromoCode, PromoCodeUsage
from ..models.user import User, UserRole
from .cancellation_service import CancellationPolicyService, RefundQuote
from .capacity_ledger import CapacityLedger
from .pricing_service import PricingService, percentage_of

logger = logging.getLogger(__name__)

BOOKING_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

# Bookings in these states can no longer be cancelled
CLOSED_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)


@dataclass
class BookingDraft:
    """Everything needed to create a booking."""

    package_id: UUID
    travel_date: date
    adults: int
    children: int = 0
    infants: int = 0
    promo_code: Optional[str] = None
    hold_token: Optional[str] = None
    agent_id: Optional[UUID] = None
    travelers_info: Optional[list[dict[str, Any]]] = None
    special_requests: Optional[str] = None

    @property
    def participants(self) -> int:
        return self.adults + self.children


def generate_booking_number() -> str:
    return "BK" + "".join(secrets.choice(BOOKING_NUMBER_ALPHABET) for _ in range(10))


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = CapacityLedger(db)
        self.pricing = PricingService(db)
        self.policies = CancellationPolicyService(db)

    async def create_booking(self, user_id: UUID, draft: BookingDraft) -> Booking:
        """
        Create a booking, either by converting a hold or by taking capacity directly.

        Every step commits or rolls back together: on any failure the hold
        stays active, counters are untouched and no booking, promo usage or
        commission row exists.

        Args:
            user_id: Customer the booking is for
            draft: Party, date, and optional hold token, promo code and agent

        Returns:
            The pending booking

        Raises:
            HoldExpiredError: If the hold is unknown, no longer active, lapsed or
                does not match the requested package, date and party size
            CapacityExceededError: If booking without a hold and the date is full
            PromoNotFoundError, PromoInvalidError: If the promo code cannot be applied
            ValidationError: If the party or agent is invalid
        """
        if draft.adults < 1:
            raise ValidationError("At least one adult is required", errors={"adults": draft.adults})
        if draft.travel_date <= utcnow().date():
            raise ValidationError(
                "Travel date must be in the future",
                errors={"travel_date": draft.travel_date.isoformat()}
            )

        async def unit_of_work() -> Booking:
            package = await self.ledger.get_package_or_raise(draft.package_id)
            if not package.is_active:
                raise ValidationError(f"Package {draft.package_id} is not available for booking")

            await self.ledger.acquire(package, draft.travel_date)
            booking_id = uuid4()

            if draft.hold_token:
                # Conversion goes first: the slots leave the held sum before reserve books them
                hold = await self._load_hold_for_booking(user_id, draft)
                await self._convert_hold(hold, booking_id)
            else:
                available = await self.ledger.available_slots(package, draft.travel_date)
                if draft.participants > available:
                    raise CapacityExceededError(
                        package_id=str(draft.package_id),
                        travel_date=draft.travel_date,
                        requested_slots=draft.participants,
                        available_slots=available,
                    )

            quote = await self.pricing.quote(
                package,
                draft.travel_date,
                draft.participants,
                promo_code=draft.promo_code,
                user_id=user_id,
            )
            agent = await self._resolve_agent(draft.agent_id)

            booking = Booking(
                id=booking_id,
                booking_number=generate_booking_number(),
                package_id=package.id,
                user_id=user_id,
                agent_id=agent.id if agent else None,
                travel_date=draft.travel_date,
                adults=draft.adults,
                children=draft.children,
                infants=draft.infants,
                currency=quote.currency,
                package_price=quote.subtotal,
                discount=quote.discount,
                promo_code_id=quote.promo_code_id,
                promo_discount=quote.discount,
                tax=quote.tax,
                total_amount=quote.total,
                paid_amount=0,
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                hold_token=draft.hold_token,
                travelers_info=draft.travelers_info,
                special_requests=draft.special_requests,
            )
            self.db.add(booking)
            await self.db.flush()

            if quote.promo is not None:
                await self._redeem_promo(quote.promo, user_id, booking)

            await self.ledger.reserve(package, draft.travel_date, draft.participants)

            if agent is not None and agent.commission_rate is not None:
                self.db.add(AgentCommission(
                    agent_id=agent.id,
                    booking_id=booking.id,
                    booking_amount=booking.total_amount,
                    commission_rate=agent.commission_rate,
                    commission_amount=percentage_of(booking.total_amount, agent.commission_rate),
                    status=CommissionStatus.PENDING,
                ))
                await self.db.flush()

            return booking

        try:
            async with self.ledger.lock(draft.package_id, draft.travel_date):
                booking = await run_in_transaction(self.db, unit_of_work)
        except CapacityExceededError:
            metrics_collector.record_capacity_rejection("booking")
            raise
        except HoldExpiredError:
            logger.warning(
                "Booking rejected - hold no longer valid",
                extra={"user_id": str(user_id), "package_id": str(draft.package_id)}
            )
            raise

        metrics_collector.record_booking_created(with_hold=bool(draft.hold_token))
        if booking.promo_code_id:
            metrics_collector.record_promo_redemption()

        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "package_id": str(booking.package_id),
                "travel_date": booking.travel_date.isoformat(),
                "participants": booking.participants,
                "total_amount": booking.total_amount,
                "from_hold": bool(draft.hold_token),
                "user_id": str(user_id),
            }
        )
        return booking

    async def _load_hold_for_booking(self, user_id: UUID, draft: BookingDraft) -> InventoryHold:
        token = draft.hold_token
        now = utcnow()
        hold = (await self.db.execute(
            select(InventoryHold)
            .where(InventoryHold.hold_token == token, InventoryHold.user_id == user_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

        if hold is None:
            raise HoldExpiredError(token, reason="not_found")
        if hold.status != HoldStatus.ACTIVE:
            raise HoldExpiredError(token, reason=HoldStatus(hold.status).value)
        if hold.expires_at <= now:
            raise HoldExpiredError(token, expired_at=hold.expires_at)
        if (
            hold.package_id != draft.package_id
            or hold.travel_date != draft.travel_date
            or hold.slots_held != draft.participants
        ):
            raise HoldExpiredError(token, reason="mismatch")
        return hold

    async def _convert_hold(self, hold: InventoryHold, booking_id: UUID) -> None:
        """Flip the hold to converted, conditioned on it still being live right now."""
        now = utcnow()
        result = await self.db.execute(
            update(InventoryHold)
            .where(
                InventoryHold.id == hold.id,
                InventoryHold.status == HoldStatus.ACTIVE,
                InventoryHold.expires_at > now,
            )
            .values(status=HoldStatus.CONVERTED, booking_id=booking_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Released, swept or lapsed since it was read
            raise HoldExpiredError(hold.hold_token, reason="concurrently_closed")

    async def _redeem_promo(self, promo: PromoCode, user_id: UUID, booking: Booking) -> None:
        """
        Record usage and bump the counter.

        The promo row is locked before the per-user count is re-read, so two
        bookings by one user on different dates cannot both take the last
        personal use. The global limit is re-checked in the increment itself.
        """
        locked = (await self.db.execute(
            select(PromoCode)
            .where(PromoCode.id == promo.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one()

        if locked.usage_limit_per_user is not None:
            used = (await self.db.execute(
                select(func.count(PromoCodeUsage.id)).where(
                    PromoCodeUsage.promo_code_id == promo.id,
                    PromoCodeUsage.user_id == user_id,
                )
            )).scalar_one()
            if used >= locked.usage_limit_per_user:
                raise PromoInvalidError(
                    promo.code, "PROMO_USER_LIMIT", "You have already used this promo code the maximum number of times"
                )

        result = await self.db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo.id,
                or_(PromoCode.usage_limit.is_(None), PromoCode.usage_count < PromoCode.usage_limit),
            )
            .values(usage_count=PromoCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise PromoInvalidError(promo.code, "PROMO_USAGE_LIMIT", "Promo code usage limit reached")

        self.db.add(PromoCodeUsage(
            promo_code_id=promo.id,
            user_id=user_id,
            booking_id=booking.id,
            discount_applied=booking.promo_discount,
        ))
        await self.db.flush()

    async def _resolve_agent(self, agent_id: Optional[UUID]) -> Optional[User]:
        """Agent the booking is attributed to, if any."""
        if agent_id is None:
            return None
        agent = await self.db.get(User, agent_id)
        if agent is None or agent.role != UserRole.AGENT:
            raise ValidationError(f"User {agent_id} is not a travel agent", errors={"agent_id": str(agent_id)})
        return agent

    async def get_booking(self, booking_id: UUID) -> Booking:
        """
        Get booking by ID.

        Raises:
            NotFoundError: If booking not found
        """
        booking = (await self.db.execute(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def get_booking_for_user(self, booking_id: UUID, user_id: UUID, privileged: bool = False) -> Booking:
        booking = await self.get_booking(booking_id)
        if not privileged and booking.user_id != user_id:
            raise AuthorizationError("You can only access your own bookings")
        return booking

    async def list_bookings(self, user_id: UUID, status: Optional[BookingStatus] = None) -> list[Booking]:
        stmt = select(Booking).where(Booking.user_id == user_id).order_by(Booking.created_at.desc())
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return list((await self.db.execute(stmt)).scalars())

    async def confirm_booking(self, booking_id: UUID) -> Booking:
        """
        Move a pending booking to confirmed. Confirming twice is a no-op.

        Raises:
            NotFoundError: If booking not found
            BookingStateError: If the booking is cancelled or completed
        """
        async def unit_of_work() -> Booking:
            booking = await self.get_booking(booking_id)
            if booking.status == BookingStatus.CONFIRMED:
                return booking
            if booking.status != BookingStatus.PENDING:
                raise BookingStateError(str(booking_id), BookingStatus(booking.status).value, "confirm")
            booking.status = BookingStatus.CONFIRMED
            booking.confirmed_at = utcnow()
            await self.db.flush()
            return booking

        booking = await run_in_transaction(self.db, unit_of_work)
        logger.info("Booking confirmed", extra={"booking_id": str(booking_id)})
        return booking

    async def complete_booking(self, booking_id: UUID) -> Booking:
        """
        Mark a confirmed booking as travelled. Completing twice is a no-op.

        A completed booking can no longer be cancelled.

        Raises:
            NotFoundError: If booking not found
            BookingStateError: If the booking is pending or cancelled
        """
        async def unit_of_work() -> Booking:
            booking = await self.get_booking(booking_id)
            if booking.status == BookingStatus.COMPLETED:
                return booking
            if booking.status != BookingStatus.CONFIRMED:
                raise BookingStateError(str(booking_id), BookingStatus(booking.status).value, "complete")
            booking.status = BookingStatus.COMPLETED
            await self.db.flush()
            return booking

        booking = await run_in_transaction(self.db, unit_of_work)
        logger.info("Booking completed", extra={"booking_id": str(booking_id)})
        return booking

    async def record_payment(self, booking_id: UUID, amount: int) -> Booking:
        """
        Apply a payment reported by the payments subsystem.

        Raises:
            NotFoundError: If booking not found
            ValidationError: If the amount is not positive
            BookingStateError: If the booking is cancelled
        """
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", errors={"amount": amount})

        async def unit_of_work() -> Booking:
            booking = await self.get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise BookingStateError(str(booking_id), BookingStatus(booking.status).value, "pay for")
            booking.paid_amount += amount
            booking.payment_status = (
                PaymentStatus.PAID if booking.paid_amount >= booking.total_amount else PaymentStatus.PARTIAL
            )
            await self.db.flush()
            return booking

        booking = await run_in_transaction(self.db, unit_of_work)
        logger.info(
            "Payment recorded",
            extra={
                "booking_id": str(booking_id),
                "amount": amount,
                "paid_amount": booking.paid_amount,
                "payment_status": booking.payment_status,
            }
        )
        return booking

    async def _quote_refund(self, booking: Booking, today: date) -> RefundQuote:
        package = await self.db.get(Package, booking.package_id)
        if package is None:
            raise NotFoundError(resource_type="package", resource_id=str(booking.package_id))
        return await self.policies.quote_refund(package, booking.paid_amount, booking.travel_date, today)

    async def preview_cancellation(self, booking_id: UUID, today: Optional[date] = None) -> RefundQuote:
        """Refund the booking would get if cancelled today. Writes nothing."""
        booking = await self.get_booking(booking_id)
        if booking.status in CLOSED_STATUSES:
            raise BookingStateError(str(booking_id), BookingStatus(booking.status).value, "cancel")
        return await self._quote_refund(booking, today or utcnow().date())

    async def cancel_booking(
        self,
        booking_id: UUID,
        user_id: UUID,
        privileged: bool = False,
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> tuple[Booking, RefundQuote]:
        """
        Cancel a booking, persist the refund and give its slots back.

        Args:
            booking_id: Booking to cancel
            user_id: Caller; customers may only cancel their own bookings
            privileged: True for agents and admins acting on any booking
            reason: Free-text cancellation reason
            today: Override for the current date

        Returns:
            The cancelled booking and the refund it earned

        Raises:
            NotFoundError: If booking not found
            AuthorizationError: If the caller does not own the booking
            BookingStateError: If the booking is already cancelled or completed
        """
        booking = await self.get_booking_for_user(booking_id, user_id, privileged)
        package_id, travel_date = booking.package_id, booking.travel_date
        today = today or utcnow().date()

        async def unit_of_work() -> tuple[Booking, RefundQuote]:
            package = await self.ledger.get_package_or_raise(package_id)
            await self.ledger.acquire(package, travel_date)

            booking = (await self.db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )).scalar_one()
            if booking.status in CLOSED_STATUSES:
                raise BookingStateError(str(booking_id), BookingStatus(booking.status).value, "cancel")

            refund = await self.policies.quote_refund(package, booking.paid_amount, travel_date, today)

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = utcnow()
            booking.cancellation_reason = reason
            booking.refund_amount = refund.refund_amount
            booking.cancellation_fee = refund.cancellation_fee
            await self.db.flush()

            await self.ledger.release(package_id, travel_date, booking.participants)

            await self.db.execute(
                update(AgentCommission)
                .where(
                    AgentCommission.booking_id == booking_id,
                    AgentCommission.status != CommissionStatus.CANCELLED,
                )
                .values(status=CommissionStatus.CANCELLED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return booking, refund

        async with self.ledger.lock(package_id, travel_date):
            booking, refund = await run_in_transaction(self.db, unit_of_work)

        metrics_collector.record_booking_cancelled()
        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking_id),
                "refund_amount": refund.refund_amount,
                "cancellation_fee": refund.cancellation_fee,
                "days_until_travel": refund.days_until_travel,
                "released_slots": booking.participants,
            }
        )
        return booking, refund
