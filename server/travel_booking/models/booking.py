"""Booking model definition."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """Payment status enumeration. Written by the payments subsystem."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"


class Booking(Base):
    """A priced reservation of one or more participants on a package date."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_number: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)

    package_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    agent_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    travel_date: Mapped[date] = mapped_column(Date, nullable=False)
    adults: Mapped[int] = mapped_column(Integer, nullable=False)
    children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Money, all in minor units of ``currency``
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    package_price: Mapped[int] = mapped_column(Integer, nullable=False)
    discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promo_code_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("promo_codes.id", ondelete="SET NULL"),
        nullable=True
    )
    promo_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[BookingStatus] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING
    )

    cancellation_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    hold_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    travelers_info: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("adults >= 1", name="ck_booking_adults_positive"),
        CheckConstraint("children >= 0 AND infants >= 0", name="ck_booking_party_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_booking_paid_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="ck_booking_status_valid"
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'partial', 'paid', 'refunded')",
            name="ck_booking_payment_status_valid"
        ),
        Index("ix_bookings_package_date", "package_id", "travel_date"),
    )

    @property
    def participants(self) -> int:
        """Participants occupying a slot. Infants travel on a lap."""
        return self.adults + self.children

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, number='{self.booking_number}', package_id={self.package_id}, "
            f"date={self.travel_date}, status={self.status})>"
        )
