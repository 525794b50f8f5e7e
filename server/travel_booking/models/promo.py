"""Promo code and promo usage models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class DiscountType(str, Enum):
    """How ``discount_value`` is interpreted."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromoCode(Base):
    """A discount code customers can apply to a booking."""

    __tablename__ = "promo_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    discount_type: Mapped[DiscountType] = mapped_column(String(20), nullable=False)
    # Percentage points for percentage codes, minor units for fixed codes
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_order_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_discount_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)

    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_limit_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Package id strings; an empty applicable list means every package
    applicable_packages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    excluded_packages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    valid_from: Mapped[datetime | None] = mapped_column(nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_promo_value_non_negative"),
        CheckConstraint("usage_count >= 0", name="ck_promo_usage_count_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promo_usage_within_limit"
        ),
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name="ck_promo_discount_type_valid"),
    )

    def __repr__(self) -> str:
        return f"<PromoCode(code='{self.code}', type={self.discount_type}, used={self.usage_count})>"


class PromoCodeUsage(Base):
    """Append-only record of a promo code applied to a booking."""

    __tablename__ = "promo_code_usages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    promo_code_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("promo_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    booking_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    discount_applied: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("promo_code_id", "booking_id", name="uq_promo_usage_code_booking"),
    )
