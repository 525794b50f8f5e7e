"""Cancellation policy and rule models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow


class CancellationPolicy(Base):
    """A named set of refund tiers keyed by days before travel."""

    __tablename__ = "cancellation_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    rules: Mapped[list["CancellationPolicyRule"]] = relationship(
        "CancellationPolicyRule",
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="CancellationPolicyRule.days_before_travel.desc()",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CancellationPolicy(id={self.id}, name='{self.name}', is_default={self.is_default})>"


class CancellationPolicyRule(Base):
    """One refund tier: cancelling at least ``days_before_travel`` days out."""

    __tablename__ = "cancellation_policy_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    policy_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("cancellation_policies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    days_before_travel: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    # Fixed fee deducted from the refund, in minor units
    fee_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("policy_id", "days_before_travel", name="uq_policy_rule_threshold"),
        CheckConstraint("days_before_travel >= 0", name="ck_policy_rule_days_non_negative"),
        CheckConstraint(
            "refund_percentage >= 0 AND refund_percentage <= 100",
            name="ck_policy_rule_percentage_range"
        ),
        CheckConstraint("fee_amount >= 0", name="ck_policy_rule_fee_non_negative"),
    )

    policy: Mapped["CancellationPolicy"] = relationship("CancellationPolicy", back_populates="rules")
