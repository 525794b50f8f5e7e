"""Agent commission model definition."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class CommissionStatus(str, Enum):
    """Commission status enumeration."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class AgentCommission(Base):
    """Commission owed to the agent who sold a booking."""

    __tablename__ = "agent_commissions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agent_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    booking_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionStatus.PENDING
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("commission_amount >= 0", name="ck_commission_amount_non_negative"),
        CheckConstraint("status IN ('pending', 'paid', 'cancelled')", name="ck_commission_status_valid"),
    )
