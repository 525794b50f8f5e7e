"""Inventory hold model definition."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class HoldStatus(str, Enum):
    """Hold status enumeration. Everything except ACTIVE is terminal."""
    ACTIVE = "active"
    CONVERTED = "converted"
    RELEASED = "released"
    EXPIRED = "expired"


class InventoryHold(Base):
    """A time-boxed claim on capacity that precedes a booking."""

    __tablename__ = "inventory_holds"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    package_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("packages.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    travel_date: Mapped[date] = mapped_column(Date, nullable=False)
    slots_held: Mapped[int] = mapped_column(Integer, nullable=False)

    hold_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[HoldStatus] = mapped_column(String(20), nullable=False, default=HoldStatus.ACTIVE)

    # Set when the hold is converted into a booking
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("slots_held > 0", name="ck_hold_slots_positive"),
        CheckConstraint(
            "status IN ('active', 'converted', 'released', 'expired')",
            name="ck_hold_status_valid"
        ),
        # Ledger sum and sweeper both filter on these columns
        Index("ix_inventory_holds_capacity", "package_id", "travel_date", "status", "expires_at"),
        Index("ix_inventory_holds_status_expires", "status", "expires_at"),
    )

    def is_live(self, now: datetime) -> bool:
        """True while the hold still counts against capacity."""
        return self.status == HoldStatus.ACTIVE and self.expires_at > now

    def __repr__(self) -> str:
        return (
            f"<InventoryHold(id={self.id}, package_id={self.package_id}, date={self.travel_date}, "
            f"slots={self.slots_held}, status={self.status}, expires_at={self.expires_at})>"
        )
