"""Package and per-date availability models."""

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.config import settings
from ..core.database import Base, utcnow


class Package(Base):
    """A sellable travel package. Managed by the catalog; read-only to booking."""

    __tablename__ = "packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Base unit price per participant, in minor units
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=lambda: settings.default_currency)

    # Capacity used for dates without an availability row
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)

    cancellation_policy_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("cancellation_policies.id", ondelete="SET NULL"),
        nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[dt.datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("price_amount >= 0", name="ck_package_price_non_negative"),
        CheckConstraint("max_participants >= 0", name="ck_package_max_participants_non_negative"),
        CheckConstraint("length(currency) = 3", name="ck_package_currency_iso"),
    )

    def __repr__(self) -> str:
        return f"<Package(id={self.id}, title='{self.title}', max_participants={self.max_participants})>"


class PackageAvailability(Base):
    """Capacity and consumption counter for one package on one date."""

    __tablename__ = "package_availability"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    package_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    # Base capacity for the date
    available_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    # Slots consumed by committed bookings; only the capacity ledger writes this
    booked_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    price_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[dt.datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("package_id", "date", name="uq_package_availability_package_date"),
        CheckConstraint("available_slots >= 0", name="ck_availability_slots_non_negative"),
        CheckConstraint("booked_slots >= 0", name="ck_availability_booked_non_negative"),
        CheckConstraint("price_override IS NULL OR price_override >= 0", name="ck_availability_price_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<PackageAvailability(package_id={self.package_id}, date={self.date}, "
            f"booked={self.booked_slots}/{self.available_slots})>"
        )
