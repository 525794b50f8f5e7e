"""Capacity ledger: the ground truth for how many slots a package date has left."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import NotFoundError
from ..core.locking import advisory_xact_lock, capacity_lock_key, is_postgresql, local_lock
from ..models.hold import HoldStatus, InventoryHold
from ..models.package import Package, PackageAvailability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacitySnapshot:
    """Capacity breakdown for one package date at one instant."""

    package_id: UUID
    date: date
    base_capacity: int
    booked_slots: int
    held_slots: int
    is_available: bool

    @property
    def available_slots(self) -> int:
        if not self.is_available:
            return 0
        return max(0, self.base_capacity - self.booked_slots - self.held_slots)


class CapacityLedger:
    """
    Reads and mutates per-date capacity for packages.

    ``available_slots`` is derived on every read from the availability row and
    the live holds; nothing is cached. ``reserve`` and ``release`` are the only
    writers of ``booked_slots`` and never commit, so they join the caller's
    unit of work.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_package_or_raise(self, package_id: UUID) -> Package:
        """
        Get package by ID or raise NotFoundError.

        Args:
            package_id: Package ID to search for

        Returns:
            Package entity

        Raises:
            NotFoundError: If package not found
        """
        stmt = select(Package).where(Package.id == package_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        package = result.scalar_one_or_none()
        if not package:
            raise NotFoundError(resource_type="package", resource_id=str(package_id))
        return package

    async def get_availability(
        self,
        package_id: UUID,
        travel_date: date,
        for_update: bool = False,
    ) -> Optional[PackageAvailability]:
        """Load the availability row for a package date, if the catalog created one."""
        stmt = (
            select(PackageAvailability)
            .where(
                PackageAvailability.package_id == package_id,
                PackageAvailability.date == travel_date,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def held_slots(self, package_id: UUID, travel_date: date, now: Optional[datetime] = None) -> int:
        """Sum of slots held by holds that are both active and unexpired."""
        now = now or utcnow()
        stmt = select(func.coalesce(func.sum(InventoryHold.slots_held), 0)).where(
            InventoryHold.package_id == package_id,
            InventoryHold.travel_date == travel_date,
            InventoryHold.status == HoldStatus.ACTIVE,
            InventoryHold.expires_at > now,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def snapshot(self, package: Package, travel_date: date, now: Optional[datetime] = None) -> CapacitySnapshot:
        availability = await self.get_availability(package.id, travel_date)
        held = await self.held_slots(package.id, travel_date, now)

        if availability is None:
            return CapacitySnapshot(
                package_id=package.id,
                date=travel_date,
                base_capacity=package.max_participants,
                booked_slots=0,
                held_slots=held,
                is_available=package.is_active,
            )

        return CapacitySnapshot(
            package_id=package.id,
            date=travel_date,
            base_capacity=availability.available_slots,
            booked_slots=availability.booked_slots,
            held_slots=held,
            is_available=package.is_active and availability.is_available,
        )

    async def available_slots(self, package: Package, travel_date: date, now: Optional[datetime] = None) -> int:
        """
        Slots that can still be held or booked, floored at zero.

        Args:
            package: Package being sold
            travel_date: Date of travel
            now: Reference time for hold expiry, defaults to the current time

        Returns:
            base capacity minus booked slots minus live holds
        """
        snapshot = await self.snapshot(package, travel_date, now)
        return snapshot.available_slots

    @asynccontextmanager
    async def lock(self, package_id: UUID, travel_date: date) -> AsyncIterator[None]:
        """
        Serialize capacity-affecting units of work for one package date.

        Wrap the whole transaction (including commit) in this block and call
        ``acquire`` at the start of each attempt. On PostgreSQL the serialization
        comes from the advisory lock taken by ``acquire``, so this is a no-op;
        elsewhere an in-process lock is held until the block exits.
        """
        if is_postgresql(self.db):
            yield
            return
        async with local_lock(capacity_lock_key(package_id, travel_date)):
            yield

    async def acquire(self, package: Package, travel_date: date) -> PackageAvailability:
        """
        Take the per-date lock inside the current transaction and return the row.

        Creates the availability row from package defaults when the catalog has
        none, so later bookings against the fallback capacity are counted.
        """
        await advisory_xact_lock(self.db, capacity_lock_key(package.id, travel_date))

        availability = await self.get_availability(package.id, travel_date, for_update=True)
        if availability is None:
            availability = PackageAvailability(
                package_id=package.id,
                date=travel_date,
                available_slots=package.max_participants,
                booked_slots=0,
                is_available=True,
            )
            self.db.add(availability)
            await self.db.flush()
            logger.debug(
                "Created availability row from package defaults",
                extra={
                    "package_id": str(package.id),
                    "travel_date": travel_date.isoformat(),
                    "available_slots": package.max_participants,
                }
            )
        return availability

    async def reserve(self, package: Package, travel_date: date, slots: int) -> None:
        """Move ``slots`` into booked_slots with a single-row increment."""
        stmt = (
            update(PackageAvailability)
            .where(
                PackageAvailability.package_id == package.id,
                PackageAvailability.date == travel_date,
            )
            .values(booked_slots=PackageAvailability.booked_slots + slots, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            self.db.add(PackageAvailability(
                package_id=package.id,
                date=travel_date,
                available_slots=package.max_participants,
                booked_slots=slots,
                is_available=True,
            ))
            await self.db.flush()

        logger.debug(
            "Reserved slots",
            extra={"package_id": str(package.id), "travel_date": travel_date.isoformat(), "slots": slots}
        )

    async def release(self, package_id: UUID, travel_date: date, slots: int) -> None:
        """Return ``slots`` from booked_slots, never dropping below zero."""
        stmt = (
            update(PackageAvailability)
            .where(
                PackageAvailability.package_id == package_id,
                PackageAvailability.date == travel_date,
            )
            .values(
                booked_slots=case(
                    (PackageAvailability.booked_slots > slots, PackageAvailability.booked_slots - slots),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                "Release requested for a date without an availability row",
                extra={"package_id": str(package_id), "travel_date": travel_date.isoformat(), "slots": slots}
            )
            return

        logger.debug(
            "Released slots",
            extra={"package_id": str(package_id), "travel_date": travel_date.isoformat(), "slots": slots}
        )
