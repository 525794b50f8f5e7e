"""Hold manager: time-boxed capacity claims that precede a booking."""

import logging
import secrets
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import run_in_transaction, utcnow
from ..core.exceptions import CapacityExceededError, HoldNotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.hold import HoldStatus, InventoryHold
from .capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)


def generate_hold_token() -> str:
    """64 URL-safe characters carrying 384 bits of randomness."""
    return secrets.token_urlsafe(48)


class HoldService:
    """Service for creating, releasing and expiring inventory holds."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = CapacityLedger(db)

    async def create_hold(
        self,
        package_id: UUID,
        travel_date: date,
        user_id: UUID,
        slots: int,
        today: Optional[date] = None,
    ) -> InventoryHold:
        """
        Hold capacity for a user, superseding their previous hold on the same date.

        Supersession, the capacity check and the insert run in one transaction
        under the per-date lock, so concurrent requests for the last slot cannot
        both succeed and a user never has two active holds for one date.

        Args:
            package_id: Package to hold
            travel_date: Date of travel, must be after today
            user_id: Customer placing the hold
            slots: Participants to hold, at least 1
            today: Override for the current date

        Returns:
            The new active hold

        Raises:
            ValidationError: If slots or travel_date are invalid, or the package is inactive
            NotFoundError: If the package does not exist
            CapacityExceededError: If fewer than ``slots`` are available
        """
        if slots < 1:
            raise ValidationError("At least one participant is required", errors={"slots": slots})
        today = today or utcnow().date()
        if travel_date <= today:
            raise ValidationError(
                "Travel date must be in the future",
                errors={"travel_date": travel_date.isoformat()}
            )

        async def unit_of_work() -> InventoryHold:
            package = await self.ledger.get_package_or_raise(package_id)
            if not package.is_active:
                raise ValidationError(f"Package {package_id} is not available for booking")

            await self.ledger.acquire(package, travel_date)
            now = utcnow()

            superseded = await self.db.execute(
                update(InventoryHold)
                .where(
                    InventoryHold.user_id == user_id,
                    InventoryHold.package_id == package_id,
                    InventoryHold.travel_date == travel_date,
                    InventoryHold.status == HoldStatus.ACTIVE,
                )
                .values(status=HoldStatus.RELEASED, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            available = await self.ledger.available_slots(package, travel_date, now)
            if slots > available:
                raise CapacityExceededError(
                    package_id=str(package_id),
                    travel_date=travel_date,
                    requested_slots=slots,
                    available_slots=available,
                )

            hold = InventoryHold(
                package_id=package_id,
                user_id=user_id,
                travel_date=travel_date,
                slots_held=slots,
                hold_token=generate_hold_token(),
                expires_at=now + timedelta(minutes=settings.hold_ttl_minutes),
                status=HoldStatus.ACTIVE,
            )
            self.db.add(hold)
            await self.db.flush()

            if superseded.rowcount:
                logger.info(
                    "Superseded previous hold",
                    extra={
                        "user_id": str(user_id),
                        "package_id": str(package_id),
                        "travel_date": travel_date.isoformat(),
                        "superseded": superseded.rowcount,
                    }
                )
            return hold

        try:
            async with self.ledger.lock(package_id, travel_date):
                hold = await run_in_transaction(self.db, unit_of_work)
        except CapacityExceededError as e:
            metrics_collector.record_capacity_rejection("hold")
            logger.warning(
                "Hold creation failed - insufficient capacity",
                extra={
                    "package_id": str(package_id),
                    "travel_date": travel_date.isoformat(),
                    "requested_slots": slots,
                    "available_slots": e.problem_details["available_slots"],
                }
            )
            raise

        metrics_collector.record_hold_created()
        logger.info(
            "Hold created successfully",
            extra={
                "hold_id": str(hold.id),
                "package_id": str(package_id),
                "travel_date": travel_date.isoformat(),
                "slots": slots,
                "user_id": str(user_id),
                "expires_at": hold.expires_at.isoformat(),
            }
        )
        return hold

    async def release_hold(self, hold_token: str, user_id: UUID) -> None:
        """
        Release an active hold owned by the user.

        The transition is conditioned on the hold still being active, so a
        second release finds nothing and raises.

        Raises:
            HoldNotFoundError: If no active hold matches the token for this user
        """
        async def unit_of_work() -> int:
            result = await self.db.execute(
                update(InventoryHold)
                .where(
                    InventoryHold.hold_token == hold_token,
                    InventoryHold.user_id == user_id,
                    InventoryHold.status == HoldStatus.ACTIVE,
                )
                .values(status=HoldStatus.RELEASED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise HoldNotFoundError(hold_token)
            return result.rowcount

        await run_in_transaction(self.db, unit_of_work)

        metrics_collector.record_hold_released()
        logger.info("Hold released", extra={"hold_token": hold_token[:8], "user_id": str(user_id)})

    async def sweep_expired(self, now: Optional[datetime] = None, batch_size: int = 500) -> int:
        """
        Mark lapsed active holds as expired.

        Every transition re-checks ``status = active``, so concurrent sweepers
        never expire the same hold twice. No capacity bookkeeping happens here:
        a lapsed hold already stopped counting when its expiry passed.

        Args:
            now: Reference time, defaults to the current time
            batch_size: Holds expired per transaction

        Returns:
            Number of holds this sweeper expired
        """
        now = now or utcnow()
        total = 0

        while True:
            async def unit_of_work() -> int:
                ids = (await self.db.execute(
                    select(InventoryHold.id)
                    .where(InventoryHold.status == HoldStatus.ACTIVE, InventoryHold.expires_at < now)
                    .limit(batch_size)
                )).scalars().all()
                if not ids:
                    return 0
                result = await self.db.execute(
                    update(InventoryHold)
                    .where(
                        InventoryHold.id.in_(ids),
                        InventoryHold.status == HoldStatus.ACTIVE,
                        InventoryHold.expires_at < now,
                    )
                    .values(status=HoldStatus.EXPIRED, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount

            expired = await run_in_transaction(self.db, unit_of_work)
            total += expired
            if expired < batch_size:
                break

        metrics_collector.record_holds_expired(total)
        if total:
            logger.info("Expired lapsed holds", extra={"expired_count": total, "now": now.isoformat()})
        return total

    async def get_hold_by_token(self, hold_token: str) -> Optional[InventoryHold]:
        """Get hold by token, reloading any cached copy."""
        stmt = (
            select(InventoryHold)
            .where(InventoryHold.hold_token == hold_token)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
