"""Pricing engine: subtotal, promo discount, tax and total for a prospective booking."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import PromoInvalidError, PromoNotFoundError
from ..models.package import Package, PackageAvailability
from ..models.promo import DiscountType, PromoCode, PromoCodeUsage

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def round_minor(value: Decimal) -> int:
    """Quantize a Decimal amount to whole minor units, half up."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percentage_of(amount: int, percentage: Decimal) -> int:
    return round_minor(Decimal(amount) * Decimal(percentage) / HUNDRED)


@dataclass(frozen=True)
class Quote:
    """Price breakdown in minor units of ``currency``."""

    currency: str
    unit_price: int
    participants: int
    subtotal: int
    discount: int
    tax: int
    total: int
    promo: Optional[PromoCode] = None

    @property
    def promo_code_id(self) -> Optional[UUID]:
        return self.promo.id if self.promo else None


@dataclass(frozen=True)
class PromoValidation:
    promo: PromoCode
    discount_amount: int
    final_amount: int


class PricingService:
    """
    Computes prices without writing anything.

    The same ``quote`` backs the preview endpoint and the committed booking,
    so a customer is charged exactly what they were shown for the same inputs.
    """

    def __init__(self, db: AsyncSession, tax_rate: Optional[Decimal] = None):
        self.db = db
        self.tax_rate = Decimal(settings.tax_rate if tax_rate is None else tax_rate)

    async def unit_price(self, package: Package, travel_date: date) -> int:
        """Per-participant price, preferring the date's override."""
        stmt = select(PackageAvailability.price_override).where(
            PackageAvailability.package_id == package.id,
            PackageAvailability.date == travel_date,
        )
        override = (await self.db.execute(stmt)).scalar_one_or_none()
        return override if override is not None else package.price_amount

    async def get_promo(self, code: str) -> Optional[PromoCode]:
        stmt = (
            select(PromoCode)
            .where(PromoCode.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def resolve_promo(
        self,
        code: str,
        package_id: UUID,
        user_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PromoCode:
        """
        Look up a promo code and check it can be applied to this package and user.

        Raises:
            PromoNotFoundError: If no promo code matches
            PromoInvalidError: If the code is inactive, outside its validity
                window, used up, used up for this user, or not applicable
        """
        promo = await self.get_promo(code)
        if promo is None:
            raise PromoNotFoundError(code)

        now = now or utcnow()
        if not promo.is_active:
            raise PromoInvalidError(promo.code, "PROMO_INACTIVE", "Promo code is not active")
        if promo.valid_from and now < promo.valid_from:
            raise PromoInvalidError(promo.code, "PROMO_NOT_STARTED", "Promo code is not valid yet")
        if promo.valid_until and now > promo.valid_until:
            raise PromoInvalidError(promo.code, "PROMO_EXPIRED", "Promo code has expired")
        if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
            raise PromoInvalidError(promo.code, "PROMO_USAGE_LIMIT", "Promo code usage limit reached")

        if user_id is not None and promo.usage_limit_per_user is not None:
            used = (await self.db.execute(
                select(func.count(PromoCodeUsage.id)).where(
                    PromoCodeUsage.promo_code_id == promo.id,
                    PromoCodeUsage.user_id == user_id,
                )
            )).scalar_one()
            if used >= promo.usage_limit_per_user:
                raise PromoInvalidError(
                    promo.code, "PROMO_USER_LIMIT", "You have already used this promo code the maximum number of times"
                )

        package_key = str(package_id)
        if promo.excluded_packages and package_key in promo.excluded_packages:
            raise PromoInvalidError(promo.code, "PROMO_NOT_APPLICABLE", "Promo code is not valid for this package")
        if promo.applicable_packages and package_key not in promo.applicable_packages:
            raise PromoInvalidError(promo.code, "PROMO_NOT_APPLICABLE", "Promo code is not valid for this package")

        return promo

    @staticmethod
    def calculate_discount(promo: PromoCode, subtotal: int) -> int:
        """
        Discount for ``subtotal`` in minor units.

        Zero below the minimum order amount; otherwise the percentage or flat
        value, capped by ``max_discount_amount`` and by the subtotal itself.
        """
        if promo.min_order_amount is not None and subtotal < promo.min_order_amount:
            return 0

        if promo.discount_type == DiscountType.PERCENTAGE:
            discount = percentage_of(subtotal, promo.discount_value)
        else:
            discount = round_minor(Decimal(promo.discount_value))

        if promo.max_discount_amount is not None:
            discount = min(discount, promo.max_discount_amount)
        return max(0, min(discount, subtotal))

    def calculate_tax(self, taxable_amount: int) -> int:
        return round_minor(Decimal(taxable_amount) * self.tax_rate)

    async def quote(
        self,
        package: Package,
        travel_date: date,
        participants: int,
        promo_code: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> Quote:
        """
        Price a prospective booking.

        Args:
            package: Package being booked
            travel_date: Date of travel, selects any price override
            participants: Slot-occupying participants
            promo_code: Optional code to validate and apply
            user_id: Customer, used for the per-user promo limit

        Returns:
            Quote with subtotal, discount, tax and total

        Raises:
            PromoNotFoundError, PromoInvalidError: If the promo code cannot be applied
        """
        unit_price = await self.unit_price(package, travel_date)
        subtotal = unit_price * participants

        promo = None
        discount = 0
        if promo_code:
            promo = await self.resolve_promo(promo_code, package.id, user_id)
            discount = self.calculate_discount(promo, subtotal)

        tax = self.calculate_tax(subtotal - discount)
        return Quote(
            currency=package.currency,
            unit_price=unit_price,
            participants=participants,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            total=subtotal - discount + tax,
            promo=promo,
        )

    async def validate_promo(
        self,
        code: str,
        package_id: UUID,
        amount: int,
        user_id: Optional[UUID] = None,
    ) -> PromoValidation:
        """Check a promo code against an order amount for the promo preview endpoint."""
        promo = await self.resolve_promo(code, package_id, user_id)
        discount = self.calculate_discount(promo, amount)
        if discount == 0 and promo.min_order_amount is not None and amount < promo.min_order_amount:
            raise PromoInvalidError(
                promo.code,
                "MIN_ORDER_NOT_MET",
                f"Minimum order amount of {promo.min_order_amount} required"
            )

        logger.debug(
            "Promo code validated",
            extra={"promo_code": promo.code, "package_id": str(package_id), "amount": amount, "discount": discount}
        )
        return PromoValidation(promo=promo, discount_amount=discount, final_amount=max(0, amount - discount))
