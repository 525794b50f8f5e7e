"""Cancellation policy engine: tiered refunds by days before travel."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Protocol
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import run_in_transaction
from ..core.exceptions import NotFoundError, PolicyInUseError, ValidationError
from ..models.cancellation import CancellationPolicy, CancellationPolicyRule
from ..models.package import Package
from .pricing_service import HUNDRED, round_minor

logger = logging.getLogger(__name__)


class RefundRule(Protocol):
    days_before_travel: int
    refund_percentage: Decimal
    fee_amount: int


@dataclass(frozen=True)
class RuleSpec:
    """A refund tier before it is attached to a policy."""

    days_before_travel: int
    refund_percentage: Decimal
    fee_amount: int = 0


@dataclass(frozen=True)
class RefundQuote:
    """Outcome of cancelling at a given distance from travel."""

    days_until_travel: int
    refund_percentage: Decimal
    refund_amount: int
    cancellation_fee: int
    policy_id: Optional[UUID] = None
    rule_days_before_travel: Optional[int] = None


def days_until_travel(travel_date: date, today: date) -> int:
    """Calendar days from today to travel; negative once travel has started."""
    return (travel_date - today).days


def select_rule(days: int, rules: Iterable[RefundRule]) -> Optional[RefundRule]:
    """The rule with the greatest threshold not exceeding ``days``."""
    eligible = [rule for rule in rules if rule.days_before_travel <= days]
    if not eligible:
        return None
    return max(eligible, key=lambda rule: rule.days_before_travel)


def calculate_refund(
    paid_amount: int,
    days: int,
    rules: Iterable[RefundRule],
    policy_id: Optional[UUID] = None,
) -> RefundQuote:
    """
    Refund and fee for cancelling ``days`` before travel.

    No qualifying rule (or no rules at all) means no refund: the whole paid
    amount is kept as the fee.

    Args:
        paid_amount: Amount the customer has paid, in minor units
        days: Days until travel
        rules: Refund tiers of the applicable policy
        policy_id: Policy the rules belong to, echoed in the result

    Returns:
        RefundQuote where refund_amount + cancellation_fee == paid_amount
    """
    rule = select_rule(days, rules)
    if rule is None:
        return RefundQuote(
            days_until_travel=days,
            refund_percentage=Decimal(0),
            refund_amount=0,
            cancellation_fee=paid_amount,
            policy_id=policy_id,
        )

    percentage = Decimal(rule.refund_percentage)
    gross = Decimal(paid_amount) * percentage / HUNDRED
    refund = max(0, round_minor(gross - Decimal(rule.fee_amount)))
    return RefundQuote(
        days_until_travel=days,
        refund_percentage=percentage,
        refund_amount=refund,
        cancellation_fee=paid_amount - refund,
        policy_id=policy_id,
        rule_days_before_travel=rule.days_before_travel,
    )


class CancellationPolicyService:
    """Service for resolving and managing cancellation policies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_policy(self, policy_id: UUID) -> Optional[CancellationPolicy]:
        stmt = (
            select(CancellationPolicy)
            .where(CancellationPolicy.id == policy_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_default_policy(self) -> Optional[CancellationPolicy]:
        stmt = (
            select(CancellationPolicy)
            .where(CancellationPolicy.is_default.is_(True), CancellationPolicy.is_active.is_(True))
            .order_by(CancellationPolicy.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_policies(self, active_only: bool = True) -> list[CancellationPolicy]:
        stmt = (
            select(CancellationPolicy)
            .order_by(CancellationPolicy.name)
            .execution_options(populate_existing=True)
        )
        if active_only:
            stmt = stmt.where(CancellationPolicy.is_active.is_(True))
        return list((await self.db.execute(stmt)).scalars())

    async def resolve_policy(self, package: Package) -> Optional[CancellationPolicy]:
        """
        Policy governing cancellations of a package.

        Falls back from the package's own active policy to the active global
        default. None means no refund, not an error.
        """
        if package.cancellation_policy_id:
            policy = await self.get_policy(package.cancellation_policy_id)
            if policy and policy.is_active:
                return policy
        return await self.get_default_policy()

    async def quote_refund(self, package: Package, paid_amount: int, travel_date: date, today: date) -> RefundQuote:
        policy = await self.resolve_policy(package)
        days = days_until_travel(travel_date, today)
        if policy is None:
            logger.info(
                "No cancellation policy resolved, refund is zero",
                extra={"package_id": str(package.id)}
            )
            return calculate_refund(paid_amount, days, [])
        return calculate_refund(paid_amount, days, policy.rules, policy_id=policy.id)

    async def create_policy(
        self,
        name: str,
        rules: list[RuleSpec],
        is_default: bool = False,
        description: Optional[str] = None,
    ) -> CancellationPolicy:
        """
        Create a policy with its refund tiers.

        Raises:
            ValidationError: If two rules share a threshold or a rule is out of range
        """
        thresholds = [rule.days_before_travel for rule in rules]
        if len(thresholds) != len(set(thresholds)):
            raise ValidationError(
                "Cancellation rules must have unique days_before_travel thresholds",
                errors={"days_before_travel": thresholds}
            )
        for rule in rules:
            if rule.days_before_travel < 0 or not (0 <= Decimal(rule.refund_percentage) <= 100) or rule.fee_amount < 0:
                raise ValidationError(
                    "Cancellation rule out of range",
                    errors={"days_before_travel": rule.days_before_travel}
                )

        async def unit_of_work() -> CancellationPolicy:
            if is_default:
                await self._clear_default()
            policy = CancellationPolicy(
                name=name,
                description=description,
                is_default=is_default,
                is_active=True,
                rules=[
                    CancellationPolicyRule(
                        days_before_travel=rule.days_before_travel,
                        refund_percentage=Decimal(rule.refund_percentage),
                        fee_amount=rule.fee_amount,
                    )
                    for rule in sorted(rules, key=lambda r: r.days_before_travel, reverse=True)
                ],
            )
            self.db.add(policy)
            await self.db.flush()
            return policy

        policy = await run_in_transaction(self.db, unit_of_work)
        logger.info(
            "Cancellation policy created",
            extra={"policy_id": str(policy.id), "rules": len(rules), "is_default": is_default}
        )
        return policy

    async def set_default(self, policy_id: UUID) -> CancellationPolicy:
        """Make a policy the global default, clearing the previous default in the same transaction."""
        async def unit_of_work() -> CancellationPolicy:
            policy = await self.get_policy(policy_id)
            if policy is None:
                raise NotFoundError(resource_type="cancellation_policy", resource_id=str(policy_id))
            await self._clear_default(except_id=policy_id)
            policy.is_default = True
            await self.db.flush()
            return policy

        policy = await run_in_transaction(self.db, unit_of_work)
        logger.info("Default cancellation policy changed", extra={"policy_id": str(policy_id)})
        return policy

    async def delete_policy(self, policy_id: UUID) -> None:
        """
        Delete a policy and its rules.

        Raises:
            NotFoundError: If the policy does not exist
            PolicyInUseError: If the policy is the default or governs a package
        """
        async def unit_of_work() -> None:
            policy = await self.get_policy(policy_id)
            if policy is None:
                raise NotFoundError(resource_type="cancellation_policy", resource_id=str(policy_id))
            if policy.is_default:
                raise PolicyInUseError(
                    str(policy_id), "Cannot delete the default policy; set another policy as default first"
                )
            packages = (await self.db.execute(
                select(func.count(Package.id)).where(Package.cancellation_policy_id == policy_id)
            )).scalar_one()
            if packages:
                raise PolicyInUseError(
                    str(policy_id), f"Cannot delete a policy assigned to {packages} package(s); reassign them first"
                )
            await self.db.delete(policy)
            await self.db.flush()

        await run_in_transaction(self.db, unit_of_work)
        logger.info("Cancellation policy deleted", extra={"policy_id": str(policy_id)})

    async def _clear_default(self, except_id: Optional[UUID] = None) -> None:
        stmt = update(CancellationPolicy).where(CancellationPolicy.is_default.is_(True))
        if except_id is not None:
            stmt = stmt.where(CancellationPolicy.id != except_id)
        await self.db.execute(
            stmt
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )
