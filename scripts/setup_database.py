#!/usr/bin/env python3
"""Setup script for the travel booking API: migrate, then seed sample data."""

import asyncio
import logging
from decimal import Decimal
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from travel_booking.core.database import async_session_factory, close_db
from travel_booking.core.observability import setup_structured_logging
from travel_booking.models import DiscountType, Package, PromoCode
from travel_booking.services.cancellation_service import CancellationPolicyService, RuleSpec

server_dir = Path(__file__).parent.parent / "server"

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Upgrade the database schema to the latest revision."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """A default cancellation policy, a few packages and a promo code."""
    async with async_session_factory() as db:
        existing = (await db.execute(select(func.count(Package.id)))).scalar_one()
        if existing:
            logger.info("Sample data already exists, skipping")
            return

        policy = await CancellationPolicyService(db).create_policy(
            "Standard",
            [
                RuleSpec(days_before_travel=30, refund_percentage=Decimal("100")),
                RuleSpec(days_before_travel=7, refund_percentage=Decimal("50"), fee_amount=2000),
                RuleSpec(days_before_travel=0, refund_percentage=Decimal("0")),
            ],
            is_default=True,
            description="Full refund a month out, half a week out, nothing after",
        )

        db.add_all([
            Package(title="Northern Lights Adventure", price_amount=29999, max_participants=40),
            Package(title="Amalfi Coast Week", price_amount=189900, max_participants=16),
            Package(
                title="Kyoto Temple Walk",
                price_amount=12500,
                max_participants=12,
                cancellation_policy_id=policy.id,
            ),
            PromoCode(
                code="WELCOME10",
                name="Welcome ten percent",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=Decimal("10"),
                max_discount_amount=5000,
                usage_limit=1000,
                usage_limit_per_user=1,
            ),
        ])
        await db.commit()
        logger.info("Sample data created", extra={"policy_id": str(policy.id)})


async def seed() -> None:
    try:
        await create_sample_data()
    finally:
        await close_db()


def main() -> None:
    setup_structured_logging()
    logger.info("Starting travel booking API setup")

    run_migrations()
    asyncio.run(seed())

    logger.info("Setup completed; start the API with: cd server && uvicorn travel_booking.main:app --reload")


if __name__ == "__main__":
    main()
