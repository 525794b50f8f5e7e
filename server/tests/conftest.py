"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WORKERS_ENABLED", "false")

from dataclasses import dataclass  # noqa: E402
from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from travel_booking.core.config import settings  # noqa: E402
from travel_booking.core.database import Base, get_db, utcnow  # noqa: E402
from travel_booking.models import *  # noqa: E402,F403 - Import all models
from travel_booking.models import (  # noqa: E402
    CancellationPolicy,
    CancellationPolicyRule,
    DiscountType,
    Package,
    PromoCode,
    User,
    UserRole,
)


@dataclass
class SeedData:
    """Identifiers of the rows every test starts with."""

    customer_id: UUID
    other_customer_id: UUID
    agent_id: UUID
    admin_id: UUID
    policy_id: UUID
    package_id: UUID
    small_package_id: UUID
    promo_code: str
    capped_promo_code: str

    @property
    def travel_date(self):
        return utcnow().date() + timedelta(days=45)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create a file-backed test database engine.

    A file rather than ``:memory:`` so every session gets its own connection,
    which is what the concurrency tests need.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 15},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def seed(session_factory) -> SeedData:
    """
    Users, a default 30/7/0 day cancellation policy, two packages and two promo codes.

    Written through a separate session so the code under test never sees
    these objects in its identity map.
    """
    async with session_factory() as session:
        customer = User(name="Ada Customer", email="ada@example.com", role=UserRole.CUSTOMER)
        other_customer = User(name="Ben Customer", email="ben@example.com", role=UserRole.CUSTOMER)
        agent = User(
            name="Cleo Agent",
            email="cleo@example.com",
            role=UserRole.AGENT,
            commission_rate=Decimal("10.00"),
        )
        admin = User(name="Dev Admin", email="dev@example.com", role=UserRole.ADMIN)

        policy = CancellationPolicy(
            name="Standard",
            is_default=True,
            is_active=True,
            rules=[
                CancellationPolicyRule(days_before_travel=30, refund_percentage=Decimal("100"), fee_amount=0),
                CancellationPolicyRule(days_before_travel=7, refund_percentage=Decimal("50"), fee_amount=2000),
                CancellationPolicyRule(days_before_travel=0, refund_percentage=Decimal("0"), fee_amount=0),
            ],
        )

        package = Package(title="Alpine Lakes Week", price_amount=10000, currency="USD", max_participants=10)
        small_package = Package(title="Lighthouse Night", price_amount=5000, currency="USD", max_participants=2)

        promo = PromoCode(
            code="SUMMER10",
            name="Summer ten percent",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            usage_limit=100,
            usage_count=0,
        )
        capped_promo = PromoCode(
            code="BIG20",
            name="Twenty percent, capped",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            max_discount_amount=3000,
            usage_limit=1,
            usage_count=0,
        )

        session.add_all([customer, other_customer, agent, admin, policy, package, small_package, promo, capped_promo])
        await session.commit()

        return SeedData(
            customer_id=customer.id,
            other_customer_id=other_customer.id,
            agent_id=agent.id,
            admin_id=admin.id,
            policy_id=policy.id,
            package_id=package.id,
            small_package_id=small_package.id,
            promo_code=promo.code,
            capped_promo_code=capped_promo.code,
        )


def make_token(user_id: UUID, roles: list[str] | None = None) -> str:
    claims = {"sub": str(user_id), "roles": roles or ["customer"]}
    return jwt.encode(claims, settings.bearer_token_secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Factory for Authorization headers carrying a signed bearer token."""
    def _headers(user_id: UUID | None = None, roles: list[str] | None = None, idempotency_key: str | None = None):
        headers = {"Authorization": f"Bearer {make_token(user_id or uuid4(), roles)}"}
        if idempotency_key is not None:
            headers["Idempotency-Key"] = idempotency_key
        return headers
    return _headers


@pytest_asyncio.fixture(scope="function")
async def test_app(session_factory):
    """Create a test FastAPI application backed by the test database."""
    from travel_booking.main import create_app

    app = create_app()

    # One session per request, as in production
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
