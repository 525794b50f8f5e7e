"""Unit tests for the hold manager."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from travel_booking.core.database import utcnow
from travel_booking.core.exceptions import CapacityExceededError, HoldNotFoundError, NotFoundError, ValidationError
from travel_booking.models import HoldStatus, InventoryHold, Package
from travel_booking.services.capacity_ledger import CapacityLedger
from travel_booking.services.hold_service import HoldService, generate_hold_token


def test_hold_tokens_are_long_and_unique():
    tokens = {generate_hold_token() for _ in range(100)}
    assert len(tokens) == 100
    assert all(len(token) == 64 for token in tokens)


@pytest.mark.asyncio
async def test_create_hold(test_session, seed):
    """Test creating a hold."""
    hold = await HoldService(test_session).create_hold(
        package_id=seed.package_id,
        travel_date=seed.travel_date,
        user_id=seed.customer_id,
        slots=3,
    )

    assert hold.status == HoldStatus.ACTIVE
    assert hold.slots_held == 3
    assert hold.expires_at > utcnow()
    assert hold.expires_at <= utcnow() + timedelta(minutes=15)

    ledger = CapacityLedger(test_session)
    package = await ledger.get_package_or_raise(seed.package_id)
    assert await ledger.available_slots(package, seed.travel_date) == 7


@pytest.mark.asyncio
async def test_new_hold_supersedes_previous_hold(test_session, session_factory, seed):
    service = HoldService(test_session)
    first = await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 4)
    second = await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 2)

    async with session_factory() as session:
        rows = {
            hold.hold_token: hold.status
            for hold in (await session.execute(select(InventoryHold))).scalars()
        }
    assert rows[first.hold_token] == HoldStatus.RELEASED
    assert rows[second.hold_token] == HoldStatus.ACTIVE

    ledger = CapacityLedger(test_session)
    package = await ledger.get_package_or_raise(seed.package_id)
    assert await ledger.available_slots(package, seed.travel_date) == 8


@pytest.mark.asyncio
async def test_superseded_hold_frees_its_slots_for_the_replacement(test_session, seed):
    """A user can re-hold the whole capacity even though their old hold claimed most of it."""
    service = HoldService(test_session)
    await service.create_hold(seed.small_package_id, seed.travel_date, seed.customer_id, 2)

    hold = await service.create_hold(seed.small_package_id, seed.travel_date, seed.customer_id, 2)
    assert hold.slots_held == 2


@pytest.mark.asyncio
async def test_create_hold_exceeding_capacity(test_session, seed):
    service = HoldService(test_session)
    await service.create_hold(seed.small_package_id, seed.travel_date, seed.customer_id, 1)

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.create_hold(seed.small_package_id, seed.travel_date, seed.other_customer_id, 2)

    assert exc_info.value.code == "CAPACITY_EXCEEDED"
    assert exc_info.value.problem_details["available_slots"] == 1

    count = (await test_session.execute(
        select(func.count(InventoryHold.id)).where(InventoryHold.status == HoldStatus.ACTIVE)
    )).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_create_hold_rejects_past_dates_and_empty_parties(test_session, seed):
    service = HoldService(test_session)

    with pytest.raises(ValidationError):
        await service.create_hold(seed.package_id, utcnow().date(), seed.customer_id, 1)

    with pytest.raises(ValidationError):
        await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 0)


@pytest.mark.asyncio
async def test_create_hold_for_inactive_or_unknown_package(test_session, session_factory, seed):
    async with session_factory() as session:
        package = await session.get(Package, seed.package_id)
        package.is_active = False
        await session.commit()

    service = HoldService(test_session)
    with pytest.raises(ValidationError):
        await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 1)

    with pytest.raises(NotFoundError):
        await service.create_hold(seed.customer_id, seed.travel_date, seed.customer_id, 1)


@pytest.mark.asyncio
async def test_release_hold_returns_capacity(test_session, seed):
    service = HoldService(test_session)
    hold = await service.create_hold(seed.small_package_id, seed.travel_date, seed.customer_id, 2)

    await service.release_hold(hold.hold_token, seed.customer_id)

    released = await service.get_hold_by_token(hold.hold_token)
    assert released.status == HoldStatus.RELEASED

    other = await service.create_hold(seed.small_package_id, seed.travel_date, seed.other_customer_id, 2)
    assert other.status == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_second_release_raises_not_found(test_session, seed):
    service = HoldService(test_session)
    hold = await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 1)

    await service.release_hold(hold.hold_token, seed.customer_id)
    with pytest.raises(HoldNotFoundError):
        await service.release_hold(hold.hold_token, seed.customer_id)


@pytest.mark.asyncio
async def test_release_hold_of_another_user(test_session, session_factory, seed):
    service = HoldService(test_session)
    hold = await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 1)
    token = hold.hold_token

    with pytest.raises(HoldNotFoundError):
        await service.release_hold(token, seed.other_customer_id)

    async with session_factory() as session:
        assert (await HoldService(session).get_hold_by_token(token)).status == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_sweep_expires_lapsed_holds_once(test_session, seed):
    service = HoldService(test_session)
    lapsed = await service.create_hold(seed.package_id, seed.travel_date, seed.customer_id, 1)
    released = await service.create_hold(seed.package_id, seed.travel_date, seed.other_customer_id, 1)
    await service.release_hold(released.hold_token, seed.other_customer_id)

    assert await service.sweep_expired(now=lapsed.expires_at - timedelta(seconds=1)) == 0

    now = lapsed.expires_at + timedelta(seconds=1)
    assert await service.sweep_expired(now=now) == 1
    assert (await service.get_hold_by_token(lapsed.hold_token)).status == HoldStatus.EXPIRED
    assert (await service.get_hold_by_token(released.hold_token)).status == HoldStatus.RELEASED

    # A second sweeper finds nothing left to do
    assert await service.sweep_expired(now=now) == 0


@pytest.mark.asyncio
async def test_sweep_in_batches(test_session, session_factory, seed):
    async with session_factory() as session:
        past = utcnow() - timedelta(minutes=1)
        for i in range(7):
            session.add(InventoryHold(
                package_id=seed.package_id,
                user_id=seed.customer_id,
                travel_date=seed.travel_date,
                slots_held=1,
                hold_token=f"lapsed-{i}",
                expires_at=past,
                status=HoldStatus.ACTIVE,
            ))
        await session.commit()

    assert await HoldService(test_session).sweep_expired(batch_size=3) == 7
