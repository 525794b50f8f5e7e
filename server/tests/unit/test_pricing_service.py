"""Unit tests for the pricing engine."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from travel_booking.core.database import utcnow
from travel_booking.core.exceptions import PromoInvalidError, PromoNotFoundError
from travel_booking.models import DiscountType, PackageAvailability, PromoCode, PromoCodeUsage
from travel_booking.services.capacity_ledger import CapacityLedger
from travel_booking.services.pricing_service import PricingService, percentage_of, round_minor


def _promo(**overrides) -> PromoCode:
    values = {
        "code": "TEST",
        "name": "Test",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "min_order_amount": None,
        "max_discount_amount": None,
    }
    values.update(overrides)
    return PromoCode(**values)


async def _add_promo(session_factory, **overrides) -> str:
    async with session_factory() as session:
        promo = _promo(usage_count=0, is_active=True, **overrides)
        session.add(promo)
        await session.commit()
        return promo.code


def test_round_minor_rounds_half_up():
    assert round_minor(Decimal("0.5")) == 1
    assert round_minor(Decimal("1.49")) == 1
    assert round_minor(Decimal("2.5")) == 3
    assert percentage_of(12345, Decimal("10")) == 1235


def test_percentage_discount_is_capped():
    """20% of 20000 would be 4000; the cap keeps it at 3000."""
    promo = _promo(discount_value=Decimal("20"), max_discount_amount=3000)
    assert PricingService.calculate_discount(promo, 20000) == 3000


def test_fixed_discount_never_exceeds_subtotal():
    promo = _promo(discount_type=DiscountType.FIXED, discount_value=Decimal("5000"))
    assert PricingService.calculate_discount(promo, 3000) == 3000
    assert PricingService.calculate_discount(promo, 8000) == 5000


def test_discount_below_minimum_order_is_zero():
    promo = _promo(min_order_amount=10000)
    assert PricingService.calculate_discount(promo, 9999) == 0
    assert PricingService.calculate_discount(promo, 10000) == 1000


@pytest.mark.asyncio
async def test_quote_applies_discount_before_tax(test_session, seed):
    pricing = PricingService(test_session, tax_rate=Decimal("0.10"))
    package = await CapacityLedger(test_session).get_package_or_raise(seed.package_id)

    quote = await pricing.quote(package, seed.travel_date, 2, promo_code=seed.capped_promo_code)

    assert quote.subtotal == 20000
    assert quote.discount == 3000
    assert quote.tax == 1700
    assert quote.total == 18700
    assert quote.promo_code_id is not None


@pytest.mark.asyncio
async def test_quote_without_promo(test_session, seed):
    pricing = PricingService(test_session, tax_rate=Decimal("0.08"))
    package = await CapacityLedger(test_session).get_package_or_raise(seed.package_id)

    quote = await pricing.quote(package, seed.travel_date, 3)

    assert quote.unit_price == 10000
    assert quote.discount == 0
    assert quote.tax == 2400
    assert quote.total == 32400
    assert quote.promo is None


@pytest.mark.asyncio
async def test_quote_uses_date_price_override(test_session, session_factory, seed):
    async with session_factory() as session:
        session.add(PackageAvailability(
            package_id=seed.package_id,
            date=seed.travel_date,
            available_slots=10,
            booked_slots=0,
            price_override=12000,
            is_available=True,
        ))
        await session.commit()

    pricing = PricingService(test_session, tax_rate=Decimal("0"))
    package = await CapacityLedger(test_session).get_package_or_raise(seed.package_id)
    quote = await pricing.quote(package, seed.travel_date, 2)

    assert quote.unit_price == 12000
    assert quote.total == 24000


@pytest.mark.asyncio
async def test_promo_lookup_is_case_insensitive(test_session, seed):
    promo = await PricingService(test_session).resolve_promo(" summer10 ", seed.package_id)
    assert promo.code == "SUMMER10"


@pytest.mark.asyncio
async def test_unknown_promo(test_session, seed):
    with pytest.raises(PromoNotFoundError):
        await PricingService(test_session).resolve_promo("NOPE", seed.package_id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"is_active": False}, "PROMO_INACTIVE"),
        ({"valid_from": utcnow() + timedelta(days=1)}, "PROMO_NOT_STARTED"),
        ({"valid_until": utcnow() - timedelta(days=1)}, "PROMO_EXPIRED"),
        ({"usage_limit": 5, "usage_count": 5}, "PROMO_USAGE_LIMIT"),
    ],
)
async def test_invalid_promo_reasons(test_session, session_factory, seed, overrides, reason):
    async with session_factory() as session:
        promo = _promo(code="BROKEN", **{"is_active": True, "usage_count": 0, **overrides})
        session.add(promo)
        await session.commit()

    with pytest.raises(PromoInvalidError) as exc_info:
        await PricingService(test_session).resolve_promo("BROKEN", seed.package_id)
    assert exc_info.value.code == reason


@pytest.mark.asyncio
async def test_promo_package_scoping(test_session, session_factory, seed):
    await _add_promo(session_factory, code="ONLYSMALL", applicable_packages=[str(seed.small_package_id)])
    await _add_promo(session_factory, code="NOTBIG", excluded_packages=[str(seed.package_id)])
    pricing = PricingService(test_session)

    assert (await pricing.resolve_promo("ONLYSMALL", seed.small_package_id)).code == "ONLYSMALL"
    for code in ("ONLYSMALL", "NOTBIG"):
        with pytest.raises(PromoInvalidError) as exc_info:
            await pricing.resolve_promo(code, seed.package_id)
        assert exc_info.value.code == "PROMO_NOT_APPLICABLE"


@pytest.mark.asyncio
async def test_per_user_promo_limit(test_session, session_factory, seed):
    code = await _add_promo(session_factory, code="ONCE", usage_limit_per_user=1)
    async with session_factory() as session:
        promo = await PricingService(session).get_promo(code)
        session.add(PromoCodeUsage(
            promo_code_id=promo.id,
            user_id=seed.customer_id,
            booking_id=uuid4(),
            discount_applied=100,
        ))
        await session.commit()

    pricing = PricingService(test_session)
    with pytest.raises(PromoInvalidError) as exc_info:
        await pricing.resolve_promo(code, seed.package_id, user_id=seed.customer_id)
    assert exc_info.value.code == "PROMO_USER_LIMIT"

    assert (await pricing.resolve_promo(code, seed.package_id, user_id=seed.other_customer_id)).code == "ONCE"


@pytest.mark.asyncio
async def test_validate_promo(test_session, seed):
    validation = await PricingService(test_session).validate_promo(seed.capped_promo_code, seed.package_id, 20000)

    assert validation.discount_amount == 3000
    assert validation.final_amount == 17000


@pytest.mark.asyncio
async def test_validate_promo_below_minimum_order(test_session, session_factory, seed):
    code = await _add_promo(session_factory, code="MIN100", min_order_amount=10000)

    with pytest.raises(PromoInvalidError) as exc_info:
        await PricingService(test_session).validate_promo(code, seed.package_id, 5000)
    assert exc_info.value.code == "MIN_ORDER_NOT_MET"
