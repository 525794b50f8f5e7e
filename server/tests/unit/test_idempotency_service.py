"""Unit tests for the idempotency guard."""

import json
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from travel_booking.core.database import utcnow
from travel_booking.core.exceptions import (
    CapacityExceededError,
    IdempotencyConflictError,
    IdempotencyKeyMalformedError,
    IdempotencyKeyMismatchError,
)
from travel_booking.models import IdempotencyKey
from travel_booking.services.idempotency_service import IdempotencyService, canonical_json

ENDPOINT = "/v1/bookings/hold"


class CountingOperation:
    """Operation stub that records how often it ran."""

    def __init__(self, body=None, error=None):
        self.calls = 0
        self.body = body if body is not None else {"b": 2, "a": [1, 2]}
        self.error = error

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return 201, self.body


def test_canonical_json_is_stable():
    assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


@pytest.mark.parametrize("key", ["not-a-key", "", "abc123", "z" * 64])
def test_malformed_keys_rejected(key):
    with pytest.raises(IdempotencyKeyMalformedError):
        IdempotencyService.validate_key(key)


def test_keys_are_normalized():
    key = str(uuid4()).upper()
    assert IdempotencyService.validate_key(key) == key.lower()
    assert IdempotencyService.validate_key("A" * 64) == "a" * 64


def test_request_hash_depends_on_user_and_params():
    user = uuid4()
    base = IdempotencyService.compute_request_hash(ENDPOINT, "post", user, {"slots": 1})

    assert base == IdempotencyService.compute_request_hash(ENDPOINT, "POST", user, {"slots": 1})
    assert base != IdempotencyService.compute_request_hash(ENDPOINT, "POST", uuid4(), {"slots": 1})
    assert base != IdempotencyService.compute_request_hash(ENDPOINT, "POST", user, {"slots": 2})


@pytest.mark.asyncio
async def test_replay_is_byte_identical(test_session):
    service = IdempotencyService(test_session)
    operation = CountingOperation()
    key, user = str(uuid4()), uuid4()

    first = await service.execute(key, user, ENDPOINT, "POST", {"slots": 2}, operation)
    second = await service.execute(key, user, ENDPOINT, "POST", {"slots": 2}, operation)

    assert operation.calls == 1
    assert first.replayed is False
    assert second.replayed is True
    assert second.status_code == first.status_code == 201
    assert second.body == first.body
    assert json.loads(first.body) == {"a": [1, 2], "b": 2}


@pytest.mark.asyncio
async def test_reused_key_with_different_request(test_session):
    service = IdempotencyService(test_session)
    key, user = str(uuid4()), uuid4()
    await service.execute(key, user, ENDPOINT, "POST", {"slots": 2}, CountingOperation())

    with pytest.raises(IdempotencyKeyMismatchError) as exc_info:
        await service.execute(key, user, ENDPOINT, "POST", {"slots": 3}, CountingOperation())
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_key_in_flight_conflicts(test_session, session_factory):
    key, user = str(uuid4()), uuid4()
    params = {"slots": 1}
    async with session_factory() as session:
        session.add(IdempotencyKey(
            key=key,
            user_id=user,
            endpoint=ENDPOINT,
            method="POST",
            request_params=canonical_json(params),
            request_hash=IdempotencyService.compute_request_hash(ENDPOINT, "POST", user, params),
            is_processing=True,
            expires_at=utcnow() + timedelta(hours=1),
        ))
        await session.commit()

    operation = CountingOperation()
    with pytest.raises(IdempotencyConflictError) as exc_info:
        await IdempotencyService(test_session).execute(key, user, ENDPOINT, "POST", params, operation)

    assert operation.calls == 0
    assert exc_info.value.status_code == 409
    assert exc_info.value.headers["Retry-After"] == "1"
    assert exc_info.value.problem_details["retryable"] is True


@pytest.mark.asyncio
async def test_failed_operation_releases_the_key(test_session, session_factory):
    service = IdempotencyService(test_session)
    key, user = str(uuid4()), uuid4()
    failure = CapacityExceededError("pkg", utcnow().date(), 3, 1)

    with pytest.raises(CapacityExceededError):
        await service.execute(key, user, ENDPOINT, "POST", {"slots": 3}, CountingOperation(error=failure))

    async with session_factory() as session:
        record = (await session.execute(select(IdempotencyKey).where(IdempotencyKey.key == key))).scalar_one()
    assert record.is_processing is False
    assert record.response_status is None

    retry = CountingOperation()
    result = await service.execute(key, user, ENDPOINT, "POST", {"slots": 3}, retry)
    assert retry.calls == 1
    assert result.replayed is False


@pytest.mark.asyncio
async def test_expired_key_runs_again(test_session):
    service = IdempotencyService(test_session, ttl_hours=1)
    operation = CountingOperation()
    key, user = str(uuid4()), uuid4()
    await service.execute(key, user, ENDPOINT, "POST", {}, operation)

    assert await service.cleanup_expired(now=utcnow() + timedelta(hours=2)) == 1

    result = await service.execute(key, user, ENDPOINT, "POST", {}, operation)
    assert operation.calls == 2
    assert result.replayed is False


@pytest.mark.asyncio
async def test_cleanup_keeps_live_keys(test_session):
    service = IdempotencyService(test_session)
    await service.execute(str(uuid4()), uuid4(), ENDPOINT, "POST", {}, CountingOperation())

    assert await service.cleanup_expired() == 0
