"""Idempotency guard: at-most-once execution of mutating requests."""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    IdempotencyConflictError,
    IdempotencyKeyMalformedError,
    IdempotencyKeyMismatchError,
)
from ..core.observability import metrics_collector
from ..models.idempotency import IdempotencyKey

logger = logging.getLogger(__name__)

# A SHA-256 hex digest or a canonical UUID
KEY_PATTERN = re.compile(
    r"^(?:[0-9a-f]{64}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$",
    re.IGNORECASE,
)

Operation = Callable[[], Awaitable[tuple[int, Any]]]


def canonical_json(data: Any) -> str:
    """Stable JSON text: sorted keys, no insignificant whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class IdempotentResponse:
    """A response ready to send, either fresh or replayed from storage."""

    status_code: int
    body: str
    replayed: bool = False


class IdempotencyService:
    """
    Runs an operation at most once per client-supplied key.

    The unique constraint on ``idempotency_keys.key`` is the mutex: the claim
    is committed before the operation runs, so a concurrent duplicate sees the
    claim and gets a retryable conflict instead of repeating side effects.
    Only successful outcomes are stored; a failed operation releases the claim
    so a legitimate retry runs from scratch.
    """

    def __init__(self, db: AsyncSession, ttl_hours: Optional[int] = None):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours or settings.idempotency_ttl_hours)

    @staticmethod
    def validate_key(key: str) -> str:
        """
        Check the key format and normalize it.

        Raises:
            IdempotencyKeyMalformedError: If the key is not a hex digest or UUID
        """
        if not key or not KEY_PATTERN.match(key):
            raise IdempotencyKeyMalformedError(key or "")
        return key.lower()

    @staticmethod
    def compute_request_hash(
        endpoint: str,
        method: str,
        user_id: Optional[UUID],
        request_params: dict[str, Any],
    ) -> str:
        """SHA-256 over the caller, the route and the canonical request parameters."""
        fingerprint = canonical_json({
            "endpoint": endpoint,
            "method": method.upper(),
            "user_id": str(user_id) if user_id else None,
            "params": request_params,
        })
        return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()

    async def execute(
        self,
        key: str,
        user_id: Optional[UUID],
        endpoint: str,
        method: str,
        request_params: dict[str, Any],
        operation: Operation,
    ) -> IdempotentResponse:
        """
        Run ``operation`` unless this key already has an outcome.

        Args:
            key: Client-supplied Idempotency-Key
            user_id: Authenticated caller
            endpoint: Route path the key is bound to
            method: HTTP method
            request_params: Request body and path parameters
            operation: Coroutine factory returning (status_code, json-able body)

        Returns:
            The stored response on replay, otherwise the operation's response

        Raises:
            IdempotencyKeyMalformedError: If the key format is invalid
            IdempotencyKeyMismatchError: If the key was used for a different request
            IdempotencyConflictError: If the key is being processed right now
        """
        key = self.validate_key(key)
        request_hash = self.compute_request_hash(endpoint, method, user_id, request_params)

        replay = await self._claim(key, user_id, endpoint, method, request_params, request_hash)
        if replay is not None:
            metrics_collector.record_idempotent_replay(endpoint)
            logger.info(
                "Replaying stored response for idempotency key",
                extra={"idempotency_key": key, "endpoint": endpoint, "status_code": replay.status_code}
            )
            return replay

        try:
            status_code, body = await operation()
        except Exception:
            await self.db.rollback()
            await self._release_claim(key)
            raise

        body_text = canonical_json(body)
        await self.db.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key)
            .values(
                is_processing=False,
                response_status=status_code,
                response_body=body_text,
                processed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(
            "Stored response for idempotency key",
            extra={"idempotency_key": key, "endpoint": endpoint, "status_code": status_code}
        )
        return IdempotentResponse(status_code=status_code, body=body_text)

    async def _claim(
        self,
        key: str,
        user_id: Optional[UUID],
        endpoint: str,
        method: str,
        request_params: dict[str, Any],
        request_hash: str,
    ) -> Optional[IdempotentResponse]:
        """Claim the key for this request, or return the stored response to replay."""
        now = utcnow()

        # Expired leftovers are not outcomes; the key is free again
        await self.db.execute(
            delete(IdempotencyKey)
            .where(IdempotencyKey.key == key, IdempotencyKey.expires_at <= now)
            .execution_options(synchronize_session=False)
        )

        record = (await self.db.execute(
            select(IdempotencyKey)
            .where(IdempotencyKey.key == key)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

        if record is not None:
            if record.request_hash != request_hash:
                stored_endpoint = record.endpoint
                await self.db.commit()
                logger.warning(
                    "Idempotency key reused for a different request",
                    extra={"idempotency_key": key, "endpoint": endpoint, "stored_endpoint": stored_endpoint}
                )
                raise IdempotencyKeyMismatchError(key, stored_endpoint)

            if record.has_response:
                replay = IdempotentResponse(
                    status_code=record.response_status,
                    body=record.response_body,
                    replayed=True,
                )
                await self.db.commit()
                return replay

            if record.is_processing:
                await self.db.commit()
                raise IdempotencyConflictError(key)

            # A previous attempt failed; take the key over if nobody else has
            result = await self.db.execute(
                update(IdempotencyKey)
                .where(
                    IdempotencyKey.key == key,
                    IdempotencyKey.is_processing.is_(False),
                    IdempotencyKey.response_status.is_(None),
                )
                .values(is_processing=True, expires_at=now + self.ttl)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            if result.rowcount == 0:
                raise IdempotencyConflictError(key)
            return None

        self.db.add(IdempotencyKey(
            key=key,
            user_id=user_id,
            endpoint=endpoint,
            method=method.upper(),
            request_params=canonical_json(request_params),
            request_hash=request_hash,
            is_processing=True,
            expires_at=now + self.ttl,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Lost race to claim idempotency key", extra={"idempotency_key": key})
            raise IdempotencyConflictError(key)
        return None

    async def _release_claim(self, key: str) -> None:
        await self.db.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key, IdempotencyKey.response_status.is_(None))
            .values(is_processing=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Released idempotency claim after failed operation", extra={"idempotency_key": key})

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired idempotency record."""
        result = await self.db.execute(
            delete(IdempotencyKey)
            .where(IdempotencyKey.expires_at <= (now or utcnow()))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Deleted expired idempotency keys", extra={"deleted": result.rowcount})
        return result.rowcount
