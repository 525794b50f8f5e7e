"""Shared plumbing for mutating routes: role checks and the idempotency guard."""

from typing import Any, Awaitable, Callable, Optional

from fastapi import Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentUser
from ..core.exceptions import AuthorizationError
from ..services.idempotency_service import IdempotencyService, canonical_json

PRIVILEGED_ROLES = ("agent", "admin")

Operation = Callable[[], Awaitable[tuple[int, Any]]]


def json_response(status_code: int, body: str, replayed: bool = False) -> Response:
    headers = {"Idempotency-Replayed": "true"} if replayed else None
    return Response(content=body, status_code=status_code, media_type="application/json", headers=headers)


async def handle_idempotent_operation(
    request: Request,
    db: AsyncSession,
    user: CurrentUser,
    idempotency_key: Optional[str],
    request_params: dict[str, Any],
    operation: Operation,
) -> Response:
    """
    Run a mutating operation, through the idempotency guard when a key is supplied.

    Fresh responses and replays are rendered from the same canonical JSON text,
    so a replay is byte-identical to the first response.
    """
    if idempotency_key is None:
        status_code, body = await operation()
        return json_response(status_code, canonical_json(body))

    result = await IdempotencyService(db).execute(
        key=idempotency_key,
        user_id=user.user_id,
        endpoint=request.url.path,
        method=request.method,
        request_params=request_params,
        operation=operation,
    )
    return json_response(result.status_code, result.body, replayed=result.replayed)


def require_role(user: CurrentUser, *roles: str) -> None:
    if not user.has_role(*roles):
        raise AuthorizationError(f"One of roles {list(roles)} is required")
