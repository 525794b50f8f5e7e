"""FastAPI dependencies for database sessions, authentication, and idempotency keys."""

from typing import Optional
from uuid import UUID

import jwt
from fastapi import Header
from jwt import PyJWTError

from .config import settings
from .database import get_db
from .exceptions import AuthenticationError

__all__ = ["get_db", "get_current_user", "get_idempotency_key", "CurrentUser"]

JWT_ALGORITHM = "HS256"


class CurrentUser(dict):
    """Authenticated principal decoded from the bearer token."""

    @property
    def user_id(self) -> UUID:
        return self["user_id"]

    @property
    def roles(self) -> list[str]:
        return self["roles"]

    def has_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> CurrentUser:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        CurrentUser: user id (the ``sub`` claim) and roles

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")

    try:
        # PyJWT checks exp itself when the claim is present
        payload = jwt.decode(token, settings.bearer_token_secret, algorithms=[JWT_ALGORITHM])
    except PyJWTError as e:
        raise AuthenticationError(f"Token validation failed: {e}")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Invalid token payload")

    roles = payload.get("roles") or ["customer"]
    return CurrentUser(user_id=user_id, roles=list(roles))


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract the optional Idempotency-Key header.

    Format validation happens in the idempotency guard so that a malformed
    key is reported the same way for every endpoint.
    """
    if idempotency_key is None:
        return None
    return idempotency_key.strip()
