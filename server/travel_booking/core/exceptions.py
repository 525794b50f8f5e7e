"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://travel-booking.example.com/problems"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> Optional[str]:
        return self.problem_details.get("code")


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {"code": "VALIDATION_ERROR", "retryable": False}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/access-forbidden",
            instance=instance,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class BusinessRuleError(ProblemDetailsException):
    """A request the caller can correct or retry; carries a machine-readable code."""

    def __init__(
        self,
        status_code: int,
        title: str,
        code: str,
        detail: str,
        retryable: bool = False,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        slug = code.lower().replace("_", "-")
        super().__init__(
            status_code=status_code,
            title=title,
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/{slug}",
            extensions={"code": code, "retryable": retryable, **(extensions or {})},
            headers=headers,
        )


class CapacityExceededError(BusinessRuleError):
    """Requested slots exceed what is left for the package on that date."""

    def __init__(self, package_id: str, travel_date: date, requested_slots: int, available_slots: int):
        super().__init__(
            status_code=400,
            title="Capacity Exceeded",
            code="CAPACITY_EXCEEDED",
            detail=(
                f"Not enough slots available for package {package_id} on {travel_date.isoformat()}. "
                f"Requested: {requested_slots}, Available: {available_slots}"
            ),
            extensions={
                "package_id": package_id,
                "travel_date": travel_date.isoformat(),
                "requested_slots": requested_slots,
                "available_slots": available_slots,
            },
        )


class HoldExpiredError(BusinessRuleError):
    """The hold token is unknown, no longer active, or past its expiry."""

    def __init__(self, hold_token: str, expired_at: Optional[datetime] = None, reason: str = "expired"):
        extensions: Dict[str, Any] = {"reason": reason}
        if expired_at:
            extensions["expired_at"] = expired_at.isoformat() + "Z"
        super().__init__(
            status_code=400,
            title="Hold Expired",
            code="HOLD_EXPIRED",
            detail=f"Inventory hold {hold_token[:8]}... is no longer valid ({reason}). Please start over.",
            extensions=extensions,
        )


class HoldNotFoundError(BusinessRuleError):
    """No active hold matches the token for this user."""

    def __init__(self, hold_token: str):
        super().__init__(
            status_code=404,
            title="Hold Not Found",
            code="HOLD_NOT_FOUND",
            detail=f"Hold {hold_token[:8]}... not found or already released",
        )


class PromoNotFoundError(BusinessRuleError):
    """The promo code does not exist."""

    def __init__(self, code: str):
        super().__init__(
            status_code=404,
            title="Promo Code Not Found",
            code="PROMO_NOT_FOUND",
            detail=f"Invalid promo code '{code}'",
            extensions={"promo_code": code},
        )


class PromoInvalidError(BusinessRuleError):
    """The promo code exists but cannot be applied to this order."""

    def __init__(self, code: str, reason: str, detail: str):
        super().__init__(
            status_code=400,
            title="Promo Code Not Applicable",
            code=reason,
            detail=detail,
            extensions={"promo_code": code},
        )


class BookingStateError(BusinessRuleError):
    """The booking is not in a state that allows the requested transition."""

    def __init__(self, booking_id: str, status: str, action: str):
        super().__init__(
            status_code=400,
            title="Invalid Booking State",
            code="BOOKING_STATE",
            detail=f"Cannot {action} booking {booking_id} in status '{status}'",
            extensions={"booking_id": booking_id, "booking_status": status},
        )


class PolicyInUseError(BusinessRuleError):
    """The cancellation policy is still the default or governs packages."""

    def __init__(self, policy_id: str, detail: str):
        super().__init__(
            status_code=400,
            title="Cancellation Policy In Use",
            code="POLICY_IN_USE",
            detail=detail,
            extensions={"policy_id": policy_id},
        )


class IdempotencyConflictError(BusinessRuleError):
    """A request with the same idempotency key is still being processed."""

    def __init__(self, idempotency_key: str, retry_after: int = 1):
        super().__init__(
            status_code=409,
            title="Request In Progress",
            code="IDEMPOTENCY_CONFLICT",
            detail=f"A request with Idempotency-Key '{idempotency_key}' is still being processed",
            retryable=True,
            extensions={"retry_after_seconds": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class IdempotencyKeyMalformedError(BusinessRuleError):
    """Idempotency key is neither a 64-char hex digest nor a UUID."""

    def __init__(self, idempotency_key: str):
        super().__init__(
            status_code=400,
            title="Invalid Idempotency Key",
            code="IDEMPOTENCY_KEY_MALFORMED",
            detail="Idempotency-Key must be a SHA-256 hex digest or a UUID",
            extensions={"idempotency_key": idempotency_key[:80]},
        )


class IdempotencyKeyMismatchError(BusinessRuleError):
    """Idempotency key reused for a different request."""

    def __init__(self, idempotency_key: str, endpoint: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            code="IDEMPOTENCY_KEY_MISMATCH",
            detail=(
                f"Idempotency key '{idempotency_key}' was already used for "
                f"'{endpoint}' with a different request"
            ),
            extensions={"idempotency_key": idempotency_key},
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as Problem Details with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "type": f"{PROBLEM_BASE_URI}/request-validation",
            "title": "Unprocessable Request",
            "status": 422,
            "detail": "The request body or parameters failed validation",
            "instance": request.url.path,
            "violations": violations,
        },
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path, "method": request.method}
    )

    problem_details = {
        "type": f"{PROBLEM_BASE_URI}/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
