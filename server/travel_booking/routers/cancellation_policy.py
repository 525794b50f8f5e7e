"""Cancellation policy router: refund tiers and the global default."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentUser, get_current_user, get_db, get_idempotency_key
from ..core.exceptions import NotFoundError
from ..models.cancellation import CancellationPolicy
from ..schemas.cancellation import CreatePolicyRequest, DeletePolicyResponse, PolicyResponse
from ..services.cancellation_service import CancellationPolicyService, RuleSpec
from .idempotent import handle_idempotent_operation, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cancellation-policies", tags=["cancellation-policies"])

DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_user)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)
ACTIVE_ONLY_QUERY = Query(True, description="Hide deactivated policies")


def _convert_policy_to_schema(policy: CancellationPolicy) -> PolicyResponse:
    return PolicyResponse.model_validate(policy)


@router.get("", response_model=list[PolicyResponse])
async def list_policies(
    active_only: bool = ACTIVE_ONLY_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> list[PolicyResponse]:
    policies = await CancellationPolicyService(db).list_policies(active_only=active_only)
    return [_convert_policy_to_schema(policy) for policy in policies]


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    payload: CreatePolicyRequest,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Create a policy. Admins only."""
    require_role(user, "admin")

    async def operation():
        policy = await CancellationPolicyService(db).create_policy(
            name=payload.name,
            description=payload.description,
            is_default=payload.is_default,
            rules=[
                RuleSpec(rule.days_before_travel, rule.refund_percentage, rule.fee_amount)
                for rule in payload.rules
            ],
        )
        return status.HTTP_201_CREATED, _convert_policy_to_schema(policy).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, payload.model_dump(mode="json"), operation
    )


@router.get("/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
) -> PolicyResponse:
    policy = await CancellationPolicyService(db).get_policy(policy_id)
    if policy is None:
        raise NotFoundError(resource_type="cancellation_policy", resource_id=str(policy_id))
    return _convert_policy_to_schema(policy)


@router.put("/{policy_id}/default", response_model=PolicyResponse)
async def set_default_policy(
    policy_id: UUID,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Make this the global default. Admins only."""
    require_role(user, "admin")

    async def operation():
        policy = await CancellationPolicyService(db).set_default(policy_id)
        return status.HTTP_200_OK, _convert_policy_to_schema(policy).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, {"policy_id": str(policy_id)}, operation
    )


@router.delete("/{policy_id}", response_model=DeletePolicyResponse)
async def delete_policy(
    policy_id: UUID,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    user: CurrentUser = AUTH_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> Response:
    """Delete a policy that is neither the default nor assigned to a package. Admins only."""
    require_role(user, "admin")

    async def operation():
        await CancellationPolicyService(db).delete_policy(policy_id)
        return status.HTTP_200_OK, DeletePolicyResponse(id=policy_id).model_dump(mode="json")

    return await handle_idempotent_operation(
        request, db, user, idempotency_key, {"policy_id": str(policy_id)}, operation
    )
