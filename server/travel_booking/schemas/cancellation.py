"""Cancellation policy Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PolicyRuleSchema(BaseModel):
    """One refund tier."""

    model_config = ConfigDict(from_attributes=True)

    days_before_travel: int = Field(..., ge=0, description="Minimum days before travel for this tier")
    refund_percentage: Decimal = Field(..., ge=0, le=100, description="Share of the paid amount refunded")
    fee_amount: int = Field(0, ge=0, description="Flat fee deducted from the refund, in minor units")


class CreatePolicyRequest(BaseModel):
    """Request schema for creating a cancellation policy."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_default: bool = Field(False, description="Make this the policy for packages without their own")
    rules: List[PolicyRuleSchema] = Field(..., min_length=1)


class PolicyResponse(BaseModel):
    """Cancellation policy with its tiers, most generous first."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    is_default: bool
    is_active: bool
    rules: List[PolicyRuleSchema]
    created_at: datetime


class DeletePolicyResponse(BaseModel):
    id: UUID
    deleted: bool = True
