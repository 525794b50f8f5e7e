"""Service layer package."""

from .booking_service import BookingDraft, BookingService
from .cancellation_service import CancellationPolicyService, RefundQuote, RuleSpec, calculate_refund
from .capacity_ledger import CapacityLedger, CapacitySnapshot
from .hold_service import HoldService
from .idempotency_service import IdempotencyService, IdempotentResponse
from .pricing_service import PricingService, Quote

__all__ = [
    "BookingDraft",
    "BookingService",
    "CancellationPolicyService",
    "CapacityLedger",
    "CapacitySnapshot",
    "HoldService",
    "IdempotencyService",
    "IdempotentResponse",
    "PricingService",
    "Quote",
    "RefundQuote",
    "RuleSpec",
    "calculate_refund",
]
