"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .cancellation import CancellationPolicy, CancellationPolicyRule
from .commission import AgentCommission, CommissionStatus
from .hold import HoldStatus, InventoryHold
from .idempotency import IdempotencyKey
from .package import Package, PackageAvailability
from .promo import DiscountType, PromoCode, PromoCodeUsage
from .user import User, UserRole

__all__ = [
    # Collaborator entities
    "User",
    "UserRole",
    "Package",
    "PackageAvailability",

    # Hold and booking entities
    "InventoryHold",
    "HoldStatus",
    "Booking",
    "BookingStatus",
    "PaymentStatus",

    # Pricing and commission
    "PromoCode",
    "PromoCodeUsage",
    "DiscountType",
    "AgentCommission",
    "CommissionStatus",

    # Cancellation
    "CancellationPolicy",
    "CancellationPolicyRule",

    # Idempotency entity
    "IdempotencyKey",
]
