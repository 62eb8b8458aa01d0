"""
Payment Ledger - crypto payment requests, settlement verification and
merchant webhook notifications.
"""
from .ledger import PaymentLedger, check_transfer
from .merchants import MerchantDirectory
from .models import (
    FeeBreakdown,
    Merchant,
    Payment,
    PaymentRequest,
    PaymentStatus,
    VerificationResult,
)
from .webhooks import EVENT_TYPES, DeliveryResult, NotificationDispatcher, build_event_payload

__all__ = [
    "PaymentLedger",
    "check_transfer",
    "MerchantDirectory",
    "FeeBreakdown",
    "Merchant",
    "Payment",
    "PaymentRequest",
    "PaymentStatus",
    "VerificationResult",
    "EVENT_TYPES",
    "DeliveryResult",
    "NotificationDispatcher",
    "build_event_payload",
]
