"""
Subscription Engine - plans, subscriptions, trials and recurring billing.
"""

from .engine import SubscriptionEngine
from .intervals import advance, monthly_equivalent
from .jobs import register_jobs
from .models import (
    BillingInterval,
    Plan,
    PlanSpec,
    Subscription,
    SubscriptionPayment,
    SubscriptionPaymentKind,
    SubscriptionPaymentStatus,
    SubscriptionStatus,
    SweepReport,
)

__all__ = [
    "SubscriptionEngine",
    "advance",
    "monthly_equivalent",
    "register_jobs",
    "BillingInterval",
    "Plan",
    "PlanSpec",
    "Subscription",
    "SubscriptionPayment",
    "SubscriptionPaymentKind",
    "SubscriptionPaymentStatus",
    "SubscriptionStatus",
    "SweepReport",
]
