"""
Data models for plans, subscriptions and their billing history.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.amounts import format_amount


class BillingInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"


# Statuses the billing sweep charges
BILLABLE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
})

# Anything not canceled still holds on to its plan
LIVE_STATUSES = frozenset(set(SubscriptionStatus) - {SubscriptionStatus.CANCELED})


class SubscriptionPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class SubscriptionPaymentKind(str, Enum):
    SETUP_FEE = "setup_fee"
    RECURRING = "recurring"


PLAN_FINANCIAL_FIELDS = frozenset({
    "amount",
    "currency",
    "chain",
    "token_address",
    "token_decimals",
    "interval",
    "interval_count",
    "trial_days",
    "max_billing_cycles",
    "setup_fee",
})

PLAN_EDITABLE_FIELDS = frozenset({"name", "description", "metadata", "active"})


class PlanSpec(BaseModel):
    """Input to SubscriptionEngine.create_plan."""

    name: str
    amount: Decimal
    currency: str
    chain: str
    interval: BillingInterval
    interval_count: int = 1
    trial_days: Optional[int] = None
    max_billing_cycles: Optional[int] = None
    setup_fee: Optional[Decimal] = None
    merchant_id: Optional[str] = None
    description: Optional[str] = None
    token_address: Optional[str] = None
    token_decimals: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    id: str
    merchant_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    amount: Decimal
    currency: str
    chain: str
    token_address: Optional[str] = None
    token_decimals: Optional[int] = None
    interval: BillingInterval
    interval_count: int = 1
    trial_days: Optional[int] = None
    max_billing_cycles: Optional[int] = None
    setup_fee: Optional[Decimal] = None
    active: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "network": self.chain,
            "interval": self.interval.value,
            "interval_count": self.interval_count,
        }


class Subscription(BaseModel):
    id: str
    customer_id: str
    customer_email: Optional[str] = None
    wallet_address: str
    plan_id: str
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    next_billing_date: datetime
    billing_cycle_count: int = 0
    total_paid: Decimal = Decimal(0)
    last_payment_date: Optional[datetime] = None
    failed_payment_attempts: int = 0
    cancel_at_period_end: bool = False
    paused_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "customer_id": self.customer_id,
            "subscriber_address": self.wallet_address,
            "current_cycle": self.billing_cycle_count,
            "current_period_start": self.current_period_start.isoformat(),
            "current_period_end": self.current_period_end.isoformat(),
            "next_payment_date": self.next_billing_date.isoformat(),
            "last_payment_date": self.last_payment_date.isoformat() if self.last_payment_date else None,
            "total_paid": format_amount(self.total_paid),
            "failed_payments": self.failed_payment_attempts,
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


class SubscriptionPayment(BaseModel):
    id: str
    subscription_id: str
    kind: SubscriptionPaymentKind = SubscriptionPaymentKind.RECURRING
    amount: Decimal
    currency: str
    chain: str
    status: SubscriptionPaymentStatus = SubscriptionPaymentStatus.PENDING
    scheduled_date: datetime
    paid_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    billing_period_start: datetime
    billing_period_end: datetime
    attempt_count: int = Field(default=1, ge=1)
    failure_reason: Optional[str] = None
    payment_id: Optional[str] = None
    refunded_at: Optional[datetime] = None

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "payment_id": self.payment_id,
            "transaction_hash": self.transaction_hash,
            "attempt_count": self.attempt_count,
            "failure_reason": self.failure_reason,
            "billing_period_start": self.billing_period_start.isoformat(),
            "billing_period_end": self.billing_period_end.isoformat(),
        }


class SweepReport(BaseModel):
    """Outcome counts of one billing sweep pass."""

    started_at: datetime
    due: int = 0
    charged: int = 0
    completed: int = 0
    finalized: int = 0
    past_due: int = 0
    unpaid: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)

    def record(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)
