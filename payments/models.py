"""
Data models for the payment ledger.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import AfterValidator, AnyHttpUrl, BaseModel, Field, TypeAdapter

from core.amounts import format_amount

_http_url = TypeAdapter(AnyHttpUrl)


def check_webhook_url(value: str) -> str:
    """Reject anything that is not an absolute http(s) URL, keeping the text as given."""
    try:
        _http_url.validate_python(value)
    except ValueError as e:
        raise ValueError(f"invalid webhook URL: {value}") from e
    return value


WebhookUrl = Annotated[str, AfterValidator(check_webhook_url)]


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.CONFIRMED,
    PaymentStatus.EXPIRED,
    PaymentStatus.FAILED,
})


class FeeBreakdown(BaseModel):
    percentage: Decimal
    amount: Decimal
    net_amount: Decimal


class PaymentRequest(BaseModel):
    """Input to PaymentLedger.create_payment."""

    amount: Decimal
    currency: str
    chain: str
    merchant_id: Optional[str] = None
    token_address: Optional[str] = None
    token_decimals: Optional[int] = None
    description: Optional[str] = None
    customer_email: Optional[str] = None
    webhook_url: Optional[WebhookUrl] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Payment(BaseModel):
    id: str
    merchant_id: Optional[str] = None
    amount: Decimal
    currency: str
    token_address: Optional[str] = None
    chain: str
    status: PaymentStatus = PaymentStatus.PENDING
    receiving_address: str
    payment_url: str
    qr_data: str
    transaction_hash: Optional[str] = None
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    description: Optional[str] = None
    webhook_url: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    webhook_sent: bool = False
    webhook_attempts: int = 0
    fee: FeeBreakdown
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return self.status == PaymentStatus.PENDING and now >= self.expires_at

    def to_event_data(self) -> Dict[str, Any]:
        """Snapshot used in webhook payloads."""
        return {
            "id": self.id,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "token_address": self.token_address,
            "status": self.status.value,
            "network": self.chain,
            "description": self.description,
            "receiving_address": self.receiving_address,
            "customer_address": self.customer_address,
            "transaction_hash": self.transaction_hash,
            "created_at": self.created_at.isoformat(),
            "paid_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "expires_at": self.expires_at.isoformat(),
            "metadata": self.metadata,
        }


class VerificationResult(BaseModel):
    """Outcome of checking a transaction against a payment. Never raised."""

    valid: bool
    reason: Optional[str] = None
    amount_received: Optional[Decimal] = None


class Merchant(BaseModel):
    id: str
    name: str
    webhook_url: Optional[str] = None
    webhook_secret_encrypted: Optional[str] = None
    receiving_addresses: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
