"""
Payment API endpoints: payment requests, settlement and merchant webhooks.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.errors import ValidationError
from payments.models import PaymentRequest, PaymentStatus, WebhookUrl
from payments.webhooks import EVENT_TYPES

from .container import GatewayServices, get_services

router = APIRouter()


class VerifyPaymentRequest(BaseModel):
    transaction_hash: str


class FailPaymentRequest(BaseModel):
    reason: str


class RegisterMerchantRequest(BaseModel):
    name: str
    webhook_url: Optional[WebhookUrl] = None
    webhook_secret: Optional[str] = None
    receiving_addresses: Dict[str, str] = Field(default_factory=dict)


class UpdateWebhookRequest(BaseModel):
    webhook_url: Optional[WebhookUrl] = None
    rotate_secret: bool = False


def _merchant_view(merchant) -> Dict[str, Any]:
    return merchant.model_dump(mode="json", exclude={"webhook_secret_encrypted"})


@router.post("/payments", status_code=201)
async def create_payment(data: PaymentRequest, services: GatewayServices = Depends(get_services)):
    """Create a payment request."""
    return await services.ledger.create_payment(data)


@router.get("/payments")
async def list_payments(
    status: Optional[PaymentStatus] = None,
    merchant_id: Optional[str] = None,
    chain: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    services: GatewayServices = Depends(get_services),
):
    payments = await services.ledger.list_payments(status, merchant_id, chain, limit, offset)
    return {"payments": payments, "count": len(payments)}


@router.get("/payments/search")
async def search_payments(q: str, services: GatewayServices = Depends(get_services)):
    return {"payments": await services.ledger.search_payments(q)}


@router.get("/payments/stats")
async def payment_stats(merchant_id: Optional[str] = None, services: GatewayServices = Depends(get_services)):
    return await services.ledger.get_stats(merchant_id)


@router.get("/payments/{payment_id}")
async def get_payment(payment_id: str, services: GatewayServices = Depends(get_services)):
    return await services.ledger.get_payment(payment_id)


@router.post("/payments/{payment_id}/verify")
async def verify_payment(
    payment_id: str,
    data: VerifyPaymentRequest,
    services: GatewayServices = Depends(get_services),
):
    """Check a transaction against the payment and confirm it if it settles."""
    verified = await services.ledger.validate_payment(payment_id, data.transaction_hash)
    payment = await services.ledger.get_payment(payment_id)
    return {"verified": verified, "payment": payment}


@router.post("/payments/{payment_id}/fail")
async def fail_payment(
    payment_id: str,
    data: FailPaymentRequest,
    services: GatewayServices = Depends(get_services),
):
    return await services.ledger.mark_failed(payment_id, data.reason)


@router.post("/merchants", status_code=201)
async def register_merchant(data: RegisterMerchantRequest, services: GatewayServices = Depends(get_services)):
    """Register a merchant. The webhook secret is only ever returned here."""
    for chain, address in data.receiving_addresses.items():
        if not services.registry.is_valid_address(chain, address):
            raise ValidationError(f"Invalid {chain} receiving address: {address}")

    merchant, secret = await services.merchants.register_merchant(
        data.name,
        webhook_url=data.webhook_url,
        webhook_secret=data.webhook_secret,
        receiving_addresses=data.receiving_addresses,
    )
    return {"merchant": _merchant_view(merchant), "webhook_secret": secret}


@router.get("/merchants/{merchant_id}")
async def get_merchant(merchant_id: str, services: GatewayServices = Depends(get_services)):
    return _merchant_view(await services.merchants.get_merchant(merchant_id))


@router.put("/merchants/{merchant_id}/webhook")
async def update_merchant_webhook(
    merchant_id: str,
    data: UpdateWebhookRequest,
    services: GatewayServices = Depends(get_services),
):
    merchant, secret = await services.merchants.update_webhook(
        merchant_id, data.webhook_url, rotate_secret=data.rotate_secret
    )
    return {"merchant": _merchant_view(merchant), "webhook_secret": secret}


@router.post("/merchants/{merchant_id}/webhook/test")
async def test_merchant_webhook(merchant_id: str, services: GatewayServices = Depends(get_services)):
    """Send a signed ``webhook.test`` event and report the delivery outcome."""
    merchant = await services.merchants.get_merchant(merchant_id)
    if not merchant.webhook_url:
        raise ValidationError(f"Merchant {merchant_id} has no webhook URL")
    secret = await services.merchants.get_webhook_secret(merchant_id) or services.settings.WEBHOOK_SECRET
    return await services.notifier.send_test_event(merchant.webhook_url, secret, services.ledger.clock())


class ResendWebhookRequest(BaseModel):
    event: Optional[str] = None


@router.get("/webhooks/events")
async def list_webhook_events():
    return {"events": EVENT_TYPES}


@router.post("/webhooks/resend/{payment_id}")
async def resend_webhook(
    payment_id: str,
    data: Optional[ResendWebhookRequest] = None,
    services: GatewayServices = Depends(get_services),
):
    """Deliver a payment event again; defaults to the event for its current status."""
    return await services.ledger.resend_webhook(payment_id, data.event if data else None)
