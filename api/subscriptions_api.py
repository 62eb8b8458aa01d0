"""
Subscription API endpoints for plan management, customer self-service and
billing operations.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.errors import ConflictError
from subscriptions.models import BillingInterval, PlanSpec, SubscriptionStatus

from .container import GatewayServices, get_services

router = APIRouter()


class UpdatePlanRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    chain: Optional[str] = None
    token_address: Optional[str] = None
    token_decimals: Optional[int] = None
    interval: Optional[BillingInterval] = None
    interval_count: Optional[int] = None
    trial_days: Optional[int] = None
    max_billing_cycles: Optional[int] = None
    setup_fee: Optional[Decimal] = None


class CreateSubscriptionRequest(BaseModel):
    customer_id: str
    plan_id: str
    wallet_address: str
    trial_days: Optional[int] = None
    customer_email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CancelSubscriptionRequest(BaseModel):
    at_period_end: bool = False


@router.post("/plans", status_code=201)
async def create_plan(data: PlanSpec, services: GatewayServices = Depends(get_services)):
    return await services.engine.create_plan(data)


@router.get("/plans")
async def list_plans(active_only: bool = False, services: GatewayServices = Depends(get_services)):
    return {"plans": await services.engine.list_plans(active_only)}


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str, services: GatewayServices = Depends(get_services)):
    return await services.engine.get_plan(plan_id)


@router.patch("/plans/{plan_id}")
async def update_plan(plan_id: str, data: UpdatePlanRequest, services: GatewayServices = Depends(get_services)):
    """Edit a plan. Financial terms are locked once the plan has subscribers."""
    return await services.engine.update_plan(plan_id, data.model_dump(exclude_unset=True))


@router.delete("/plans/{plan_id}")
async def delete_plan(plan_id: str, services: GatewayServices = Depends(get_services)):
    await services.engine.delete_plan(plan_id)
    return {"deleted": True, "plan_id": plan_id}


@router.post("/subscriptions", status_code=201)
async def create_subscription(data: CreateSubscriptionRequest, services: GatewayServices = Depends(get_services)):
    """Create new subscription."""
    return await services.engine.subscribe(
        customer_id=data.customer_id,
        plan_id=data.plan_id,
        wallet_address=data.wallet_address,
        trial_days_override=data.trial_days,
        customer_email=data.customer_email,
        metadata=data.metadata,
    )


@router.get("/subscriptions")
async def list_subscriptions(
    status: Optional[SubscriptionStatus] = None,
    services: GatewayServices = Depends(get_services),
):
    return {"subscriptions": await services.engine.list_subscriptions(status)}


@router.get("/subscriptions/stats")
async def subscription_stats(services: GatewayServices = Depends(get_services)):
    stats = await services.engine.get_stats()
    # Revenue stays exact on the wire
    for key in ("mrr", "arr"):
        stats[key] = {currency: str(value) for currency, value in stats[key].items()}
    return stats


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str, services: GatewayServices = Depends(get_services)):
    return await services.engine.get_subscription(subscription_id)


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    data: CancelSubscriptionRequest,
    services: GatewayServices = Depends(get_services),
):
    """Cancel now, or at the end of the current period."""
    return await services.engine.cancel(subscription_id, at_period_end=data.at_period_end)


@router.post("/subscriptions/{subscription_id}/pause")
async def pause_subscription(subscription_id: str, services: GatewayServices = Depends(get_services)):
    subscription = await services.engine.pause(subscription_id)
    if subscription is None:
        raise ConflictError(f"Subscription {subscription_id} is not active")
    return subscription


@router.post("/subscriptions/{subscription_id}/resume")
async def resume_subscription(subscription_id: str, services: GatewayServices = Depends(get_services)):
    subscription = await services.engine.resume(subscription_id)
    if subscription is None:
        raise ConflictError(f"Subscription {subscription_id} is not paused")
    return subscription


@router.get("/subscriptions/{subscription_id}/payments")
async def get_subscription_payments(subscription_id: str, services: GatewayServices = Depends(get_services)):
    return {"payments": await services.engine.get_subscription_payments(subscription_id)}


@router.post("/subscription-payments/{subscription_payment_id}/refund")
async def refund_subscription_payment(
    subscription_payment_id: str,
    services: GatewayServices = Depends(get_services),
):
    return await services.engine.refund_subscription_payment(subscription_payment_id)


@router.get("/customers/{customer_id}/subscriptions")
async def get_customer_subscriptions(customer_id: str, services: GatewayServices = Depends(get_services)):
    """Get all subscriptions for customer."""
    return {"subscriptions": await services.engine.list_customer_subscriptions(customer_id)}


@router.post("/billing/run-cycle")
async def run_billing_cycle(services: GatewayServices = Depends(get_services)):
    """Run the billing sweep now instead of waiting for the scheduler."""
    return await services.engine.run_billing_sweep()


@router.post("/billing/run-trial-expiry")
async def run_trial_expiry(services: GatewayServices = Depends(get_services)):
    return {"converted": await services.engine.run_trial_expiry_sweep()}
