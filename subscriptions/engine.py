"""
Subscription Engine - plans, subscriptions and recurring billing.

Charges are raised as Payment Ledger payment requests. A billing cycle is
counted when its payment request is created; the subscription's paid totals
only move once the ledger reports the payment confirmed.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import pydantic

from core.amounts import format_amount, parse_amount
from core.config import Settings
from core.crypto import generate_id
from core.errors import ConflictError, NotFoundError, ValidationError
from core.locks import KeyedLock
from core.logging import log_action
from core.repository import Storage
from payments.ledger import PaymentLedger
from payments.merchants import MerchantDirectory
from payments.models import Payment, PaymentRequest, PaymentStatus
from payments.webhooks import NotificationDispatcher, build_event_payload

from .intervals import advance, monthly_equivalent
from .models import (
    BILLABLE_STATUSES,
    LIVE_STATUSES,
    PLAN_EDITABLE_FIELDS,
    PLAN_FINANCIAL_FIELDS,
    Plan,
    PlanSpec,
    Subscription,
    SubscriptionPayment,
    SubscriptionPaymentKind,
    SubscriptionPaymentStatus,
    SubscriptionStatus,
    SweepReport,
)

logger = logging.getLogger(__name__)

# Statuses that count toward recurring revenue
REVENUE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})

REVENUE_QUANTUM = Decimal("0.00000001")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionEngine:
    def __init__(
        self,
        storage: Storage,
        ledger: PaymentLedger,
        notifier: NotificationDispatcher,
        merchants: MerchantDirectory,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.plans = storage.plans
        self.subscriptions = storage.subscriptions
        self.subscription_payments = storage.subscription_payments
        self.ledger = ledger
        self.notifier = notifier
        self.merchants = merchants
        self.settings = settings
        self.clock = clock
        self._locks = KeyedLock()
        ledger.add_listener(self.handle_payment_update)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def _check_terms(self, spec: PlanSpec) -> Tuple[Decimal, Optional[Decimal]]:
        """Validate a plan's financial terms; returns (amount, setup_fee)."""
        amount = parse_amount(spec.amount)
        if spec.interval_count < 1:
            raise ValidationError("interval_count must be at least 1")
        if spec.max_billing_cycles is not None and spec.max_billing_cycles < 1:
            raise ValidationError("max_billing_cycles must be at least 1")
        if spec.trial_days is not None and spec.trial_days < 0:
            raise ValidationError("trial_days cannot be negative")
        setup_fee = None
        if spec.setup_fee is not None:
            setup_fee = parse_amount(spec.setup_fee, field="setup_fee", allow_zero=True)
        self.ledger.validate_currency(spec.chain, spec.currency, spec.token_address)
        return amount, setup_fee

    async def create_plan(self, spec: PlanSpec) -> Plan:
        """
        Create a billing plan.

        Raises:
            ValidationError: Invalid amount, cadence, trial or setup fee
            UnsupportedChainError: Plan chain is not configured
            NotFoundError: Unknown merchant
        """
        if not spec.name or not spec.name.strip():
            raise ValidationError("Plan name is required")
        amount, setup_fee = self._check_terms(spec)
        if spec.merchant_id:
            await self.merchants.get_merchant(spec.merchant_id)

        now = self.clock()
        plan = Plan(
            id=generate_id("plan"),
            merchant_id=spec.merchant_id,
            name=spec.name.strip(),
            description=spec.description,
            amount=amount,
            currency=spec.currency.upper(),
            chain=spec.chain,
            token_address=spec.token_address,
            token_decimals=spec.token_decimals,
            interval=spec.interval,
            interval_count=spec.interval_count,
            trial_days=spec.trial_days,
            max_billing_cycles=spec.max_billing_cycles,
            setup_fee=setup_fee,
            metadata=dict(spec.metadata),
            created_at=now,
            updated_at=now,
        )
        await self.plans.create(plan)
        log_action(
            "plan.created",
            f"Created plan {plan.name}",
            plan_id=plan.id,
            amount=format_amount(amount),
            currency=plan.currency,
            interval=plan.interval.value,
        )
        return plan

    async def get_plan(self, plan_id: str) -> Plan:
        plan = await self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found")
        return plan

    async def list_plans(self, active_only: bool = False) -> List[Plan]:
        plans = await self.plans.list(lambda p: p.active or not active_only)
        plans.sort(key=lambda p: p.created_at)
        return plans

    async def _plan_subscriptions(self, plan_id: str, live_only: bool = False) -> List[Subscription]:
        return await self.subscriptions.list(
            lambda s: s.plan_id == plan_id and (not live_only or s.status in LIVE_STATUSES)
        )

    async def update_plan(self, plan_id: str, updates: Dict[str, Any]) -> Plan:
        """Edit a plan. Financial terms are frozen once anyone subscribes."""
        async with self._locks.hold(plan_id):
            plan = await self.get_plan(plan_id)

            unknown = set(updates) - PLAN_EDITABLE_FIELDS - PLAN_FINANCIAL_FIELDS
            if unknown:
                raise ValidationError(f"Unknown plan fields: {', '.join(sorted(unknown))}")

            financial = {k for k, v in updates.items() if k in PLAN_FINANCIAL_FIELDS and getattr(plan, k) != v}
            if financial and await self._plan_subscriptions(plan_id):
                raise ConflictError(
                    f"Plan {plan_id} has subscribers; financial terms cannot change",
                    {"fields": sorted(financial)},
                )

            merged = plan.model_dump()
            merged.update(updates)
            if isinstance(merged.get("currency"), str):
                merged["currency"] = merged["currency"].upper()
            try:
                spec = PlanSpec(**{k: merged[k] for k in PlanSpec.model_fields if k in merged})
                updated = Plan(**{**merged, "updated_at": self.clock()})
            except pydantic.ValidationError as e:
                fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
                raise ValidationError(f"Invalid plan update: {e}", {"fields": fields}) from e
            if financial:
                self._check_terms(spec)

            return await self.plans.update(updated)

    async def delete_plan(self, plan_id: str) -> None:
        async with self._locks.hold(plan_id):
            await self.get_plan(plan_id)
            live = await self._plan_subscriptions(plan_id, live_only=True)
            if live:
                raise ConflictError(
                    f"Plan {plan_id} still has {len(live)} active subscriptions",
                    {"subscription_ids": [s.id for s in live]},
                )
            await self.plans.delete(plan_id)
        logger.info(f"Deleted plan {plan_id}")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        customer_id: str,
        plan_id: str,
        wallet_address: str,
        trial_days_override: Optional[int] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """
        Subscribe a customer to a plan.

        With a trial the subscription starts ``trialing`` and is first billed
        when the trial ends; otherwise it starts ``active`` and is first
        billed at the end of its first period. A setup fee is requested
        immediately.
        """
        plan = await self.plans.get(plan_id)
        if plan is None or not plan.active:
            raise NotFoundError(f"Plan {plan_id} not found or inactive")
        if not customer_id:
            raise ValidationError("customer_id is required")
        if not self.ledger.registry.is_valid_address(plan.chain, wallet_address):
            raise ValidationError(f"Invalid {plan.chain} wallet address: {wallet_address}")

        trial_days = plan.trial_days if trial_days_override is None else trial_days_override
        trial_days = trial_days or 0
        if trial_days < 0:
            raise ValidationError("trial_days cannot be negative")

        async with self._locks.hold(f"{customer_id}:{plan_id}"):
            existing = await self.subscriptions.list(
                lambda s: s.customer_id == customer_id
                and s.plan_id == plan_id
                and s.status in LIVE_STATUSES
            )
            if existing:
                raise ConflictError(
                    f"Customer {customer_id} already subscribed to plan {plan_id}",
                    {"subscription_id": existing[0].id},
                )

            now = self.clock()
            if trial_days > 0:
                trial_end = now + timedelta(days=trial_days)
                status = SubscriptionStatus.TRIALING
                period_end = trial_end
                trial_start = now
            else:
                trial_end = trial_start = None
                status = SubscriptionStatus.ACTIVE
                period_end = advance(now, plan.interval, plan.interval_count)

            subscription = Subscription(
                id=generate_id("sub"),
                customer_id=customer_id,
                customer_email=customer_email,
                wallet_address=wallet_address,
                plan_id=plan.id,
                status=status,
                current_period_start=now,
                current_period_end=period_end,
                trial_start=trial_start,
                trial_end=trial_end,
                next_billing_date=period_end,
                metadata=dict(metadata or {}),
                created_at=now,
                updated_at=now,
            )
            await self.subscriptions.create(subscription)

        log_action(
            "subscription.created",
            f"Customer {customer_id} subscribed to {plan.name}",
            subscription_id=subscription.id,
            plan_id=plan.id,
            status=status.value,
        )
        await self._emit("subscription.created", subscription, plan)

        if plan.setup_fee and plan.setup_fee > 0:
            await self._charge_setup_fee(subscription, plan)

        return subscription

    async def _charge_setup_fee(self, subscription: Subscription, plan: Plan) -> None:
        try:
            await self._create_subscription_payment(
                subscription,
                plan,
                SubscriptionPaymentKind.SETUP_FEE,
                plan.setup_fee,
                subscription.current_period_start,
                subscription.current_period_end,
            )
        except Exception as e:
            logger.warning(f"Setup fee request for {subscription.id} failed: {e}")
            await self._emit(
                "subscription.payment_failed", subscription, plan, {"reason": str(e)}
            )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def list_subscriptions(self, status: Optional[SubscriptionStatus] = None) -> List[Subscription]:
        subscriptions = await self.subscriptions.list(lambda s: status is None or s.status == status)
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def list_customer_subscriptions(self, customer_id: str) -> List[Subscription]:
        subscriptions = await self.subscriptions.list(lambda s: s.customer_id == customer_id)
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def get_subscription_payments(self, subscription_id: str) -> List[SubscriptionPayment]:
        await self.get_subscription(subscription_id)
        payments = await self.subscription_payments.list(lambda p: p.subscription_id == subscription_id)
        payments.sort(key=lambda p: p.scheduled_date, reverse=True)
        return payments

    async def cancel(self, subscription_id: str, at_period_end: bool = False) -> Subscription:
        """
        Cancel a subscription, immediately or when the current period ends.

        Deferred cancellation only applies to subscriptions that are still
        being billed; the billing sweep finalizes it.
        """
        async with self._locks.hold(subscription_id):
            subscription = await self.get_subscription(subscription_id)
            if subscription.status == SubscriptionStatus.CANCELED:
                return subscription

            now = self.clock()
            subscription.canceled_at = now
            subscription.updated_at = now
            if at_period_end and subscription.status in BILLABLE_STATUSES:
                subscription.cancel_at_period_end = True
                subscription.ended_at = subscription.current_period_end
                subscription = await self.subscriptions.update(subscription)
                logger.info(f"Subscription {subscription_id} will cancel at {subscription.ended_at}")
                return subscription

            subscription.status = SubscriptionStatus.CANCELED
            subscription.cancel_at_period_end = False
            subscription.ended_at = now
            subscription = await self.subscriptions.update(subscription)

        log_action("subscription.cancelled", f"Cancelled subscription {subscription_id}", subscription_id=subscription_id)
        await self._emit("subscription.cancelled", subscription)
        return subscription

    async def pause(self, subscription_id: str) -> Optional[Subscription]:
        return await self._switch(subscription_id, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)

    async def resume(self, subscription_id: str) -> Optional[Subscription]:
        return await self._switch(subscription_id, SubscriptionStatus.PAUSED, SubscriptionStatus.ACTIVE)

    async def _switch(
        self,
        subscription_id: str,
        from_status: SubscriptionStatus,
        to_status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        async with self._locks.hold(subscription_id):
            subscription = await self.subscriptions.get(subscription_id)
            if subscription is None or subscription.status != from_status:
                return None
            now = self.clock()
            if to_status == SubscriptionStatus.PAUSED:
                subscription.paused_at = now
            elif subscription.paused_at is not None:
                # The paused stretch is never billed; push the period out by its length
                shift = max(now - subscription.paused_at, timedelta(0))
                subscription.current_period_start += shift
                subscription.current_period_end += shift
                subscription.next_billing_date += shift
                if subscription.cancel_at_period_end:
                    subscription.ended_at = subscription.current_period_end
                subscription.paused_at = None
            subscription.status = to_status
            subscription.updated_at = now
            subscription = await self.subscriptions.update(subscription)
        logger.info(f"Subscription {subscription_id}: {from_status.value} -> {to_status.value}")
        return subscription

    async def refund_subscription_payment(self, subscription_payment_id: str) -> SubscriptionPayment:
        """Mark a paid charge refunded. The on-chain refund happens elsewhere."""
        record = await self.subscription_payments.get(subscription_payment_id)
        if record is None:
            raise NotFoundError(f"Subscription payment {subscription_payment_id} not found")

        async with self._locks.hold(record.subscription_id):
            record = await self.subscription_payments.get(subscription_payment_id)
            if record.status != SubscriptionPaymentStatus.PAID:
                raise ConflictError(
                    f"Only paid charges can be refunded; {subscription_payment_id} is {record.status.value}"
                )
            now = self.clock()
            record.status = SubscriptionPaymentStatus.REFUNDED
            record.refunded_at = now
            record = await self.subscription_payments.update(record)

            subscription = await self.subscriptions.get(record.subscription_id)
            if subscription is not None:
                subscription.total_paid -= record.amount
                subscription.updated_at = now
                await self.subscriptions.update(subscription)

        log_action(
            "subscription.refund",
            f"Refunded {format_amount(record.amount)} {record.currency}",
            subscription_payment_id=record.id,
            subscription_id=record.subscription_id,
        )
        return record

    async def get_stats(self) -> Dict[str, Any]:
        """Counts by status and recurring revenue per currency."""
        subscriptions = await self.subscriptions.list()
        plans = {p.id: p for p in await self.plans.list()}

        by_status = {status.value: 0 for status in SubscriptionStatus}
        mrr: Dict[str, Decimal] = {}
        for subscription in subscriptions:
            by_status[subscription.status.value] += 1
            plan = plans.get(subscription.plan_id)
            if plan is None or subscription.status not in REVENUE_STATUSES:
                continue
            monthly = monthly_equivalent(plan.amount, plan.interval, plan.interval_count)
            mrr[plan.currency] = mrr.get(plan.currency, Decimal(0)) + monthly

        mrr = {currency: value.quantize(REVENUE_QUANTUM) for currency, value in mrr.items()}
        return {
            "total_subscriptions": len(subscriptions),
            "by_status": by_status,
            "total_plans": len(plans),
            "mrr": mrr,
            "arr": {currency: value * 12 for currency, value in mrr.items()},
        }

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    async def _create_subscription_payment(
        self,
        subscription: Subscription,
        plan: Plan,
        kind: SubscriptionPaymentKind,
        amount: Decimal,
        period_start: datetime,
        period_end: datetime,
        attempt_count: int = 1,
    ) -> Tuple[SubscriptionPayment, Payment]:
        """
        Record a charge and raise its payment request with the ledger.

        If the ledger refuses the request the charge is stored as failed and
        the ledger's error propagates.
        """
        record = SubscriptionPayment(
            id=generate_id("subpay"),
            subscription_id=subscription.id,
            kind=kind,
            amount=amount,
            currency=plan.currency,
            chain=plan.chain,
            scheduled_date=self.clock(),
            billing_period_start=period_start,
            billing_period_end=period_end,
            attempt_count=attempt_count,
        )
        await self.subscription_payments.create(record)

        request = PaymentRequest(
            amount=amount,
            currency=plan.currency,
            chain=plan.chain,
            merchant_id=plan.merchant_id,
            token_address=plan.token_address,
            token_decimals=plan.token_decimals,
            description=f"{plan.name} ({kind.value.replace('_', ' ')})",
            customer_email=subscription.customer_email,
            metadata={
                "subscription_id": subscription.id,
                "subscription_payment_id": record.id,
                "plan_id": plan.id,
            },
        )
        try:
            payment = await self.ledger.create_payment(request)
        except Exception as e:
            record.status = SubscriptionPaymentStatus.FAILED
            record.failure_reason = str(e)
            await self.subscription_payments.update(record)
            raise

        record.payment_id = payment.id
        record = await self.subscription_payments.update(record)
        return record, payment

    async def run_billing_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Charge every subscription whose billing date has arrived.

        Each subscription is processed on its own; one failing does not stop
        the rest of the sweep.
        """
        now = now or self.clock()
        report = SweepReport(started_at=now)

        due = await self.subscriptions.list(
            lambda s: s.status in BILLABLE_STATUSES and s.next_billing_date <= now
        )
        due.sort(key=lambda s: s.next_billing_date)
        report.due = len(due)

        for subscription in due:
            try:
                outcome = await self._bill(subscription.id, now)
            except Exception as e:
                logger.exception(f"Billing subscription {subscription.id} failed")
                report.errors.append({"subscription_id": subscription.id, "error": str(e)})
                continue
            report.record(outcome)

        log_action(
            "billing.sweep",
            f"Billing sweep processed {report.due} due subscriptions",
            charged=report.charged,
            completed=report.completed,
            finalized=report.finalized,
            past_due=report.past_due,
            unpaid=report.unpaid,
            errors=len(report.errors),
        )
        return report

    async def _bill(self, subscription_id: str, now: datetime) -> str:
        events: List[Tuple[str, Dict[str, Any]]] = []

        async with self._locks.hold(subscription_id):
            subscription = await self.subscriptions.get(subscription_id)
            if (
                subscription is None
                or subscription.status not in BILLABLE_STATUSES
                or subscription.next_billing_date > now
            ):
                return "skipped"

            if subscription.cancel_at_period_end and subscription.current_period_end <= now:
                subscription.status = SubscriptionStatus.CANCELED
                subscription.ended_at = subscription.current_period_end
                subscription.updated_at = now
                subscription = await self.subscriptions.update(subscription)
                outcome = "finalized"
                events.append(("subscription.cancelled", {}))
                plan = await self.plans.get(subscription.plan_id)
            else:
                plan = await self.get_plan(subscription.plan_id)
                subscription, outcome, events = await self._charge_cycle(subscription, plan, now)

        for event, extra in events:
            await self._emit(event, subscription, plan, extra)
        return outcome

    async def _charge_cycle(
        self, subscription: Subscription, plan: Plan, now: datetime
    ) -> Tuple[Subscription, str, List[Tuple[str, Dict[str, Any]]]]:
        """One charge attempt for a due subscription. Caller holds its lock."""
        period_start = subscription.current_period_end
        period_end = advance(period_start, plan.interval, plan.interval_count)
        await self._emit(
            "subscription.payment_due",
            subscription,
            plan,
            {
                "amount": format_amount(plan.amount),
                "billing_period_start": period_start.isoformat(),
                "billing_period_end": period_end.isoformat(),
            },
        )

        try:
            record, payment = await self._create_subscription_payment(
                subscription,
                plan,
                SubscriptionPaymentKind.RECURRING,
                plan.amount,
                period_start,
                period_end,
                attempt_count=subscription.failed_payment_attempts + 1,
            )
        except Exception as e:
            subscription.failed_payment_attempts += 1
            if subscription.failed_payment_attempts >= self.settings.MAX_FAILED_PAYMENT_ATTEMPTS:
                subscription.status = SubscriptionStatus.UNPAID
                outcome = "unpaid"
            else:
                subscription.status = SubscriptionStatus.PAST_DUE
                subscription.next_billing_date = now + timedelta(days=self.settings.BILLING_RETRY_DELAY_DAYS)
                outcome = "past_due"
            subscription.updated_at = now
            subscription = await self.subscriptions.update(subscription)
            logger.warning(
                f"Charge for {subscription.id} failed "
                f"(attempt {subscription.failed_payment_attempts}): {e}; now {outcome}"
            )
            return subscription, outcome, [("subscription.payment_failed", {"reason": str(e)})]

        subscription.billing_cycle_count += 1
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.next_billing_date = period_end
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.updated_at = now
        outcome = "charged"
        events: List[Tuple[str, Dict[str, Any]]] = []

        if plan.max_billing_cycles and subscription.billing_cycle_count >= plan.max_billing_cycles:
            subscription.status = SubscriptionStatus.CANCELED
            subscription.canceled_at = now
            subscription.ended_at = now
            outcome = "completed"
            events.append(("subscription.expired", {"billing_cycles": subscription.billing_cycle_count}))

        subscription = await self.subscriptions.update(subscription)
        logger.info(
            f"Requested cycle {subscription.billing_cycle_count} for {subscription.id}: "
            f"payment {payment.id} ({record.id})"
        )
        return subscription, outcome, events

    async def run_trial_expiry_sweep(self, now: Optional[datetime] = None) -> int:
        """Move subscriptions whose trial has ended to ``active``."""
        now = now or self.clock()
        ended = await self.subscriptions.list(
            lambda s: s.status == SubscriptionStatus.TRIALING and s.trial_end is not None and s.trial_end <= now
        )
        converted = 0
        for candidate in ended:
            async with self._locks.hold(candidate.id):
                subscription = await self.subscriptions.get(candidate.id)
                if subscription is None or subscription.status != SubscriptionStatus.TRIALING:
                    continue
                subscription.status = SubscriptionStatus.ACTIVE
                subscription.next_billing_date = subscription.trial_end
                subscription.updated_at = now
                await self.subscriptions.update(subscription)
            converted += 1

        if converted:
            logger.info(f"Converted {converted} trials to active")
        return converted

    async def handle_payment_update(self, payment: Payment) -> None:
        """Ledger listener: settle the charge a subscription payment request belongs to."""
        record_id = payment.metadata.get("subscription_payment_id")
        if not record_id:
            return
        if payment.status == PaymentStatus.PENDING:
            return

        record = await self.subscription_payments.get(record_id)
        if record is None:
            logger.warning(f"Payment {payment.id} references unknown subscription payment {record_id}")
            return

        async with self._locks.hold(record.subscription_id):
            record = await self.subscription_payments.get(record_id)
            if record.status != SubscriptionPaymentStatus.PENDING:
                return
            subscription = await self.subscriptions.get(record.subscription_id)

            now = self.clock()
            if payment.status == PaymentStatus.CONFIRMED:
                record.status = SubscriptionPaymentStatus.PAID
                record.paid_at = payment.confirmed_at or now
                record.transaction_hash = payment.transaction_hash
                event = "subscription.payment_processed"
                if subscription is not None:
                    subscription.total_paid += record.amount
                    subscription.last_payment_date = record.paid_at
                    subscription.failed_payment_attempts = 0
            else:
                record.status = SubscriptionPaymentStatus.FAILED
                record.failure_reason = payment.failure_reason or f"payment {payment.status.value}"
                event = "subscription.payment_failed"

            record = await self.subscription_payments.update(record)
            if subscription is not None:
                subscription.updated_at = now
                subscription = await self.subscriptions.update(subscription)

        logger.info(f"Subscription payment {record.id} is {record.status.value} (payment {payment.id})")
        if subscription is not None:
            await self._emit(event, subscription, extra={"payment": record.to_event_data()})

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _emit(
        self,
        event: str,
        subscription: Subscription,
        plan: Optional[Plan] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if plan is None:
            plan = await self.plans.get(subscription.plan_id)
        merchant_id = plan.merchant_id if plan else None

        url, secret = await self.merchants.resolve_webhook_target(
            merchant_id, None, self.settings.WEBHOOK_SECRET
        )
        if not url:
            logger.debug(f"No webhook endpoint for subscription {subscription.id}; skipping {event}")
            return

        data: Dict[str, Any] = {"subscription": subscription.to_event_data()}
        if plan is not None:
            data["plan"] = plan.to_event_data()
        data.update(extra or {})

        payload = build_event_payload(
            event,
            "subscription",
            subscription.id,
            self.clock(),
            data,
            livemode=self.settings.livemode,
        )
        self.notifier.dispatch(url, payload, secret)
