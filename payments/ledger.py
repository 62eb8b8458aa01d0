"""
Payment Ledger - payment requests from creation to settlement.

Lifecycle: pending -> confirmed | expired | failed, one way. A pending
payment past ``expires_at`` is observed as expired on the next read.
Settlement is verified against the chain; a confirmation is applied under a
per-payment lock so concurrent validations cannot both win.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.amounts import parse_amount
from core.config import Settings
from core.crypto import generate_id
from core.errors import (
    ConflictError,
    DhanSetuError,
    ExternalServiceError,
    NotFoundError,
    UnsupportedChainError,
    ValidationError,
)
from core.locks import KeyedLock
from core.repository import Storage
from gateways.base import TransferDetails, TxState
from gateways.registry import ChainRegistry

from .merchants import MerchantDirectory
from .models import (
    FeeBreakdown,
    Payment,
    PaymentRequest,
    PaymentStatus,
    VerificationResult,
)
from .uri import build_payment_uri
from .webhooks import EVENT_TYPES, DeliveryResult, NotificationDispatcher, build_event_payload

logger = logging.getLogger(__name__)

PaymentListener = Callable[[Payment], Awaitable[None]]

STATUS_EVENTS = {
    PaymentStatus.PENDING: "payment.created",
    PaymentStatus.CONFIRMED: "payment.completed",
    PaymentStatus.FAILED: "payment.failed",
    PaymentStatus.EXPIRED: "payment.expired",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_transfer(payment: Payment, transfer: Optional[TransferDetails]) -> VerificationResult:
    """
    Apply the settlement policy to an on-chain transfer.

    Reverted transactions never count; the received amount must cover the
    requested amount (overpayment accepted, underpayment rejected).
    """
    if transfer is None:
        return VerificationResult(valid=False, reason="transaction not found")
    if not transfer.success:
        return VerificationResult(valid=False, reason="transaction reverted")
    if transfer.amount < payment.amount:
        return VerificationResult(
            valid=False,
            reason=f"underpaid: received {transfer.amount}, expected {payment.amount}",
            amount_received=transfer.amount,
        )
    return VerificationResult(valid=True, amount_received=transfer.amount)


class PaymentLedger:
    def __init__(
        self,
        storage: Storage,
        registry: ChainRegistry,
        notifier: NotificationDispatcher,
        merchants: MerchantDirectory,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = storage.payments
        self.registry = registry
        self.notifier = notifier
        self.merchants = merchants
        self.settings = settings
        self.clock = clock
        self._locks = KeyedLock()
        self._listeners: List[PaymentListener] = []

    def add_listener(self, listener: PaymentListener) -> None:
        """Register a coroutine called after every status transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _fee_for(self, amount: Decimal) -> FeeBreakdown:
        percentage = self.settings.FEE_PERCENTAGE
        fee = amount * percentage / Decimal(100)
        return FeeBreakdown(percentage=percentage, amount=fee, net_amount=amount - fee)

    async def _resolve_receiving_address(self, merchant_id: Optional[str], chain: str) -> Optional[str]:
        if merchant_id:
            address = await self.merchants.get_receiving_address(merchant_id, chain)
            if address:
                return address
        return self.settings.RECEIVING_ADDRESSES.get(chain)

    def validate_currency(self, chain: str, currency: str, token_address: Optional[str]) -> None:
        """
        Non-native currencies need a token contract so settlement can be verified.

        A USDC plan or payment therefore always carries the USDC contract
        address for its chain.
        """
        gateway = self.registry.get(chain)
        if not currency or not currency.strip():
            raise ValidationError("currency is required")
        if token_address:
            if not gateway.is_valid_address(token_address):
                raise ValidationError(f"Invalid token address for {chain}: {token_address}")
        elif currency.upper() != gateway.config.native_symbol:
            raise ValidationError(
                f"{currency} is not native to {chain}; token_address is required",
                {"chain": chain, "currency": currency},
            )

    async def create_payment(self, request: PaymentRequest) -> Payment:
        """
        Create a pending payment request.

        Raises:
            ValidationError: Invalid amount, currency or expiry
            UnsupportedChainError: Chain not configured or no receiving address
        """
        amount = parse_amount(request.amount)
        gateway = self.registry.get(request.chain)
        self.validate_currency(request.chain, request.currency, request.token_address)

        address = await self._resolve_receiving_address(request.merchant_id, request.chain)
        if not address:
            raise UnsupportedChainError(f"No receiving address configured for {request.chain}")

        now = self.clock()
        expires_at = request.expires_at or now + timedelta(hours=self.settings.PAYMENT_EXPIRY_HOURS)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            raise ValidationError("expires_at must be in the future")

        payment_id = generate_id("pay")
        payment = Payment(
            id=payment_id,
            merchant_id=request.merchant_id,
            amount=amount,
            currency=request.currency.upper(),
            token_address=request.token_address,
            chain=request.chain,
            receiving_address=address,
            payment_url=f"{self.settings.BASE_URL.rstrip('/')}/pay/{payment_id}",
            qr_data=build_payment_uri(
                gateway.config,
                address,
                amount,
                token_address=request.token_address,
                token_decimals=request.token_decimals,
            ),
            customer_email=request.customer_email,
            description=request.description,
            webhook_url=request.webhook_url,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
            fee=self._fee_for(amount),
            metadata=dict(request.metadata),
        )
        await self.repository.create(payment)
        logger.info(f"Created payment {payment.id} for {amount} {payment.currency} on {payment.chain}")

        await self._publish(payment, "payment.created", notify_listeners=False)
        return payment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _observe(self, payment: Payment) -> Payment:
        """Apply lazy expiry to a freshly read payment."""
        if not payment.is_expired(self.clock()):
            return payment

        async with self._locks.hold(payment.id):
            current = await self.repository.get(payment.id)
            if current is None or not current.is_expired(self.clock()):
                return current or payment
            expired = await self._transition(current, PaymentStatus.EXPIRED)

        await self._publish(expired, "payment.expired")
        return expired

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self.repository.get(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return await self._observe(payment)

    async def list_payments(
        self,
        status: Optional[PaymentStatus] = None,
        merchant_id: Optional[str] = None,
        chain: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Payment]:
        """Newest first, filtered after lazy expiry is applied."""
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")

        payments = [await self._observe(p) for p in await self.repository.list()]
        payments = [
            p for p in payments
            if (status is None or p.status == status)
            and (merchant_id is None or p.merchant_id == merchant_id)
            and (chain is None or p.chain == chain)
        ]
        payments.sort(key=lambda p: p.created_at, reverse=True)
        return payments[offset:offset + limit]

    async def search_payments(self, query: str) -> List[Payment]:
        needle = (query or "").strip().lower()
        if not needle:
            return []

        def matches(payment: Payment) -> bool:
            fields = [
                payment.id,
                payment.receiving_address,
                payment.transaction_hash,
                payment.customer_email,
                payment.customer_address,
            ]
            return any(field and needle in field.lower() for field in fields)

        found = await self.repository.list(matches)
        found = [await self._observe(p) for p in found]
        found.sort(key=lambda p: p.created_at, reverse=True)
        return found

    async def get_stats(self, merchant_id: Optional[str] = None) -> Dict[str, Any]:
        payments = [
            await self._observe(p)
            for p in await self.repository.list(
                lambda p: merchant_id is None or p.merchant_id == merchant_id
            )
        ]
        confirmed = [p for p in payments if p.status == PaymentStatus.CONFIRMED]
        totals: Dict[str, Decimal] = {}
        for payment in confirmed:
            totals[payment.currency] = totals.get(payment.currency, Decimal(0)) + payment.amount

        return {
            "total_payments": len(payments),
            "confirmed_payments": len(confirmed),
            "pending_payments": sum(1 for p in payments if p.status == PaymentStatus.PENDING),
            "failed_payments": sum(1 for p in payments if p.status == PaymentStatus.FAILED),
            "expired_payments": sum(1 for p in payments if p.status == PaymentStatus.EXPIRED),
            "confirmed_volume": {currency: str(total) for currency, total in totals.items()},
        }

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _hash_already_used(self, payment_id: str, tx_hash: str) -> bool:
        needle = tx_hash.lower()
        used = await self.repository.list(
            lambda p: p.id != payment_id
            and p.transaction_hash is not None
            and p.transaction_hash.lower() == needle
        )
        return bool(used)

    async def verify_settlement(self, payment: Payment, tx_hash: str) -> VerificationResult:
        """Check ``tx_hash`` against the chain. Never raises."""
        try:
            gateway = self.registry.get(payment.chain)
        except DhanSetuError as e:
            return VerificationResult(valid=False, reason=e.message)

        if not gateway.is_valid_transaction_hash(tx_hash):
            return VerificationResult(valid=False, reason="malformed transaction hash")

        try:
            status = await gateway.get_transaction_status(tx_hash)
            if status.status != TxState.CONFIRMED:
                return VerificationResult(valid=False, reason=f"transaction {status.status.value}")
            transfer = await gateway.get_transfer(tx_hash, payment.receiving_address, payment.token_address)
        except ExternalServiceError as e:
            logger.warning(f"Verification of {payment.id} against {tx_hash} failed: {e}")
            return VerificationResult(valid=False, reason=f"rpc error: {e.message}")

        result = check_transfer(payment, transfer)
        if result.valid and transfer is not None:
            payment.customer_address = transfer.sender
        return result

    async def validate_payment(self, payment_id: str, transaction_hash: str) -> bool:
        """
        Confirm a payment against an on-chain transaction.

        Returns False, without mutating anything, when the payment is missing
        or not pending, or the transaction does not (yet) settle it. Only the
        first successful call confirms and fires the completion webhook.
        """
        async with self._locks.hold(payment_id):
            payment = await self.repository.get(payment_id)
            if payment is None or payment.status != PaymentStatus.PENDING:
                return False

            if payment.is_expired(self.clock()):
                expired = await self._transition(payment, PaymentStatus.EXPIRED)
                confirmed = None
            else:
                expired = None
                if await self._hash_already_used(payment_id, transaction_hash):
                    logger.warning(f"Transaction {transaction_hash} already settled another payment")
                    return False

                result = await self.verify_settlement(payment, transaction_hash)
                if not result.valid:
                    logger.info(f"Payment {payment_id} not settled by {transaction_hash}: {result.reason}")
                    return False

                payment.transaction_hash = transaction_hash
                confirmed = await self._transition(payment, PaymentStatus.CONFIRMED)

        if expired is not None:
            await self._publish(expired, "payment.expired")
            return False

        logger.info(f"Payment {payment_id} confirmed by {transaction_hash}")
        await self._publish(confirmed, "payment.completed")
        return True

    async def mark_failed(self, payment_id: str, reason: str) -> Payment:
        async with self._locks.hold(payment_id):
            payment = await self.repository.get(payment_id)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found")
            if payment.status != PaymentStatus.PENDING:
                raise ConflictError(f"Payment {payment_id} is already {payment.status.value}")
            payment.failure_reason = reason
            failed = await self._transition(payment, PaymentStatus.FAILED)

        await self._publish(failed, "payment.failed")
        return failed

    async def expire_stale_payments(self, now: Optional[datetime] = None) -> int:
        """Mark every pending payment past its expiry as expired."""
        now = now or self.clock()
        stale = await self.repository.list(lambda p: p.is_expired(now))
        expired_count = 0
        for payment in stale:
            async with self._locks.hold(payment.id):
                current = await self.repository.get(payment.id)
                if current is None or not current.is_expired(now):
                    continue
                expired = await self._transition(current, PaymentStatus.EXPIRED)
            expired_count += 1
            await self._publish(expired, "payment.expired")

        if expired_count:
            logger.info(f"Expired {expired_count} stale payments")
        return expired_count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(self, payment: Payment, status: PaymentStatus) -> Payment:
        """Persist a one-way transition out of pending. Caller holds the lock."""
        now = self.clock()
        payment.status = status
        payment.updated_at = now
        if status == PaymentStatus.CONFIRMED:
            payment.confirmed_at = now
        return await self.repository.update(payment)

    async def _record_delivery(self, payment_id: str, result: DeliveryResult) -> None:
        async with self._locks.hold(payment_id):
            payment = await self.repository.get(payment_id)
            if payment is None:
                return
            payment.webhook_sent = payment.webhook_sent or result.success
            payment.webhook_attempts += result.attempts
            await self.repository.update(payment)

    async def _webhook_delivery(self, payment: Payment, event: str) -> Tuple[Optional[str], str, Dict[str, Any]]:
        url, secret = await self.merchants.resolve_webhook_target(
            payment.merchant_id, payment.webhook_url, self.settings.WEBHOOK_SECRET
        )
        payload = build_event_payload(
            event,
            "payment",
            payment.id,
            payment.created_at,
            {"payment": payment.to_event_data()},
            livemode=self.settings.livemode,
        )
        return url, secret, payload

    async def _publish(self, payment: Payment, event: str, notify_listeners: bool = True) -> None:
        if notify_listeners:
            for listener in self._listeners:
                try:
                    await listener(payment)
                except Exception:
                    logger.exception(f"Payment listener failed for {payment.id} ({event})")

        url, secret, payload = await self._webhook_delivery(payment, event)
        if not url:
            logger.debug(f"No webhook endpoint for payment {payment.id}; skipping {event}")
            return

        async def record(result: DeliveryResult) -> None:
            await self._record_delivery(payment.id, result)

        self.notifier.dispatch(url, payload, secret, on_complete=record)

    async def resend_webhook(self, payment_id: str, event: Optional[str] = None) -> DeliveryResult:
        """
        Deliver a payment event again and wait for the outcome.

        Defaults to the event matching the payment's current status.

        Raises:
            NotFoundError: Unknown payment
            ValidationError: Not a payment event, or no webhook endpoint
        """
        payment = await self.get_payment(payment_id)
        event = event or STATUS_EVENTS[payment.status]
        if event not in EVENT_TYPES["payment"]:
            raise ValidationError(f"{event} is not a payment event", {"events": EVENT_TYPES["payment"]})

        url, secret, payload = await self._webhook_delivery(payment, event)
        if not url:
            raise ValidationError(f"Payment {payment_id} has no webhook endpoint")

        result = await self.notifier.deliver(url, payload, secret)
        await self._record_delivery(payment.id, result)
        logger.info(f"Resent {event} for {payment_id}: success={result.success}")
        return result
