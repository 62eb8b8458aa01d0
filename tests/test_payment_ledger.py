"""
Tests for the Payment Ledger: payment creation, lazy expiry, settlement
verification against the fake chain nodes and completion webhooks.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from core.crypto import create_hmac_signature
from core.errors import ConflictError, NotFoundError, UnsupportedChainError, ValidationError
from payments.ledger import check_transfer
from payments.models import PaymentRequest, PaymentStatus
from payments.webhooks import SIGNATURE_HEADER
from gateways.base import TransferDetails

from .conftest import (
    EVM_RECEIVER,
    SOLANA_RECEIVER,
    T0,
    USDC_POLYGON,
    USDC_SOLANA_MINT,
    WEBHOOK_SECRET,
    WEBHOOK_URL,
    evm_tx_hash,
    solana_signature,
)

HALF_ETH_WEI = 5 * 10**17


def eth_request(**overrides) -> PaymentRequest:
    fields = {
        "amount": Decimal("0.5"),
        "currency": "ETH",
        "chain": "ethereum",
        "webhook_url": WEBHOOK_URL,
        "customer_email": "buyer@example.com",
        "description": "Order #1042",
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


# =============================================================================
# CREATION
# =============================================================================

class TestCreatePayment:

    async def test_defaults(self, ledger):
        payment = await ledger.create_payment(eth_request())

        assert payment.id.startswith("pay_")
        assert payment.status == PaymentStatus.PENDING
        assert payment.receiving_address == EVM_RECEIVER
        assert payment.expires_at == T0 + timedelta(hours=24)
        assert payment.payment_url == f"http://localhost:3000/pay/{payment.id}"
        assert payment.qr_data == f"ethereum:{EVM_RECEIVER}@1?value={HALF_ETH_WEI}"

    async def test_fee_breakdown(self, ledger):
        payment = await ledger.create_payment(eth_request(amount=Decimal("100")))

        assert payment.fee.percentage == Decimal("2.5")
        assert payment.fee.amount == Decimal("2.5")
        assert payment.fee.net_amount == Decimal("97.5")

    async def test_round_trip(self, ledger):
        expires_at = T0 + timedelta(hours=2)
        created = await ledger.create_payment(
            eth_request(amount=Decimal("12.345678901234567891"), expires_at=expires_at)
        )

        fetched = await ledger.get_payment(created.id)

        assert fetched.amount == Decimal("12.345678901234567891")
        assert fetched.currency == "ETH"
        assert fetched.chain == "ethereum"
        assert fetched.expires_at == expires_at

    async def test_token_payment_uri(self, ledger):
        payment = await ledger.create_payment(
            PaymentRequest(
                amount=Decimal("10"),
                currency="usdc",
                chain="polygon",
                token_address=USDC_POLYGON,
                token_decimals=6,
            )
        )

        assert payment.currency == "USDC"
        assert payment.qr_data == (
            f"ethereum:{USDC_POLYGON}@137/transfer?address={EVM_RECEIVER}&uint256=10000000"
        )

    async def test_solana_pay_uri(self, ledger):
        payment = await ledger.create_payment(
            PaymentRequest(amount=Decimal("1.5"), currency="SOL", chain="solana")
        )

        assert payment.receiving_address == SOLANA_RECEIVER
        assert payment.qr_data == (
            f"solana:{SOLANA_RECEIVER}?amount=1.5&label=DhanSetu&message=DhanSetu%20Payment"
        )

    async def test_unsupported_chain(self, ledger):
        with pytest.raises(UnsupportedChainError):
            await ledger.create_payment(eth_request(chain="avalanche"))

    async def test_no_receiving_address(self, ledger, settings):
        settings.RECEIVING_ADDRESSES = {"solana": SOLANA_RECEIVER}
        with pytest.raises(UnsupportedChainError):
            await ledger.create_payment(eth_request())

    @pytest.mark.parametrize("amount", ["0", "-3"])
    async def test_rejects_non_positive_amount(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.create_payment(eth_request(amount=Decimal(amount)))

    async def test_rejects_past_expiry(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_payment(eth_request(expires_at=T0 - timedelta(minutes=1)))

    async def test_token_currency_requires_contract(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_payment(eth_request(currency="USDT"))

    async def test_merchant_receiving_address(self, services, ledger):
        merchant, _ = await services.merchants.register_merchant(
            "Acme", receiving_addresses={"ethereum": "0x" + "2" * 40}
        )
        payment = await ledger.create_payment(eth_request(merchant_id=merchant.id))

        assert payment.receiving_address == "0x" + "2" * 40

    async def test_created_webhook(self, services, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        await services.notifier.drain()

        [request] = webhook_sink.requests
        body = webhook_sink.payloads[0]
        assert body["event"] == "payment.created"
        assert body["object"] == "payment"
        assert body["id"] == payment.id
        assert body["data"]["payment"]["amount"] == "0.5"
        assert request.headers[SIGNATURE_HEADER] == create_hmac_signature(request.content, WEBHOOK_SECRET)


# =============================================================================
# READS
# =============================================================================

class TestReads:

    async def test_unknown_payment(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.get_payment("pay_missing")

    async def test_expired_on_read(self, services, ledger, clock, webhook_sink):
        payment = await ledger.create_payment(eth_request())

        clock.advance(hours=24)
        fetched = await ledger.get_payment(payment.id)
        await services.notifier.drain()

        assert fetched.status == PaymentStatus.EXPIRED
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.EXPIRED
        assert webhook_sink.events.count("payment.expired") == 1

    async def test_list_newest_first_with_filters(self, ledger, clock):
        first = await ledger.create_payment(eth_request())
        clock.advance(minutes=1)
        second = await ledger.create_payment(
            PaymentRequest(amount=Decimal("2"), currency="SOL", chain="solana")
        )
        clock.advance(minutes=1)
        third = await ledger.create_payment(eth_request())
        await ledger.mark_failed(third.id, "customer abandoned checkout")

        assert [p.id for p in await ledger.list_payments()] == [third.id, second.id, first.id]
        assert [p.id for p in await ledger.list_payments(chain="ethereum")] == [third.id, first.id]
        assert [p.id for p in await ledger.list_payments(status=PaymentStatus.PENDING)] == [second.id, first.id]
        assert [p.id for p in await ledger.list_payments(limit=1, offset=1)] == [second.id]

    async def test_list_applies_expiry(self, ledger, clock):
        await ledger.create_payment(eth_request())
        clock.advance(days=2)

        assert await ledger.list_payments(status=PaymentStatus.PENDING) == []
        assert len(await ledger.list_payments(status=PaymentStatus.EXPIRED)) == 1

    async def test_search(self, ledger):
        payment = await ledger.create_payment(eth_request(customer_email="Alice@Example.com"))
        await ledger.create_payment(eth_request(customer_email="bob@example.com"))

        assert [p.id for p in await ledger.search_payments("alice@")] == [payment.id]
        assert [p.id for p in await ledger.search_payments(payment.id)] == [payment.id]
        assert await ledger.search_payments("   ") == []

    async def test_stats(self, ledger, evm_node):
        paid = await ledger.create_payment(eth_request())
        await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)
        await ledger.validate_payment(paid.id, evm_tx_hash(1))

        stats = await ledger.get_stats()

        assert stats["total_payments"] == 2
        assert stats["confirmed_payments"] == 1
        assert stats["pending_payments"] == 1
        assert stats["confirmed_volume"] == {"ETH": "0.5"}


# =============================================================================
# SETTLEMENT
# =============================================================================

class TestValidatePayment:

    async def test_native_transfer_confirms(self, ledger, evm_node, clock):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)
        clock.advance(minutes=5)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))

        confirmed = await ledger.get_payment(payment.id)
        assert confirmed.status == PaymentStatus.CONFIRMED
        assert confirmed.transaction_hash == evm_tx_hash(1)
        assert confirmed.confirmed_at == T0 + timedelta(minutes=5)
        assert confirmed.customer_address is not None

    async def test_overpayment_accepted(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI + 1)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))

    async def test_underpayment_rejected(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI - 1)

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING

    async def test_reverted_never_counts(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI * 2, success=False)

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING

    async def test_transfer_to_other_address(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), "0x" + "9" * 40, HALF_ETH_WEI)

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))

    async def test_unmined_transaction(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(7))
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING

    async def test_rpc_failure_is_not_success(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)
        evm_node.fail_status = 503

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.PENDING

        # Caller may retry once the node recovers
        evm_node.fail_status = None
        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))

    async def test_malformed_hash(self, ledger, evm_node):
        payment = await ledger.create_payment(eth_request())

        assert not await ledger.validate_payment(payment.id, "0x1234")
        assert evm_node.calls == []

    async def test_missing_payment(self, ledger):
        assert not await ledger.validate_payment("pay_missing", evm_tx_hash(1))

    async def test_idempotent_single_webhook(self, services, ledger, evm_node, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))
        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))
        await services.notifier.drain()

        assert webhook_sink.events.count("payment.completed") == 1
        confirmed = await ledger.get_payment(payment.id)
        assert confirmed.status == PaymentStatus.CONFIRMED
        assert confirmed.webhook_sent
        assert confirmed.webhook_attempts == 2

    async def test_concurrent_validation_single_winner(self, services, ledger, evm_node, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)

        results = await asyncio.gather(
            *(ledger.validate_payment(payment.id, evm_tx_hash(1)) for _ in range(5))
        )
        await services.notifier.drain()

        assert sorted(results) == [False, False, False, False, True]
        assert webhook_sink.events.count("payment.completed") == 1

    async def test_hash_cannot_settle_two_payments(self, ledger, evm_node):
        first = await ledger.create_payment(eth_request())
        second = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)

        assert await ledger.validate_payment(first.id, evm_tx_hash(1))
        assert not await ledger.validate_payment(second.id, evm_tx_hash(1))

    async def test_expired_payment_not_confirmed(self, ledger, evm_node, clock):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)
        clock.advance(hours=25)

        assert not await ledger.validate_payment(payment.id, evm_tx_hash(1))
        assert (await ledger.get_payment(payment.id)).status == PaymentStatus.EXPIRED

    async def test_erc20_transfer(self, ledger, evm_node):
        payment = await ledger.create_payment(
            PaymentRequest(
                amount=Decimal("25.5"),
                currency="USDC",
                chain="polygon",
                token_address=USDC_POLYGON,
            )
        )
        evm_node.add_token_transfer(evm_tx_hash(2), USDC_POLYGON, EVM_RECEIVER, 25_500_000)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(2))

    async def test_solana_native_transfer(self, ledger, solana_node):
        payment = await ledger.create_payment(
            PaymentRequest(amount=Decimal("1.5"), currency="SOL", chain="solana")
        )
        solana_node.add_native_transfer(solana_signature(1), SOLANA_RECEIVER, 1_500_000_000)

        assert await ledger.validate_payment(payment.id, solana_signature(1))
        assert (await ledger.get_payment(payment.id)).customer_address is not None

    async def test_solana_token_transfer(self, ledger, solana_node):
        payment = await ledger.create_payment(
            PaymentRequest(
                amount=Decimal("20"),
                currency="USDC",
                chain="solana",
                token_address=USDC_SOLANA_MINT,
            )
        )
        solana_node.add_token_transfer(solana_signature(2), USDC_SOLANA_MINT, SOLANA_RECEIVER, 19_999_999)

        assert not await ledger.validate_payment(payment.id, solana_signature(2))

    async def test_listener_failure_does_not_block_confirmation(self, ledger, evm_node):
        async def broken_listener(payment):
            raise RuntimeError("listener bug")

        ledger.add_listener(broken_listener)
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))


class TestFailAndExpire:

    async def test_mark_failed(self, services, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request())

        failed = await ledger.mark_failed(payment.id, "customer abandoned checkout")
        await services.notifier.drain()

        assert failed.status == PaymentStatus.FAILED
        assert failed.failure_reason == "customer abandoned checkout"
        assert "payment.failed" in webhook_sink.events
        with pytest.raises(ConflictError):
            await ledger.mark_failed(payment.id, "again")

    async def test_mark_failed_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.mark_failed("pay_missing", "nope")

    async def test_expire_stale_payments(self, ledger, clock):
        stale = await ledger.create_payment(eth_request())
        fresh = await ledger.create_payment(eth_request(expires_at=T0 + timedelta(days=3)))

        clock.advance(days=1)
        assert await ledger.expire_stale_payments() == 1
        assert await ledger.expire_stale_payments() == 0

        assert (await ledger.get_payment(stale.id)).status == PaymentStatus.EXPIRED
        assert (await ledger.get_payment(fresh.id)).status == PaymentStatus.PENDING

    async def test_webhook_failure_keeps_state(self, services, ledger, evm_node, webhook_sink):
        webhook_sink.statuses = [500] * 10
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)

        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))
        await services.notifier.drain()

        confirmed = await ledger.get_payment(payment.id)
        assert confirmed.status == PaymentStatus.CONFIRMED
        assert not confirmed.webhook_sent
        assert confirmed.webhook_attempts == 6

    async def test_malformed_merchant_url_is_recorded(self, services, ledger, webhook_sink):
        merchant, _ = await services.merchants.register_merchant("Broken Bakery", webhook_url="http://[::1")

        payment = await ledger.create_payment(eth_request(merchant_id=merchant.id, webhook_url=None))
        await services.notifier.drain()

        recorded = await ledger.get_payment(payment.id)
        assert recorded.status == PaymentStatus.PENDING
        assert not recorded.webhook_sent
        assert recorded.webhook_attempts == 1
        assert webhook_sink.requests == []


class TestResendWebhook:

    async def test_defaults_to_current_status(self, services, ledger, evm_node, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        evm_node.add_native_transfer(evm_tx_hash(1), EVM_RECEIVER, HALF_ETH_WEI)
        assert await ledger.validate_payment(payment.id, evm_tx_hash(1))
        await services.notifier.drain()

        result = await ledger.resend_webhook(payment.id)

        assert result.success
        assert webhook_sink.events == ["payment.created", "payment.completed", "payment.completed"]
        assert len(webhook_sink.deliveries("payment.completed")) == 2
        assert (await ledger.get_payment(payment.id)).webhook_attempts == 3

    async def test_explicit_event(self, services, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        await services.notifier.drain()

        await ledger.resend_webhook(payment.id, "payment.created")

        assert webhook_sink.events == ["payment.created", "payment.created"]
        assert webhook_sink.payloads[-1]["data"]["payment"]["id"] == payment.id

    async def test_failure_is_recorded(self, services, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request())
        await services.notifier.drain()
        webhook_sink.statuses = [500] * 10

        result = await ledger.resend_webhook(payment.id)

        assert not result.success
        assert result.attempts == 3
        assert (await ledger.get_payment(payment.id)).webhook_attempts == 4

    async def test_rejects_other_events(self, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request())

        with pytest.raises(ValidationError):
            await ledger.resend_webhook(payment.id, "subscription.created")

    async def test_requires_endpoint(self, ledger, webhook_sink):
        payment = await ledger.create_payment(eth_request(webhook_url=None))

        with pytest.raises(ValidationError):
            await ledger.resend_webhook(payment.id)
        assert webhook_sink.requests == []

    async def test_unknown_payment(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.resend_webhook("pay_missing")


class TestCheckTransfer:

    async def test_policy(self, ledger):
        payment = await ledger.create_payment(eth_request())

        def transfer(amount, success=True):
            return TransferDetails(
                tx_hash=evm_tx_hash(1), success=success, recipient=EVM_RECEIVER, amount=Decimal(amount)
            )

        assert not check_transfer(payment, None).valid
        assert check_transfer(payment, transfer("0.5")).valid
        assert not check_transfer(payment, transfer("0.5", success=False)).valid
        result = check_transfer(payment, transfer("0.4"))
        assert not result.valid
        assert result.amount_received == Decimal("0.4")
