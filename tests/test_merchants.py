"""
Tests for the merchant directory: registration, encrypted webhook secrets and
webhook target resolution.
"""

import pytest

from core.errors import NotFoundError, ValidationError

from .conftest import EVM_RECEIVER, WEBHOOK_SECRET, WEBHOOK_URL


@pytest.fixture
def merchants(services):
    return services.merchants


class TestRegisterMerchant:

    async def test_generates_secret_when_missing(self, merchants):
        merchant, secret = await merchants.register_merchant("Acme Coffee")

        assert merchant.id.startswith("mer_")
        assert len(secret) == 64
        assert await merchants.get_webhook_secret(merchant.id) == secret

    async def test_secret_stored_encrypted(self, merchants, services):
        merchant, secret = await merchants.register_merchant("Acme Coffee", WEBHOOK_URL, "whsec_plain")

        stored = await services.storage.merchants.get(merchant.id)

        assert stored.webhook_secret_encrypted != "whsec_plain"
        assert "whsec_plain" not in stored.model_dump_json()
        assert secret == "whsec_plain"

    async def test_name_required(self, merchants):
        with pytest.raises(ValidationError):
            await merchants.register_merchant("   ")

    async def test_receiving_addresses(self, merchants):
        merchant, _ = await merchants.register_merchant(
            "Acme Coffee", receiving_addresses={"polygon": EVM_RECEIVER}
        )

        assert await merchants.get_receiving_address(merchant.id, "polygon") == EVM_RECEIVER
        assert await merchants.get_receiving_address(merchant.id, "solana") is None

    async def test_unknown_merchant(self, merchants):
        with pytest.raises(NotFoundError):
            await merchants.get_merchant("mer_missing")


class TestUpdateWebhook:

    async def test_change_url_keeps_secret(self, merchants):
        merchant, secret = await merchants.register_merchant("Acme Coffee", WEBHOOK_URL)

        updated, new_secret = await merchants.update_webhook(merchant.id, "https://new.example.com/hook")

        assert updated.webhook_url == "https://new.example.com/hook"
        assert new_secret is None
        assert await merchants.get_webhook_secret(merchant.id) == secret

    async def test_rotate_secret(self, merchants, clock):
        merchant, secret = await merchants.register_merchant("Acme Coffee", WEBHOOK_URL)
        clock.advance(minutes=5)

        updated, new_secret = await merchants.update_webhook(merchant.id, WEBHOOK_URL, rotate_secret=True)

        assert new_secret and new_secret != secret
        assert await merchants.get_webhook_secret(merchant.id) == new_secret
        assert updated.updated_at > merchant.created_at


class TestResolveWebhookTarget:

    async def test_no_owner_uses_defaults(self, merchants):
        assert await merchants.resolve_webhook_target(None, WEBHOOK_URL, WEBHOOK_SECRET) == (
            WEBHOOK_URL,
            WEBHOOK_SECRET,
        )

    async def test_merchant_endpoint_and_secret(self, merchants):
        merchant, secret = await merchants.register_merchant("Acme Coffee", WEBHOOK_URL, "whsec_merchant")

        url, signing_secret = await merchants.resolve_webhook_target(merchant.id, None, WEBHOOK_SECRET)

        assert url == WEBHOOK_URL
        assert signing_secret == "whsec_merchant"

    async def test_override_url_wins(self, merchants):
        merchant, _ = await merchants.register_merchant("Acme Coffee", WEBHOOK_URL, "whsec_merchant")

        url, signing_secret = await merchants.resolve_webhook_target(
            merchant.id, "https://payment.example.com/hook", WEBHOOK_SECRET
        )

        assert url == "https://payment.example.com/hook"
        assert signing_secret == "whsec_merchant"

    async def test_unknown_owner_falls_back(self, merchants):
        url, signing_secret = await merchants.resolve_webhook_target("mer_gone", None, WEBHOOK_SECRET)

        assert url is None
        assert signing_secret == WEBHOOK_SECRET
