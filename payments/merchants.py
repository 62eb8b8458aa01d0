"""
Merchant directory: webhook endpoints, webhook secrets and receiving
addresses. Webhook secrets are only ever stored encrypted.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from core.crypto import SensitiveDataCipher, generate_id, generate_webhook_secret
from core.errors import NotFoundError, ValidationError
from core.repository import Repository

from .models import Merchant

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MerchantDirectory:
    def __init__(
        self,
        repository: Repository,
        cipher: SensitiveDataCipher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.cipher = cipher
        self.clock = clock

    async def register_merchant(
        self,
        name: str,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        receiving_addresses: Optional[Dict[str, str]] = None,
    ) -> Tuple[Merchant, str]:
        """Create a merchant. Returns the merchant and its plaintext webhook secret."""
        if not name or not name.strip():
            raise ValidationError("Merchant name is required")

        secret = webhook_secret or generate_webhook_secret()
        now = self.clock()
        merchant = Merchant(
            id=generate_id("mer"),
            name=name.strip(),
            webhook_url=webhook_url,
            webhook_secret_encrypted=self.cipher.encrypt(secret),
            receiving_addresses=dict(receiving_addresses or {}),
            created_at=now,
            updated_at=now,
        )
        await self.repository.create(merchant)
        logger.info(f"Registered merchant {merchant.id}")
        return merchant, secret

    async def get_merchant(self, merchant_id: str) -> Merchant:
        merchant = await self.repository.get(merchant_id)
        if merchant is None:
            raise NotFoundError(f"Merchant {merchant_id} not found")
        return merchant

    async def update_webhook(
        self,
        merchant_id: str,
        webhook_url: Optional[str],
        rotate_secret: bool = False,
    ) -> Tuple[Merchant, Optional[str]]:
        merchant = await self.get_merchant(merchant_id)
        merchant.webhook_url = webhook_url
        new_secret = None
        if rotate_secret:
            new_secret = generate_webhook_secret()
            merchant.webhook_secret_encrypted = self.cipher.encrypt(new_secret)
        merchant.updated_at = self.clock()
        await self.repository.update(merchant)
        return merchant, new_secret

    async def get_webhook_secret(self, merchant_id: str) -> Optional[str]:
        merchant = await self.get_merchant(merchant_id)
        if not merchant.webhook_secret_encrypted:
            return None
        return self.cipher.decrypt(merchant.webhook_secret_encrypted)

    async def get_receiving_address(self, merchant_id: str, chain: str) -> Optional[str]:
        merchant = await self.get_merchant(merchant_id)
        return merchant.receiving_addresses.get(chain)

    async def resolve_webhook_target(
        self,
        merchant_id: Optional[str],
        override_url: Optional[str] = None,
        default_secret: str = "",
    ) -> Tuple[Optional[str], str]:
        """Endpoint and signing secret for an event owned by ``merchant_id``."""
        url, secret = override_url, default_secret
        if not merchant_id:
            return url, secret

        merchant = await self.repository.get(merchant_id)
        if merchant is None:
            logger.warning(f"Webhook owner {merchant_id} is not a known merchant")
            return url, secret

        url = url or merchant.webhook_url
        if merchant.webhook_secret_encrypted:
            secret = self.cipher.decrypt(merchant.webhook_secret_encrypted)
        return url, secret
