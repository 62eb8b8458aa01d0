"""
Service wiring: builds the gateway services from settings.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional

import httpx
from fastapi import Request

from core.config import Settings
from core.crypto import SensitiveDataCipher
from core.repository import Storage
from core.scheduler import Scheduler
from gateways.base import ChainFamily
from gateways.registry import ChainRegistry
from payments.ledger import PaymentLedger, utcnow
from payments.merchants import MerchantDirectory
from payments.webhooks import NotificationDispatcher
from subscriptions.engine import SubscriptionEngine
from subscriptions.jobs import register_jobs
from wallets.service import WalletService
from wallets.signers import WalletSigner

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    settings: Settings
    storage: Storage
    registry: ChainRegistry
    notifier: NotificationDispatcher
    merchants: MerchantDirectory
    ledger: PaymentLedger
    engine: SubscriptionEngine
    wallets: WalletService
    scheduler: Scheduler = field(default_factory=Scheduler)

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.notifier.aclose()
        await self.registry.aclose()


def build_services(
    settings: Settings,
    storage: Optional[Storage] = None,
    rpc_client: Optional[httpx.AsyncClient] = None,
    webhook_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], datetime] = utcnow,
    signers: Optional[Mapping[ChainFamily, WalletSigner]] = None,
) -> GatewayServices:
    storage = storage or Storage.in_memory()
    registry = ChainRegistry(settings, http_client=rpc_client)
    notifier = NotificationDispatcher(
        http_client=webhook_client,
        max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
        retry_delay=settings.WEBHOOK_RETRY_DELAY_SECONDS,
        timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
    )
    cipher = SensitiveDataCipher(settings.ENCRYPTION_KEY, livemode=settings.livemode)
    merchants = MerchantDirectory(storage.merchants, cipher, clock=clock)
    ledger = PaymentLedger(storage, registry, notifier, merchants, settings, clock=clock)
    engine = SubscriptionEngine(storage, ledger, notifier, merchants, settings, clock=clock)
    wallets = WalletService(storage.wallets, cipher, registry, settings, signers=signers, clock=clock)

    services = GatewayServices(
        settings=settings,
        storage=storage,
        registry=registry,
        notifier=notifier,
        merchants=merchants,
        ledger=ledger,
        engine=engine,
        wallets=wallets,
    )
    register_jobs(services.scheduler, engine, ledger, settings)
    logger.info(f"Services ready for chains: {', '.join(registry.supported_chains())}")
    return services


def get_services(request: Request) -> GatewayServices:
    """FastAPI dependency returning the services bound to the running app."""
    return request.app.state.services
