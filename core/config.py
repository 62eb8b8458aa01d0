from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RPC_URLS: Dict[str, str] = {
    "ethereum": "https://eth.llamarpc.com",
    "polygon": "https://polygon-rpc.com",
    "bsc": "https://bsc-dataseed.binance.org",
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "optimism": "https://mainnet.optimism.io",
    "solana": "https://api.mainnet-beta.solana.com",
}

DEFAULT_RECEIVING_ADDRESSES: Dict[str, str] = {
    "ethereum": "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87",
    "polygon": "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87",
    "bsc": "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87",
    "arbitrum": "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87",
    "optimism": "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87",
    "solana": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
}


class Settings(BaseSettings):
    APP_NAME: str = "DhanSetu"
    ENVIRONMENT: str = "development"
    BASE_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Secrets
    WEBHOOK_SECRET: str = "dev-webhook-secret"
    ENCRYPTION_KEY: Optional[str] = None

    # Chains
    RPC_URLS: Dict[str, str] = DEFAULT_RPC_URLS
    RECEIVING_ADDRESSES: Dict[str, str] = DEFAULT_RECEIVING_ADDRESSES
    RPC_TIMEOUT_SECONDS: float = 10.0

    # Payments
    PAYMENT_EXPIRY_HOURS: int = 24
    FEE_PERCENTAGE: Decimal = Decimal("2.5")

    # Webhooks
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_RETRY_DELAY_SECONDS: float = 1.0
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # Billing
    BILLING_RETRY_DELAY_DAYS: int = 3
    MAX_FAILED_PAYMENT_ATTEMPTS: int = 3
    BILLING_SWEEP_INTERVAL_SECONDS: int = 3600
    TRIAL_SWEEP_INTERVAL_SECONDS: int = 86400
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 300

    # Custodial wallets
    WALLET_BACKUP_KDF_ITERATIONS: int = 480_000
    WALLET_BACKUP_MIN_PASSPHRASE: int = 12

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DHANSETU_",
        extra="ignore",
    )

    @property
    def livemode(self) -> bool:
        return self.ENVIRONMENT.lower() in ("production", "prod")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
