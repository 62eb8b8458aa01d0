"""
Wallet Service - custodial wallets held by the gateway.

Private keys are encrypted at rest with the gateway cipher and only
decrypted inside this module, to sign a message or to seal a backup under
the owner's passphrase. Key generation and signing are delegated to the
signer registered for the chain's family.
"""
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.config import Settings
from core.crypto import SensitiveDataCipher, generate_id, open_with_passphrase, seal_with_passphrase
from core.errors import ConflictError, NotFoundError, UnsupportedChainError, ValidationError
from core.locks import KeyedLock
from core.logging import log_action
from core.repository import Repository
from gateways.base import ChainFamily
from gateways.registry import ChainRegistry

from .models import KeyPair, Wallet, WalletBackup, WalletKind
from .signers import EvmSigner, SolanaSigner, WalletSigner

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_signers() -> Dict[ChainFamily, WalletSigner]:
    return {ChainFamily.EVM: EvmSigner(), ChainFamily.SOLANA: SolanaSigner()}


class WalletService:
    def __init__(
        self,
        repository: Repository,
        cipher: SensitiveDataCipher,
        registry: ChainRegistry,
        settings: Settings,
        signers: Optional[Mapping[ChainFamily, WalletSigner]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.cipher = cipher
        self.registry = registry
        self.settings = settings
        self.signers = dict(signers) if signers is not None else default_signers()
        self.clock = clock
        self._locks = KeyedLock()

    def _signer(self, chain: str) -> WalletSigner:
        config = self.registry.get_config(chain)
        signer = self.signers.get(config.family)
        if signer is None:
            raise UnsupportedChainError(f"Custodial wallets are not available on {chain}", {"chain": chain})
        return signer

    async def _store(self, name: str, chain: str, kind: WalletKind, keys: KeyPair) -> Wallet:
        if not name or not name.strip():
            raise ValidationError("Wallet name is required")

        async with self._locks.hold(f"{chain}:{keys.address.lower()}"):
            existing = await self.repository.list(
                lambda w: w.chain == chain and w.address.lower() == keys.address.lower()
            )
            if existing:
                raise ConflictError(
                    f"Wallet {keys.address} is already held on {chain}",
                    {"wallet_id": existing[0].id},
                )
            wallet = Wallet(
                id=generate_id("wallet"),
                name=name.strip(),
                chain=chain,
                family=self.registry.get_config(chain).family,
                kind=kind,
                address=keys.address,
                public_key=keys.public_key,
                private_key_encrypted=self.cipher.encrypt(keys.private_key),
                created_at=self.clock(),
            )
            await self.repository.create(wallet)

        log_action(
            f"wallet.{kind.value}",
            f"Holding {chain} wallet {wallet.address}",
            wallet_id=wallet.id,
            chain=chain,
        )
        return wallet

    async def generate_wallet(self, name: str, chain: str) -> Wallet:
        """Create a fresh key pair on ``chain`` and hold it."""
        return await self._store(name, chain, WalletKind.GENERATED, self._signer(chain).generate())

    async def import_wallet(self, name: str, chain: str, private_key: str) -> Wallet:
        """
        Take custody of an existing key.

        Raises:
            ValidationError: Malformed key or missing name
            ConflictError: The address is already held on this chain
        """
        keys = self._signer(chain).from_private_key(private_key)
        return await self._store(name, chain, WalletKind.IMPORTED, keys)

    async def get_wallet(self, wallet_id: str) -> Wallet:
        wallet = await self.repository.get(wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    async def list_wallets(self, chain: Optional[str] = None) -> List[Wallet]:
        wallets = await self.repository.list(lambda w: chain is None or w.chain == chain)
        wallets.sort(key=lambda w: w.created_at)
        return wallets

    async def remove_wallet(self, wallet_id: str) -> None:
        await self.get_wallet(wallet_id)
        await self.repository.delete(wallet_id)
        log_action("wallet.removed", f"Released wallet {wallet_id}", level="warning", wallet_id=wallet_id)

    async def sign_message(self, wallet_id: str, message: str) -> str:
        if not message:
            raise ValidationError("message is required")

        async with self._locks.hold(wallet_id):
            wallet = await self.get_wallet(wallet_id)
            private_key = self.cipher.decrypt(wallet.private_key_encrypted)
            signature = self._signer(wallet.chain).sign_message(private_key, message)
            wallet.last_used_at = self.clock()
            await self.repository.update(wallet)

        logger.info(f"Signed a {len(message)}-character message with wallet {wallet_id}")
        return signature

    async def backup_wallet(self, wallet_id: str, passphrase: str) -> WalletBackup:
        """Export the wallet's key sealed under ``passphrase``."""
        if len(passphrase or "") < self.settings.WALLET_BACKUP_MIN_PASSPHRASE:
            raise ValidationError(
                f"Backup passphrase must be at least {self.settings.WALLET_BACKUP_MIN_PASSPHRASE} characters"
            )
        wallet = await self.get_wallet(wallet_id)
        secret = json.dumps({
            "chain": wallet.chain,
            "address": wallet.address,
            "private_key": self.cipher.decrypt(wallet.private_key_encrypted),
        })
        iterations = self.settings.WALLET_BACKUP_KDF_ITERATIONS
        salt, ciphertext = seal_with_passphrase(secret, passphrase, iterations)

        log_action("wallet.backup", f"Exported backup of wallet {wallet_id}", level="warning", wallet_id=wallet_id)
        return WalletBackup(
            wallet_id=wallet.id,
            name=wallet.name,
            chain=wallet.chain,
            address=wallet.address,
            iterations=iterations,
            salt=salt,
            ciphertext=ciphertext,
            created_at=self.clock(),
        )

    async def restore_wallet(self, backup: WalletBackup, passphrase: str, name: Optional[str] = None) -> Wallet:
        """Import the key sealed in ``backup``; the address must match what was sealed."""
        secret = json.loads(open_with_passphrase(backup.ciphertext, backup.salt, passphrase, backup.iterations))
        keys = self._signer(secret["chain"]).from_private_key(secret["private_key"])
        if keys.address != secret["address"]:
            raise ValidationError("Backup key does not match its recorded address")
        return await self._store(name or backup.name, secret["chain"], WalletKind.IMPORTED, keys)

    async def get_balance(self, wallet_id: str, token_address: Optional[str] = None) -> Decimal:
        wallet = await self.get_wallet(wallet_id)
        return await self.registry.get(wallet.chain).get_balance(wallet.address, token_address)

    async def get_stats(self) -> Dict[str, Any]:
        wallets = await self.repository.list()
        by_chain: Dict[str, int] = {}
        by_kind = {kind.value: 0 for kind in WalletKind}
        for wallet in wallets:
            by_chain[wallet.chain] = by_chain.get(wallet.chain, 0) + 1
            by_kind[wallet.kind.value] += 1
        return {"total_wallets": len(wallets), "by_chain": by_chain, "by_kind": by_kind}
