"""
Data models for custodial wallets and their backups.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from gateways.base import ChainFamily


class WalletKind(str, Enum):
    GENERATED = "generated"
    IMPORTED = "imported"


class KeyPair(BaseModel):
    """Key material produced by a signer. Never persisted as-is."""

    address: str
    private_key: str
    public_key: Optional[str] = None


class Wallet(BaseModel):
    id: str
    name: str
    chain: str
    family: ChainFamily
    kind: WalletKind
    address: str
    public_key: Optional[str] = None
    private_key_encrypted: str
    created_at: datetime
    last_used_at: Optional[datetime] = None

    def to_view(self) -> dict:
        return self.model_dump(mode="json", exclude={"private_key_encrypted"})


class WalletBackup(BaseModel):
    """Private key sealed under the owner's passphrase; restorable anywhere."""

    wallet_id: str
    name: str
    chain: str
    address: str
    kdf: str = "pbkdf2-sha256"
    iterations: int
    salt: str
    ciphertext: str
    created_at: datetime
