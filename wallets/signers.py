"""
Wallet signers: key generation, key import and message signing per chain
family.

The wallet service never handles curve arithmetic itself; it stores what a
signer returns and hands the decrypted key back to the same signer to sign.
"""

import json
from abc import ABC, abstractmethod

import base58
from eth_account import Account
from eth_account.messages import encode_defunct
from solders.keypair import Keypair

from core.errors import ValidationError

from .models import KeyPair


def _prefixed(hex_text: str) -> str:
    return hex_text if hex_text.startswith("0x") else "0x" + hex_text


class WalletSigner(ABC):

    @abstractmethod
    def generate(self) -> KeyPair:
        ...

    @abstractmethod
    def from_private_key(self, private_key: str) -> KeyPair:
        """Rebuild the key pair; raises ValidationError for malformed keys."""

    @abstractmethod
    def sign_message(self, private_key: str, message: str) -> str:
        ...


class EvmSigner(WalletSigner):
    """secp256k1 accounts; messages are signed EIP-191 style (personal_sign)."""

    def generate(self) -> KeyPair:
        account = Account.create()
        return KeyPair(address=account.address, private_key=_prefixed(account.key.hex()))

    def from_private_key(self, private_key: str) -> KeyPair:
        try:
            account = Account.from_key(private_key)
        except Exception as e:
            raise ValidationError("Invalid EVM private key") from e
        return KeyPair(address=account.address, private_key=_prefixed(account.key.hex()))

    def sign_message(self, private_key: str, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
        return _prefixed(signed.signature.hex())


class SolanaSigner(WalletSigner):
    """Ed25519 keypairs. Private keys travel as base58 of the 64-byte keypair."""

    def generate(self) -> KeyPair:
        return self._pair(Keypair())

    def from_private_key(self, private_key: str) -> KeyPair:
        return self._pair(self._load(private_key))

    def sign_message(self, private_key: str, message: str) -> str:
        return str(self._load(private_key).sign_message(message.encode("utf-8")))

    @staticmethod
    def _load(private_key: str) -> Keypair:
        text = (private_key or "").strip()
        try:
            # Solana CLI keyfiles hold a JSON array of the 64 bytes
            raw = bytes(json.loads(text)) if text.startswith("[") else base58.b58decode(text)
        except (TypeError, ValueError) as e:
            raise ValidationError("Invalid Solana private key") from e
        if len(raw) != 64:
            raise ValidationError("Solana private key must be 64 bytes")
        try:
            return Keypair.from_bytes(raw)
        except ValueError as e:
            raise ValidationError("Invalid Solana private key") from e

    @staticmethod
    def _pair(keypair: Keypair) -> KeyPair:
        address = str(keypair.pubkey())
        return KeyPair(
            address=address,
            public_key=address,
            private_key=base58.b58encode(bytes(keypair)).decode("ascii"),
        )
