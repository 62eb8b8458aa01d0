"""
Wallet Service - custodial EVM and Solana wallets behind pluggable signers.
"""
from .models import KeyPair, Wallet, WalletBackup, WalletKind
from .service import WalletService, default_signers
from .signers import EvmSigner, SolanaSigner, WalletSigner

__all__ = [
    "KeyPair",
    "Wallet",
    "WalletBackup",
    "WalletKind",
    "WalletService",
    "default_signers",
    "EvmSigner",
    "SolanaSigner",
    "WalletSigner",
]
