"""
Chain Gateway - balance, transaction status, transfer verification and gas
estimation across EVM chains and Solana.
"""
from .base import (
    ChainConfig,
    ChainFamily,
    ChainGateway,
    GasEstimate,
    TokenInfo,
    TransactionStatus,
    TransferDetails,
    TxState,
)
from .evm import EvmGateway
from .registry import KNOWN_TOKENS, SUPPORTED_CHAINS, ChainRegistry
from .solana import SolanaGateway

__all__ = [
    "ChainConfig",
    "ChainFamily",
    "ChainGateway",
    "GasEstimate",
    "TokenInfo",
    "TransactionStatus",
    "TransferDetails",
    "TxState",
    "EvmGateway",
    "SolanaGateway",
    "KNOWN_TOKENS",
    "SUPPORTED_CHAINS",
    "ChainRegistry",
]
