"""
Chain registry: the supported chain table and one gateway per chain.

The chain family decides the gateway implementation once, at construction,
so no operation has to branch on the chain name.
"""

import logging
from typing import Dict, List, Optional, Type

import httpx

from core.config import Settings
from core.errors import UnsupportedChainError, ValidationError

from .base import ChainConfig, ChainFamily, ChainGateway, TokenInfo
from .evm import EvmGateway
from .solana import SolanaGateway

logger = logging.getLogger(__name__)

SUPPORTED_CHAINS: Dict[str, ChainConfig] = {
    "ethereum": ChainConfig(
        key="ethereum", name="Ethereum", family=ChainFamily.EVM, chain_id=1,
        native_symbol="ETH", native_decimals=18, block_explorer="https://etherscan.io",
    ),
    "polygon": ChainConfig(
        key="polygon", name="Polygon", family=ChainFamily.EVM, chain_id=137,
        native_symbol="MATIC", native_decimals=18, block_explorer="https://polygonscan.com",
    ),
    "bsc": ChainConfig(
        key="bsc", name="BNB Smart Chain", family=ChainFamily.EVM, chain_id=56,
        native_symbol="BNB", native_decimals=18, block_explorer="https://bscscan.com",
    ),
    "arbitrum": ChainConfig(
        key="arbitrum", name="Arbitrum", family=ChainFamily.EVM, chain_id=42161,
        native_symbol="ETH", native_decimals=18, block_explorer="https://arbiscan.io",
    ),
    "optimism": ChainConfig(
        key="optimism", name="Optimism", family=ChainFamily.EVM, chain_id=10,
        native_symbol="ETH", native_decimals=18, block_explorer="https://optimistic.etherscan.io",
    ),
    "solana": ChainConfig(
        key="solana", name="Solana", family=ChainFamily.SOLANA,
        native_symbol="SOL", native_decimals=9, block_explorer="https://explorer.solana.com",
    ),
}

GATEWAY_CLASSES: Dict[ChainFamily, Type[ChainGateway]] = {
    ChainFamily.EVM: EvmGateway,
    ChainFamily.SOLANA: SolanaGateway,
}

# Stablecoins merchants can price in without looking the contract up first
KNOWN_TOKENS: Dict[str, List[TokenInfo]] = {
    "ethereum": [
        TokenInfo(chain="ethereum", address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
                  name="USD Coin", symbol="USDC", decimals=6),
        TokenInfo(chain="ethereum", address="0xdAC17F958D2ee523a2206206994597C13D831ec7",
                  name="Tether USD", symbol="USDT", decimals=6),
    ],
    "polygon": [
        TokenInfo(chain="polygon", address="0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
                  name="USD Coin (PoS)", symbol="USDC", decimals=6),
        TokenInfo(chain="polygon", address="0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
                  name="Tether USD (PoS)", symbol="USDT", decimals=6),
    ],
    "solana": [
        TokenInfo(chain="solana", address="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                  name="USD Coin", symbol="USDC", decimals=6),
        TokenInfo(chain="solana", address="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
                  name="Tether USD", symbol="USDT", decimals=6),
    ],
}


class ChainRegistry:
    """Holds the gateways for every chain that has an RPC URL configured."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        chains: Optional[Dict[str, ChainConfig]] = None,
    ):
        self._gateways: Dict[str, ChainGateway] = {}
        self._client = http_client or httpx.AsyncClient(timeout=settings.RPC_TIMEOUT_SECONDS)
        self._owns_client = http_client is None

        for key, template in (chains or SUPPORTED_CHAINS).items():
            rpc_url = settings.RPC_URLS.get(key)
            if not rpc_url:
                logger.info(f"No RPC URL configured for {key}; chain disabled")
                continue
            config = template.model_copy(update={"rpc_url": rpc_url})
            gateway_cls = GATEWAY_CLASSES[config.family]
            self._gateways[key] = gateway_cls(
                config,
                http_client=self._client,
                timeout=settings.RPC_TIMEOUT_SECONDS,
            )

    def get(self, chain: str) -> ChainGateway:
        gateway = self._gateways.get(chain)
        if gateway is None:
            raise UnsupportedChainError(f"Unsupported chain: {chain}", {"chain": chain})
        return gateway

    def supports(self, chain: str) -> bool:
        return chain in self._gateways

    def supported_chains(self) -> List[str]:
        return list(self._gateways)

    def get_config(self, chain: str) -> ChainConfig:
        return self.get(chain).config

    def is_valid_address(self, chain: str, address: str) -> bool:
        return self.get(chain).is_valid_address(address)

    def list_tokens(self, chain: str) -> List[TokenInfo]:
        self.get(chain)
        return [token.model_copy() for token in KNOWN_TOKENS.get(chain, [])]

    async def get_token_info(self, chain: str, token_address: str) -> Optional[TokenInfo]:
        gateway = self.get(chain)
        if not gateway.is_valid_address(token_address):
            raise ValidationError(f"Invalid {chain} token address: {token_address}")
        return await gateway.get_token_info(token_address)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
