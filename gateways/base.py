"""
Chain Gateway interface.

One implementation per chain family, selected once from configuration by
the ChainRegistry. Every RPC call carries an explicit timeout; transport
failures and JSON-RPC errors surface as ExternalServiceError (retryable),
never as "transaction not found".
"""

import itertools
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel

from core.circuit_breaker import CircuitBreaker
from core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class ChainFamily(str, Enum):
    EVM = "evm"
    SOLANA = "solana"


class ChainConfig(BaseModel):
    key: str
    name: str
    family: ChainFamily
    rpc_url: str = ""
    chain_id: Optional[int] = None
    native_symbol: str
    native_decimals: int
    block_explorer: Optional[str] = None


class TxState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionStatus(BaseModel):
    status: TxState
    confirmations: int = 0
    block_number: Optional[int] = None


class GasEstimate(BaseModel):
    chain: str
    gas_limit: Optional[int] = None
    gas_price: Optional[Decimal] = None
    estimated_fee: Decimal
    fee_currency: str


class TokenInfo(BaseModel):
    chain: str
    address: str
    decimals: int
    name: Optional[str] = None
    symbol: Optional[str] = None


class TransferDetails(BaseModel):
    """Value moved to ``recipient`` by one transaction."""

    tx_hash: str
    success: bool
    sender: Optional[str] = None
    recipient: str
    amount: Decimal
    token_address: Optional[str] = None


class ChainGateway(ABC):
    """Blockchain RPC operations for one configured chain."""

    def __init__(
        self,
        config: ChainConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._breaker = breaker or CircuitBreaker(f"rpc:{config.key}")
        self._ids = itertools.count(1)

    @property
    def chain(self) -> str:
        return self.config.key

    async def _post(self, payload: dict) -> Any:
        try:
            response = await self._client.post(self.config.rpc_url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                f"{self.chain} RPC timed out after {self.timeout}s", service=self.chain
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"{self.chain} RPC unreachable: {e}", service=self.chain) from e

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"{self.chain} RPC returned HTTP {response.status_code}",
                service=self.chain,
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"{self.chain} RPC returned invalid JSON", service=self.chain) from e

        if body.get("error"):
            raise ExternalServiceError(
                f"{self.chain} RPC error: {body['error']}",
                service=self.chain,
                details={"rpc_error": body["error"]},
            )
        return body.get("result")

    async def rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Perform one JSON-RPC call through the circuit breaker."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC %s %s", self.chain, method)
        return await self._breaker.call(self._post, payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        ...

    @abstractmethod
    def is_valid_transaction_hash(self, tx_hash: str) -> bool:
        ...

    @abstractmethod
    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus:
        ...

    @abstractmethod
    async def get_balance(self, address: str, token_address: Optional[str] = None) -> Decimal:
        ...

    @abstractmethod
    async def get_gas_estimate(
        self, to: str, value: Decimal = Decimal(0), data: str = "0x"
    ) -> GasEstimate:
        ...

    @abstractmethod
    async def get_token_info(self, token_address: str) -> Optional[TokenInfo]:
        """Metadata of a token contract or mint; None if the address holds no token."""

    @abstractmethod
    async def get_transfer(
        self, tx_hash: str, recipient: str, token_address: Optional[str] = None
    ) -> Optional[TransferDetails]:
        """Amount ``recipient`` received in ``tx_hash``; None if not yet mined."""
