"""
EVM chain gateway (Ethereum, Polygon, BSC, Arbitrum, Optimism).

Speaks raw eth_* JSON-RPC: native values are 18-decimal wei, ERC-20 amounts
are read from Transfer logs and scaled by the token's decimals().
"""

import re
from decimal import Decimal
from typing import Dict, Optional

from core.amounts import from_base_units, to_base_units

from .base import ChainGateway, GasEstimate, TokenInfo, TransactionStatus, TransferDetails, TxState

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
BALANCE_OF_SELECTOR = "0x70a08231"
DECIMALS_SELECTOR = "0x313ce567"
NAME_SELECTOR = "0x06fdde03"
SYMBOL_SELECTOR = "0x95d89b41"


def _hex_to_int(value: Optional[str]) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


def _topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def encode_address_arg(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def decode_abi_string(value: Optional[str]) -> Optional[str]:
    """Decode an ABI string return; older tokens return a bare bytes32 instead."""
    raw = bytes.fromhex(value[2:]) if value and value != "0x" else b""
    if len(raw) == 32:
        return raw.rstrip(b"\0").decode("utf-8", errors="replace") or None
    if len(raw) < 64:
        return None
    offset = int.from_bytes(raw[:32], "big")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    return raw[offset + 32:offset + 32 + length].decode("utf-8", errors="replace")


class EvmGateway(ChainGateway):
    """Gateway for account-model EVM chains."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._token_decimals: Dict[str, int] = {}

    def is_valid_address(self, address: str) -> bool:
        return bool(address) and bool(ADDRESS_RE.match(address))

    def is_valid_transaction_hash(self, tx_hash: str) -> bool:
        return bool(tx_hash) and bool(TX_HASH_RE.match(tx_hash))

    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus:
        receipt = await self.rpc("eth_getTransactionReceipt", [tx_hash])
        if not receipt or not receipt.get("blockNumber"):
            return TransactionStatus(status=TxState.PENDING)

        block_number = _hex_to_int(receipt["blockNumber"])
        current_block = _hex_to_int(await self.rpc("eth_blockNumber"))
        confirmations = max(current_block - block_number + 1, 1)

        status = TxState.CONFIRMED if _hex_to_int(receipt.get("status")) == 1 else TxState.FAILED
        return TransactionStatus(
            status=status,
            confirmations=confirmations,
            block_number=block_number,
        )

    async def token_decimals(self, token_address: str) -> int:
        key = token_address.lower()
        if key not in self._token_decimals:
            result = await self.rpc("eth_call", [{"to": token_address, "data": DECIMALS_SELECTOR}, "latest"])
            self._token_decimals[key] = _hex_to_int(result)
        return self._token_decimals[key]

    async def get_token_info(self, token_address: str) -> Optional[TokenInfo]:
        async def call(selector: str) -> Optional[str]:
            return await self.rpc("eth_call", [{"to": token_address, "data": selector}, "latest"])

        raw_decimals = await call(DECIMALS_SELECTOR)
        if not raw_decimals or raw_decimals == "0x":
            return None
        decimals = _hex_to_int(raw_decimals)
        self._token_decimals[token_address.lower()] = decimals

        return TokenInfo(
            chain=self.chain,
            address=token_address,
            decimals=decimals,
            name=decode_abi_string(await call(NAME_SELECTOR)),
            symbol=decode_abi_string(await call(SYMBOL_SELECTOR)),
        )

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> Decimal:
        if not token_address:
            wei = _hex_to_int(await self.rpc("eth_getBalance", [address, "latest"]))
            return from_base_units(wei, self.config.native_decimals)

        data = BALANCE_OF_SELECTOR + encode_address_arg(address)
        raw = _hex_to_int(await self.rpc("eth_call", [{"to": token_address, "data": data}, "latest"]))
        decimals = await self.token_decimals(token_address)
        return from_base_units(raw, decimals)

    async def get_gas_estimate(
        self, to: str, value: Decimal = Decimal(0), data: str = "0x"
    ) -> GasEstimate:
        tx = {
            "to": to,
            "value": hex(to_base_units(value, self.config.native_decimals)),
            "data": data or "0x",
        }
        gas_limit = _hex_to_int(await self.rpc("eth_estimateGas", [tx]))
        gas_price_wei = _hex_to_int(await self.rpc("eth_gasPrice"))

        return GasEstimate(
            chain=self.chain,
            gas_limit=gas_limit,
            gas_price=from_base_units(gas_price_wei, 9),  # gwei
            estimated_fee=from_base_units(gas_limit * gas_price_wei, self.config.native_decimals),
            fee_currency=self.config.native_symbol,
        )

    async def get_transfer(
        self, tx_hash: str, recipient: str, token_address: Optional[str] = None
    ) -> Optional[TransferDetails]:
        receipt = await self.rpc("eth_getTransactionReceipt", [tx_hash])
        if not receipt or not receipt.get("blockNumber"):
            return None

        success = _hex_to_int(receipt.get("status")) == 1
        recipient_lc = recipient.lower()

        if not token_address:
            tx = await self.rpc("eth_getTransactionByHash", [tx_hash])
            if not tx:
                return None
            to_address = (tx.get("to") or "").lower()
            wei = _hex_to_int(tx.get("value")) if to_address == recipient_lc else 0
            return TransferDetails(
                tx_hash=tx_hash,
                success=success,
                sender=tx.get("from"),
                recipient=recipient,
                amount=from_base_units(wei, self.config.native_decimals),
            )

        token_lc = token_address.lower()
        units = 0
        sender = None
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if (
                (log.get("address") or "").lower() != token_lc
                or len(topics) < 3
                or topics[0].lower() != TRANSFER_TOPIC
                or _topic_to_address(topics[2]) != recipient_lc
            ):
                continue
            units += _hex_to_int(log.get("data"))
            sender = sender or _topic_to_address(topics[1])

        decimals = await self.token_decimals(token_address) if units else 0
        return TransferDetails(
            tx_hash=tx_hash,
            success=success,
            sender=sender,
            recipient=recipient,
            amount=from_base_units(units, decimals),
            token_address=token_address,
        )
