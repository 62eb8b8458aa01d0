"""
Solana gateway.

Native amounts are lamports (9 decimals). SPL token amounts come from the
parsed pre/post token balances of a transaction.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.amounts import from_base_units

from .base import ChainGateway, GasEstimate, TokenInfo, TransactionStatus, TransferDetails, TxState

BASE58 = "1-9A-HJ-NP-Za-km-z"
ADDRESS_RE = re.compile(rf"^[{BASE58}]{{32,44}}$")
SIGNATURE_RE = re.compile(rf"^[{BASE58}]{{64,88}}$")

LAMPORTS_PER_SIGNATURE = 5000
# Solana reports confirmations as null once a block is rooted
FINALIZED_CONFIRMATIONS = 32


def _account_keys(transaction: Dict[str, Any]) -> List[str]:
    keys = transaction.get("transaction", {}).get("message", {}).get("accountKeys", [])
    return [key["pubkey"] if isinstance(key, dict) else key for key in keys]


def _token_units(balances: List[Dict[str, Any]], owner: str, mint: str) -> int:
    total = 0
    for balance in balances or []:
        if balance.get("owner") == owner and balance.get("mint") == mint:
            total += int(balance.get("uiTokenAmount", {}).get("amount", "0"))
    return total


def _token_decimals(balances: List[Dict[str, Any]], mint: str) -> int:
    for balance in balances or []:
        if balance.get("mint") == mint:
            return int(balance.get("uiTokenAmount", {}).get("decimals", 0))
    return 0


class SolanaGateway(ChainGateway):
    """Gateway for the Solana account model."""

    def is_valid_address(self, address: str) -> bool:
        return bool(address) and bool(ADDRESS_RE.match(address))

    def is_valid_transaction_hash(self, tx_hash: str) -> bool:
        return bool(tx_hash) and bool(SIGNATURE_RE.match(tx_hash))

    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus:
        result = await self.rpc(
            "getSignatureStatuses",
            [[tx_hash], {"searchTransactionHistory": True}],
        )
        value = (result or {}).get("value") or [None]
        status = value[0]
        if not status:
            return TransactionStatus(status=TxState.PENDING)

        if status.get("err"):
            return TransactionStatus(status=TxState.FAILED, block_number=status.get("slot"))

        if status.get("confirmationStatus") not in ("confirmed", "finalized"):
            return TransactionStatus(status=TxState.PENDING, block_number=status.get("slot"))

        confirmations = status.get("confirmations")
        return TransactionStatus(
            status=TxState.CONFIRMED,
            confirmations=FINALIZED_CONFIRMATIONS if confirmations is None else confirmations,
            block_number=status.get("slot"),
        )

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> Decimal:
        if not token_address:
            result = await self.rpc("getBalance", [address])
            return from_base_units(int((result or {}).get("value", 0)), self.config.native_decimals)

        result = await self.rpc(
            "getTokenAccountsByOwner",
            [address, {"mint": token_address}, {"encoding": "jsonParsed"}],
        )
        total = Decimal(0)
        for account in (result or {}).get("value", []):
            token_amount = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
                .get("tokenAmount", {})
            )
            total += from_base_units(int(token_amount.get("amount", "0")), int(token_amount.get("decimals", 0)))
        return total

    async def get_token_info(self, token_address: str) -> Optional[TokenInfo]:
        # Mint accounts carry decimals only; names live in off-chain metadata
        result = await self.rpc("getAccountInfo", [token_address, {"encoding": "jsonParsed"}])
        data = ((result or {}).get("value") or {}).get("data")
        parsed = data.get("parsed", {}) if isinstance(data, dict) else {}
        if parsed.get("type") != "mint":
            return None
        return TokenInfo(
            chain=self.chain,
            address=token_address,
            decimals=int(parsed.get("info", {}).get("decimals", 0)),
        )

    async def get_gas_estimate(
        self, to: str, value: Decimal = Decimal(0), data: str = "0x"
    ) -> GasEstimate:
        # Flat base fee per signature; a plain transfer has one signer
        return GasEstimate(
            chain=self.chain,
            estimated_fee=from_base_units(LAMPORTS_PER_SIGNATURE, self.config.native_decimals),
            fee_currency=self.config.native_symbol,
        )

    async def get_transfer(
        self, tx_hash: str, recipient: str, token_address: Optional[str] = None
    ) -> Optional[TransferDetails]:
        tx = await self.rpc(
            "getTransaction",
            [tx_hash, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}],
        )
        if not tx:
            return None

        meta = tx.get("meta") or {}
        keys = _account_keys(tx)
        sender = keys[0] if keys else None
        success = meta.get("err") is None

        if not token_address:
            lamports = 0
            if recipient in keys:
                index = keys.index(recipient)
                pre = meta.get("preBalances") or []
                post = meta.get("postBalances") or []
                if index < len(pre) and index < len(post):
                    lamports = max(post[index] - pre[index], 0)
            return TransferDetails(
                tx_hash=tx_hash,
                success=success,
                sender=sender,
                recipient=recipient,
                amount=from_base_units(lamports, self.config.native_decimals),
            )

        pre_balances = meta.get("preTokenBalances") or []
        post_balances = meta.get("postTokenBalances") or []
        units = _token_units(post_balances, recipient, token_address) - _token_units(
            pre_balances, recipient, token_address
        )
        decimals = _token_decimals(post_balances, token_address)
        return TransferDetails(
            tx_hash=tx_hash,
            success=success,
            sender=sender,
            recipient=recipient,
            amount=from_base_units(max(units, 0), decimals),
            token_address=token_address,
        )
