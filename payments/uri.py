"""
Payment URI builders.

EVM chains use EIP-681 (native value transfer or ERC-20 ``transfer`` call);
Solana uses the Solana Pay transfer request format.
"""

from decimal import Decimal
from typing import Optional
from urllib.parse import quote, urlencode

from core.amounts import format_amount, to_base_units
from gateways.base import ChainConfig, ChainFamily

DEFAULT_LABEL = "DhanSetu"
DEFAULT_MESSAGE = "DhanSetu Payment"


def build_eip681_uri(
    config: ChainConfig,
    address: str,
    amount: Decimal,
    token_address: Optional[str] = None,
    token_decimals: Optional[int] = None,
) -> str:
    chain_part = f"@{config.chain_id}" if config.chain_id else ""

    if not token_address:
        wei = to_base_units(amount, config.native_decimals)
        return f"ethereum:{address}{chain_part}?value={wei}"

    params = {"address": address}
    if token_decimals is not None:
        params["uint256"] = str(to_base_units(amount, token_decimals))
    return f"ethereum:{token_address}{chain_part}/transfer?{urlencode(params)}"


def build_solana_pay_uri(
    address: str,
    amount: Decimal,
    token_address: Optional[str] = None,
    label: str = DEFAULT_LABEL,
    message: str = DEFAULT_MESSAGE,
) -> str:
    params = {"amount": format_amount(amount)}
    if token_address:
        params["spl-token"] = token_address
    params["label"] = label
    params["message"] = message
    return f"solana:{address}?{urlencode(params, quote_via=quote)}"


def build_payment_uri(
    config: ChainConfig,
    address: str,
    amount: Decimal,
    token_address: Optional[str] = None,
    token_decimals: Optional[int] = None,
    message: str = DEFAULT_MESSAGE,
) -> str:
    if config.family == ChainFamily.SOLANA:
        return build_solana_pay_uri(address, amount, token_address, message=message)
    return build_eip681_uri(config, address, amount, token_address, token_decimals)
