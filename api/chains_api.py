"""
Chain API endpoints: supported chains, balances, transaction status, fee
estimates and token metadata.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends

from core.errors import NotFoundError, ValidationError

from .container import GatewayServices, get_services

router = APIRouter()


@router.get("/chains")
async def list_chains(services: GatewayServices = Depends(get_services)):
    configs = [services.registry.get_config(chain) for chain in services.registry.supported_chains()]
    return {"chains": [config.model_dump(mode="json", exclude={"rpc_url"}) for config in configs]}


@router.get("/chains/{chain}/balance/{address}")
async def get_balance(
    chain: str,
    address: str,
    token_address: Optional[str] = None,
    services: GatewayServices = Depends(get_services),
):
    gateway = services.registry.get(chain)
    if not gateway.is_valid_address(address):
        raise ValidationError(f"Invalid {chain} address: {address}")
    balance = await gateway.get_balance(address, token_address)
    return {"chain": chain, "address": address, "token_address": token_address, "balance": str(balance)}


@router.get("/chains/{chain}/transactions/{tx_hash}")
async def get_transaction_status(chain: str, tx_hash: str, services: GatewayServices = Depends(get_services)):
    gateway = services.registry.get(chain)
    if not gateway.is_valid_transaction_hash(tx_hash):
        raise ValidationError(f"Invalid {chain} transaction hash: {tx_hash}")
    return await gateway.get_transaction_status(tx_hash)


@router.get("/chains/{chain}/gas-estimate")
async def get_gas_estimate(
    chain: str,
    to: str,
    value: Decimal = Decimal(0),
    services: GatewayServices = Depends(get_services),
):
    gateway = services.registry.get(chain)
    if not gateway.is_valid_address(to):
        raise ValidationError(f"Invalid {chain} address: {to}")
    return await gateway.get_gas_estimate(to, value)


@router.get("/chains/{chain}/tokens")
async def list_tokens(chain: str, services: GatewayServices = Depends(get_services)):
    config = services.registry.get_config(chain)
    return {
        "chain": chain,
        "native": {"symbol": config.native_symbol, "decimals": config.native_decimals},
        "tokens": services.registry.list_tokens(chain),
    }


@router.get("/chains/{chain}/token")
async def get_token_info(chain: str, address: str, services: GatewayServices = Depends(get_services)):
    """On-chain metadata for a token contract (EVM) or mint (Solana)."""
    token = await services.registry.get_token_info(chain, address)
    if token is None:
        raise NotFoundError(f"No token at {address} on {chain}")
    return token
