"""
Wallet API endpoints: custodial wallets, message signing and backups.

Private keys are accepted on import and restore but never returned.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from wallets.models import WalletBackup

from .container import GatewayServices, get_services

router = APIRouter()


class CreateWalletRequest(BaseModel):
    name: str
    chain: str
    # Omit to generate a fresh key pair
    private_key: Optional[str] = None


class SignMessageRequest(BaseModel):
    message: str


class BackupRequest(BaseModel):
    passphrase: str


class RestoreRequest(BaseModel):
    backup: WalletBackup
    passphrase: str
    name: Optional[str] = None


@router.post("/wallets", status_code=201)
async def create_wallet(data: CreateWalletRequest, services: GatewayServices = Depends(get_services)):
    if data.private_key:
        wallet = await services.wallets.import_wallet(data.name, data.chain, data.private_key)
    else:
        wallet = await services.wallets.generate_wallet(data.name, data.chain)
    return wallet.to_view()


@router.get("/wallets")
async def list_wallets(chain: Optional[str] = None, services: GatewayServices = Depends(get_services)):
    wallets = await services.wallets.list_wallets(chain)
    return {"wallets": [wallet.to_view() for wallet in wallets], "count": len(wallets)}


@router.get("/wallets/stats")
async def wallet_stats(services: GatewayServices = Depends(get_services)):
    return await services.wallets.get_stats()


@router.post("/wallets/restore", status_code=201)
async def restore_wallet(data: RestoreRequest, services: GatewayServices = Depends(get_services)):
    wallet = await services.wallets.restore_wallet(data.backup, data.passphrase, data.name)
    return wallet.to_view()


@router.get("/wallets/{wallet_id}")
async def get_wallet(wallet_id: str, services: GatewayServices = Depends(get_services)):
    return (await services.wallets.get_wallet(wallet_id)).to_view()


@router.delete("/wallets/{wallet_id}")
async def remove_wallet(wallet_id: str, services: GatewayServices = Depends(get_services)):
    await services.wallets.remove_wallet(wallet_id)
    return {"deleted": True, "wallet_id": wallet_id}


@router.get("/wallets/{wallet_id}/balance")
async def wallet_balance(
    wallet_id: str,
    token_address: Optional[str] = None,
    services: GatewayServices = Depends(get_services),
):
    balance = await services.wallets.get_balance(wallet_id, token_address)
    return {"wallet_id": wallet_id, "token_address": token_address, "balance": str(balance)}


@router.post("/wallets/{wallet_id}/sign")
async def sign_message(
    wallet_id: str,
    data: SignMessageRequest,
    services: GatewayServices = Depends(get_services),
):
    signature = await services.wallets.sign_message(wallet_id, data.message)
    return {"wallet_id": wallet_id, "message": data.message, "signature": signature}


@router.post("/wallets/{wallet_id}/backup")
async def backup_wallet(
    wallet_id: str,
    data: BackupRequest,
    services: GatewayServices = Depends(get_services),
):
    """Export the key sealed under the caller's passphrase."""
    return await services.wallets.backup_wallet(wallet_id, data.passphrase)
