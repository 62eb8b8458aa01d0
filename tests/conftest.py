"""
Pytest fixtures for the DhanSetu gateway tests.

Chain RPC endpoints and merchant webhook endpoints are served in-process by
httpx.MockTransport handlers; time comes from a frozen, manually advanced
clock so billing sweeps are deterministic.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import pytest
from dateutil.relativedelta import relativedelta

from api.container import build_services
from core.config import Settings
from core.crypto import generate_encryption_key
from gateways.evm import (
    BALANCE_OF_SELECTOR,
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    TRANSFER_TOPIC,
)
from payments.webhooks import DELIVERY_HEADER

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

EVM_RECEIVER = "0x742d35Cc6634C0532925a3b8D4C9db96590c6C87"
SOLANA_RECEIVER = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
CUSTOMER_WALLET = "0x1111111111111111111111111111111111111111"
SOLANA_CUSTOMER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
USDC_POLYGON = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
USDC_SOLANA_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
SYSTEM_PROGRAM = "11111111111111111111111111111111"

WEBHOOK_URL = "https://merchant.example.com/webhooks/dhansetu"
WEBHOOK_SECRET = "whsec_test_secret"

RPC_URLS = {
    "ethereum": "https://ethereum.rpc.test",
    "polygon": "https://polygon.rpc.test",
    "solana": "https://solana.rpc.test",
}


def evm_tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def solana_signature(n: int) -> str:
    # 88 base58 characters
    return "5" + "K" * 80 + format(n, "07d").replace("0", "z")


def address_topic(address: str) -> str:
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def abi_string(text: str) -> str:
    data = text.encode("utf-8")
    padded = data.ljust((len(data) + 31) // 32 * 32, b"\0")
    return "0x" + (32).to_bytes(32, "big").hex() + len(data).to_bytes(32, "big").hex() + padded.hex()


# =============================================================================
# CLOCK
# =============================================================================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + relativedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


# =============================================================================
# FAKE CHAIN NODES
# =============================================================================

class FakeEvmNode:
    """Minimal eth_* JSON-RPC node."""

    def __init__(self):
        self.block_number = 1_000
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.balances: Dict[str, int] = {}
        self.token_balances: Dict[tuple, int] = {}
        self.token_decimals: Dict[str, int] = {}
        self.token_names: Dict[str, tuple] = {}
        self.non_contracts: set = set()
        self.calls: List[str] = []
        self.fail_status: Optional[int] = None

    def add_native_transfer(
        self,
        tx_hash: str,
        to: str,
        wei: int,
        sender: str = CUSTOMER_WALLET,
        success: bool = True,
        block: int = 990,
    ) -> None:
        self.transactions[tx_hash] = {"hash": tx_hash, "from": sender, "to": to, "value": hex(wei)}
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": hex(block),
            "status": "0x1" if success else "0x0",
            "logs": [],
        }

    def add_token_transfer(
        self,
        tx_hash: str,
        token: str,
        to: str,
        units: int,
        decimals: int = 6,
        sender: str = CUSTOMER_WALLET,
        success: bool = True,
        block: int = 990,
    ) -> None:
        self.token_decimals[token.lower()] = decimals
        self.transactions[tx_hash] = {"hash": tx_hash, "from": sender, "to": token, "value": "0x0"}
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": hex(block),
            "status": "0x1" if success else "0x0",
            "logs": [
                {
                    "address": token,
                    "topics": [TRANSFER_TOPIC, address_topic(sender), address_topic(to)],
                    "data": hex(units),
                }
            ],
        }

    def add_pending(self, tx_hash: str) -> None:
        self.receipts.pop(tx_hash, None)

    def add_token(self, token: str, name: str, symbol: str, decimals: int = 6) -> None:
        self.token_names[token.lower()] = (name, symbol)
        self.token_decimals[token.lower()] = decimals

    def _eth_call(self, call: Dict[str, Any]) -> str:
        token = call["to"].lower()
        data = call["data"]
        if token in self.non_contracts:
            return "0x"
        if token in self.token_names and data.startswith((NAME_SELECTOR, SYMBOL_SELECTOR)):
            name, symbol = self.token_names[token]
            return abi_string(name if data.startswith(NAME_SELECTOR) else symbol)
        if data.startswith(DECIMALS_SELECTOR):
            return hex(self.token_decimals.get(token, 18))
        if data.startswith(BALANCE_OF_SELECTOR):
            owner = "0x" + data[-40:].lower()
            return hex(self.token_balances.get((token, owner), 0))
        return "0x"

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="upstream unavailable")

        body = json.loads(request.content)
        method, params = body["method"], body.get("params", [])
        self.calls.append(method)

        if method == "eth_getTransactionReceipt":
            result = self.receipts.get(params[0])
        elif method == "eth_getTransactionByHash":
            result = self.transactions.get(params[0])
        elif method == "eth_blockNumber":
            result = hex(self.block_number)
        elif method == "eth_getBalance":
            result = hex(self.balances.get(params[0].lower(), 0))
        elif method == "eth_call":
            result = self._eth_call(params[0])
        elif method == "eth_estimateGas":
            result = hex(21_000)
        elif method == "eth_gasPrice":
            result = hex(20 * 10**9)
        else:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}},
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


class FakeSolanaNode:
    """Minimal Solana JSON-RPC node."""

    def __init__(self):
        self.statuses: Dict[str, Optional[Dict[str, Any]]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.balances: Dict[str, int] = {}
        self.token_accounts: Dict[tuple, List[Dict[str, Any]]] = {}
        self.mints: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail_status: Optional[int] = None

    def add_native_transfer(
        self,
        signature: str,
        to: str,
        lamports: int,
        sender: str = SOLANA_CUSTOMER,
        err: Any = None,
        confirmation_status: str = "finalized",
    ) -> None:
        self.statuses[signature] = {
            "slot": 250_000_000,
            "confirmations": None,
            "err": err,
            "confirmationStatus": confirmation_status,
        }
        self.transactions[signature] = {
            "slot": 250_000_000,
            "meta": {
                "err": err,
                "preBalances": [5_000_000_000, 1_000_000_000],
                "postBalances": [5_000_000_000 - lamports - 5000, 1_000_000_000 + lamports],
                "preTokenBalances": [],
                "postTokenBalances": [],
            },
            "transaction": {
                "message": {
                    "accountKeys": [
                        {"pubkey": sender, "signer": True, "writable": True},
                        {"pubkey": to, "signer": False, "writable": True},
                    ]
                }
            },
        }

    def add_token_transfer(
        self,
        signature: str,
        mint: str,
        to: str,
        units: int,
        decimals: int = 6,
        sender: str = SOLANA_CUSTOMER,
    ) -> None:
        self.statuses[signature] = {
            "slot": 250_000_001,
            "confirmations": 12,
            "err": None,
            "confirmationStatus": "confirmed",
        }

        def balance(owner: str, amount: int) -> Dict[str, Any]:
            return {
                "accountIndex": 1,
                "mint": mint,
                "owner": owner,
                "uiTokenAmount": {"amount": str(amount), "decimals": decimals},
            }

        self.transactions[signature] = {
            "slot": 250_000_001,
            "meta": {
                "err": None,
                "preBalances": [5_000_000_000, 2_039_280],
                "postBalances": [4_999_995_000, 2_039_280],
                "preTokenBalances": [balance(to, 1_000_000)],
                "postTokenBalances": [balance(to, 1_000_000 + units)],
            },
            "transaction": {"message": {"accountKeys": [sender, to]}},
        }

    def _account_info(self, address: str) -> Optional[Dict[str, Any]]:
        if address in self.mints:
            parsed = {"type": "mint", "info": {"decimals": self.mints[address], "isInitialized": True}}
            return {"owner": TOKEN_PROGRAM, "data": {"program": "spl-token", "parsed": parsed}}
        if address in self.balances:
            return {"owner": SYSTEM_PROGRAM, "data": ["", "base64"]}
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="upstream unavailable")

        body = json.loads(request.content)
        method, params = body["method"], body.get("params", [])
        self.calls.append(method)

        if method == "getSignatureStatuses":
            result = {"context": {"slot": 250_000_100}, "value": [self.statuses.get(s) for s in params[0]]}
        elif method == "getTransaction":
            result = self.transactions.get(params[0])
        elif method == "getBalance":
            result = {"context": {"slot": 250_000_100}, "value": self.balances.get(params[0], 0)}
        elif method == "getTokenAccountsByOwner":
            accounts = self.token_accounts.get((params[0], params[1]["mint"]), [])
            result = {"context": {"slot": 250_000_100}, "value": accounts}
        elif method == "getAccountInfo":
            result = {"context": {"slot": 250_000_100}, "value": self._account_info(params[0])}
        else:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}},
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


# =============================================================================
# WEBHOOK ENDPOINT
# =============================================================================

class WebhookSink:
    """Records webhook requests; answers from a queue of status codes (default 200)."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.statuses: List[int] = []
        self.raise_errors = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_errors:
            self.raise_errors -= 1
            raise httpx.ConnectError("connection refused", request=request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status)

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    @property
    def events(self) -> List[str]:
        return [p["event"] for p in self.payloads]

    def deliveries(self, event: str) -> set:
        return {
            r.headers[DELIVERY_HEADER]
            for r in self.requests
            if json.loads(r.content)["event"] == event
        }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        WEBHOOK_SECRET=WEBHOOK_SECRET,
        ENCRYPTION_KEY=generate_encryption_key(),
        RPC_URLS=dict(RPC_URLS),
        WEBHOOK_RETRY_DELAY_SECONDS=0,
        WALLET_BACKUP_KDF_ITERATIONS=1_000,
    )


@pytest.fixture
def evm_node() -> FakeEvmNode:
    return FakeEvmNode()


@pytest.fixture
def solana_node() -> FakeSolanaNode:
    return FakeSolanaNode()


@pytest.fixture
def webhook_sink() -> WebhookSink:
    return WebhookSink()


@pytest.fixture
async def rpc_client(evm_node, solana_node):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "solana.rpc.test":
            return solana_node.handle(request)
        return evm_node.handle(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(route))
    yield client
    await client.aclose()


@pytest.fixture
async def webhook_client(webhook_sink):
    client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_sink.handle))
    yield client
    await client.aclose()


@pytest.fixture
async def services(settings, rpc_client, webhook_client, clock):
    """Fully wired services against the fake nodes and webhook sink."""
    services = build_services(
        settings,
        rpc_client=rpc_client,
        webhook_client=webhook_client,
        clock=clock,
    )
    yield services
    await services.aclose()


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
async def merchant(services):
    """A merchant with a webhook endpoint; returns (merchant, plaintext secret)."""
    return await services.merchants.register_merchant(
        "Acme Coffee",
        webhook_url=WEBHOOK_URL,
        webhook_secret=WEBHOOK_SECRET,
    )


def usdc_plan_spec(**overrides: Any) -> Dict[str, Any]:
    spec = {
        "name": "Pro Monthly",
        "amount": Decimal("10"),
        "currency": "USDC",
        "chain": "polygon",
        "token_address": USDC_POLYGON,
        "token_decimals": 6,
        "interval": "monthly",
        "interval_count": 1,
        "trial_days": 0,
    }
    spec.update(overrides)
    return spec
