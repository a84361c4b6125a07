"""
Shared fixtures: an in-process ledger with one PKP, its owner and a tool catalog
"""

from typing import Any, Dict, List, Tuple

import pytest

from agentwallet.capabilities import ExecutionResult
from agentwallet.config import DEFAULT_POLICY_STORE_ADDRESS
from agentwallet.crypto import LocalKeySigner, SignatureResponse
from agentwallet.ledger import LocalProvider, PolicyStore
from agentwallet.registry import RegistryClient
from agentwallet.tools import ToolCatalog, ToolInfo

PKP = 1
CONTRACT = DEFAULT_POLICY_STORE_ADDRESS
DELEGATEE = "0x" + "ab" * 20
OTHER_DELEGATEE = "0x" + "cd" * 20

TRANSFER_CID = "QmTransferTool"
SWAP_CID = "QmSwapTool"


def positive_amount(params: Dict[str, Any]):
    if int(params["amount"]) > 0:
        return True
    return [("amount", "must be positive")]


def max_amount_policy(params: Dict[str, Any], policy: Any) -> None:
    if int(params["amount"]) > int(policy["max_amount"]):
        raise ValueError(f"Amount {params['amount']} exceeds the maximum of {policy['max_amount']}")


def make_transfer_tool() -> ToolInfo:
    return ToolInfo(
        name="ERC20Transfer",
        description="Transfer ERC20 tokens",
        ipfs_cid=TRANSFER_CID,
        parameters={"amount": "Amount to send", "to": "Recipient address"},
        parameter_validator=positive_amount,
        policy_validator=max_amount_policy,
    )


def make_swap_tool() -> ToolInfo:
    return ToolInfo(
        name="UniswapSwap",
        description="Swap tokens on Uniswap",
        ipfs_cid=SWAP_CID,
        parameters={"token_in": "Token to sell", "token_out": "Token to buy"},
    )


class FakePkpSigner:
    """PKP signer double: signs with a local key and records tool executions"""

    def __init__(self, key: LocalKeySigner, result: Any = None):
        self._key = key
        self.pkp_address = key.address
        self.result = result if result is not None else ExecutionResult(response='{"status":"success"}')
        self.executions: List[Tuple[str, Dict[str, Any]]] = []

    async def sign(self, message_hash: str) -> SignatureResponse:
        return self._key.sign(message_hash)

    async def execute_tool(self, ipfs_cid: str, params: Dict[str, Any]) -> Any:
        self.executions.append((ipfs_cid, dict(params)))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def owner() -> LocalKeySigner:
    return LocalKeySigner()


@pytest.fixture
def store(owner) -> PolicyStore:
    store = PolicyStore()
    store.register_pkp(PKP, owner.address)
    return store


@pytest.fixture
def provider(store) -> LocalProvider:
    return LocalProvider(store, CONTRACT)


@pytest.fixture
def registry(provider) -> RegistryClient:
    return RegistryClient(provider, CONTRACT)


@pytest.fixture
def transfer_tool() -> ToolInfo:
    return make_transfer_tool()


@pytest.fixture
def swap_tool() -> ToolInfo:
    return make_swap_tool()


@pytest.fixture
def catalog(transfer_tool, swap_tool) -> ToolCatalog:
    return ToolCatalog([transfer_tool, swap_tool])


@pytest.fixture
def pkp_signer(owner) -> FakePkpSigner:
    return FakePkpSigner(owner)
