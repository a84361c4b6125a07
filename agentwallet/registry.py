"""
Registry Client - Transactional Access to the PolicyStore
=========================================================

Turns policy, permission and parameter mutation intents into signed,
broadcast transactions, and passes read-only queries straight through.

Submission pipeline:
    1. Encode call data against the PolicyStore signature table
    2. Build the unsigned transaction ``{to, data}`` (plus nonce and chain id)
    3. Estimate gas as if sent from the PKP address
    4. Apply a fixed 20% safety margin (integer arithmetic)
    5. Hash the finalized transaction and await the external signature
    6. Serialize with the signature and broadcast

Any failure in these steps surfaces as a single PolicyRegistrationFailed.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from .crypto import SignatureResponse
from .encoding import Transaction, encode_function_data, encode_policy_value, serialize_transaction, transaction_hash
from .errors import EncodingError, PolicyManagerNotInitialized, PolicyRegistrationFailed

logger = logging.getLogger(__name__)

GAS_BUFFER_PERCENT = 120

SignCallback = Callable[[str], Union[Awaitable[Any], Any]]


def compute_gas_limit(gas_estimate: int) -> int:
    """Gas limit with a 20% margin: multiply, then divide truncating"""
    return gas_estimate * GAS_BUFFER_PERCENT // 100


class LedgerProvider(Protocol):
    """What the registry client needs from a ledger connection"""

    async def get_chain_id(self) -> int:
        ...

    async def get_transaction_count(self, address: str) -> int:
        ...

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        ...

    async def send_raw_transaction(self, raw: bytes) -> Any:
        ...

    async def call(self, to: str, data: str) -> Any:
        ...


@dataclass(frozen=True)
class ToolPolicy:
    """Policy blob and version as stored on the ledger"""
    policy: bytes
    version: str

    @property
    def is_empty(self) -> bool:
        return len(self.policy) == 0


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode('utf-8')
    raise EncodingError(f"Parameter values must be bytes or str, got {type(value).__name__}")


@dataclass(frozen=True)
class PolicyMutation:
    """A mutating PolicyStore call plus the context reported on failure"""
    function: str
    args: Tuple[Any, ...]
    ipfs_cid: Optional[str] = None
    policy: Any = None
    failure_message: str = "Failed to register policy"

    def encoded_args(self) -> List[Any]:
        """Arguments with policy and parameter values converted to bytes"""
        args = list(self.args)
        if self.function == "set_policy":
            args[3] = encode_policy_value(args[3])
        elif self.function == "set_parameter":
            args[4] = _to_bytes(args[4])
        elif self.function == "batch_set_parameters":
            args[4] = [_to_bytes(value) for value in args[4]]
        return args

    @classmethod
    def set_policy(cls, pkp: int, ipfs_cid: str, delegatee: str, policy: Any,
                   version: str = "1.0.0") -> "PolicyMutation":
        return cls("set_policy", (pkp, ipfs_cid, delegatee, policy, version), ipfs_cid, policy)

    @classmethod
    def remove_policy(cls, pkp: int, ipfs_cid: str, delegatee: str) -> "PolicyMutation":
        return cls("remove_policy", (pkp, ipfs_cid, delegatee), ipfs_cid,
                   failure_message="Failed to remove policy")

    @classmethod
    def enable_policy(cls, pkp: int, ipfs_cid: str, delegatee: str) -> "PolicyMutation":
        return cls("enable_policy", (pkp, ipfs_cid, delegatee), ipfs_cid,
                   failure_message="Failed to enable policy")

    @classmethod
    def disable_policy(cls, pkp: int, ipfs_cid: str, delegatee: str) -> "PolicyMutation":
        return cls("disable_policy", (pkp, ipfs_cid, delegatee), ipfs_cid,
                   failure_message="Failed to disable policy")

    @classmethod
    def register_tools(cls, pkp: int, ipfs_cids: Sequence[str]) -> "PolicyMutation":
        return cls("register_tools", (pkp, list(ipfs_cids)), ",".join(ipfs_cids),
                   failure_message="Failed to register tools")

    @classmethod
    def add_delegatees(cls, pkp: int, delegatees: Sequence[str]) -> "PolicyMutation":
        return cls("add_delegatees", (pkp, list(delegatees)),
                   failure_message="Failed to add delegatees")

    @classmethod
    def permit_tool(cls, pkp: int, ipfs_cid: str, delegatee: str) -> "PolicyMutation":
        return cls("permit_tool_for_delegatee", (pkp, ipfs_cid, delegatee), ipfs_cid,
                   failure_message="Failed to permit tool")

    @classmethod
    def unpermit_tool(cls, pkp: int, ipfs_cid: str, delegatee: str) -> "PolicyMutation":
        return cls("unpermit_tool_for_delegatee", (pkp, ipfs_cid, delegatee), ipfs_cid,
                   failure_message="Failed to unpermit tool")

    @classmethod
    def set_parameter(cls, pkp: int, ipfs_cid: str, delegatee: str, name: str,
                      value: Union[bytes, str]) -> "PolicyMutation":
        return cls("set_parameter", (pkp, ipfs_cid, delegatee, name, value), ipfs_cid,
                   failure_message="Failed to set parameter")

    @classmethod
    def remove_parameter(cls, pkp: int, ipfs_cid: str, delegatee: str, name: str) -> "PolicyMutation":
        return cls("remove_parameter", (pkp, ipfs_cid, delegatee, name), ipfs_cid,
                   failure_message="Failed to remove parameter")

    @classmethod
    def batch_set_parameters(cls, pkp: int, ipfs_cid: str, delegatee: str, names: Sequence[str],
                             values: Sequence[Union[bytes, str]]) -> "PolicyMutation":
        return cls("batch_set_parameters", (pkp, ipfs_cid, delegatee, list(names), list(values)),
                   ipfs_cid, failure_message="Failed to set parameters")

    @classmethod
    def batch_remove_parameters(cls, pkp: int, ipfs_cid: str, delegatee: str,
                                names: Sequence[str]) -> "PolicyMutation":
        return cls("batch_remove_parameters", (pkp, ipfs_cid, delegatee, list(names)), ipfs_cid,
                   failure_message="Failed to remove parameters")


def _as_signature(response: Any) -> SignatureResponse:
    if isinstance(response, SignatureResponse):
        return response
    if isinstance(response, dict):
        return SignatureResponse(signature=response["signature"], public_key=response["public_key"])
    return SignatureResponse(signature=response.signature, public_key=response.public_key)


class RegistryClient:
    """Client for a PolicyStore deployed at ``contract_address``"""

    def __init__(self, provider: LedgerProvider, contract_address: Optional[str] = None):
        self.provider = provider
        self.contract_address = contract_address.lower() if contract_address else None

    @property
    def is_initialized(self) -> bool:
        return bool(self.contract_address)

    def _require_contract(self) -> str:
        if not self.contract_address:
            raise PolicyManagerNotInitialized()
        return self.contract_address

    async def submit_policy_mutation(
        self,
        pkp_address: str,
        sign_callback: SignCallback,
        mutation: PolicyMutation,
    ) -> Any:
        """Sign and broadcast a mutation as ``pkp_address``; returns the broadcast handle"""
        contract_address = self._require_contract()

        try:
            data = encode_function_data(mutation.function, mutation.encoded_args())
            tx = Transaction(
                to=contract_address,
                data=data,
                nonce=await self.provider.get_transaction_count(pkp_address),
                chain_id=await self.provider.get_chain_id(),
            )

            gas_estimate = await self.provider.estimate_gas(
                {"to": tx.to, "data": tx.data, "from": pkp_address}
            )
            tx.gas_limit = compute_gas_limit(gas_estimate)

            response = sign_callback(transaction_hash(tx))
            if inspect.isawaitable(response):
                response = await response
            signature = _as_signature(response)

            handle = await self.provider.send_raw_transaction(serialize_transaction(tx, signature))
            logger.info(
                f"Submitted {mutation.function} for {mutation.ipfs_cid or 'pkp'} "
                f"(gas estimate {gas_estimate}, limit {tx.gas_limit})"
            )
            return handle

        except Exception as e:
            logger.error(f"{mutation.failure_message}: {e}")
            raise PolicyRegistrationFailed(
                mutation.failure_message,
                ipfs_cid=mutation.ipfs_cid,
                policy=mutation.policy,
                cause=e,
            ) from e

    # === Read-only queries ===

    async def _call(self, function: str, *args: Any) -> Any:
        contract_address = self._require_contract()
        return await self.provider.call(contract_address, encode_function_data(function, args))

    async def get_policy(self, pkp: int, ipfs_cid: str, delegatee: str) -> ToolPolicy:
        policy, version = await self._call("get_policy", pkp, ipfs_cid, delegatee)
        return ToolPolicy(policy=policy, version=version)

    async def is_policy_enabled(self, pkp: int, ipfs_cid: str, delegatee: str) -> bool:
        return await self._call("is_policy_enabled", pkp, ipfs_cid, delegatee)

    async def get_registered_tools(self, pkp: int) -> List[str]:
        return await self._call("get_registered_tools", pkp)

    async def get_pkp_owner(self, pkp: int) -> str:
        return await self._call("get_pkp_owner", pkp)

    async def get_delegatees(self, pkp: int) -> List[str]:
        return await self._call("get_delegatees", pkp)

    async def get_delegatees_for_tool(self, pkp: int, ipfs_cid: str) -> List[str]:
        return await self._call("get_delegatees_for_tool", pkp, ipfs_cid)

    async def get_permitted_tools_for_delegatee(self, pkp: int, delegatee: str) -> List[str]:
        return await self._call("get_permitted_tools_for_delegatee", pkp, delegatee)

    async def is_tool_permitted_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> bool:
        return await self._call("is_tool_permitted_for_delegatee", pkp, ipfs_cid, delegatee)

    async def get_parameter_names(self, pkp: int, ipfs_cid: str, delegatee: str) -> List[str]:
        return await self._call("get_parameter_names", pkp, ipfs_cid, delegatee)

    async def get_parameter(self, pkp: int, ipfs_cid: str, delegatee: str, name: str) -> bytes:
        return await self._call("get_parameter", pkp, ipfs_cid, delegatee, name)
