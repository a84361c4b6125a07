"""
Wire Encoding
=============

Call data, policy values and transactions as exchanged between the registry
client and the PolicyStore.

Call data is the canonical JSON of ``{"function", "args"}`` checked against
the PolicyStore signature table, hex encoded. Policy values are encoded as a
``tuple`` when the caller passes an object and as their primitive type
otherwise.
"""

import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .crypto import SignatureResponse, canonical_json, is_address, sha256_hex
from .errors import EncodingError


@dataclass(frozen=True)
class FunctionSignature:
    inputs: Tuple[str, ...]
    view: bool = False


POLICY_STORE_ABI: Dict[str, FunctionSignature] = {
    # Mutations (owner-only)
    "register_tools": FunctionSignature(("uint256", "string[]")),
    "add_delegatees": FunctionSignature(("uint256", "address[]")),
    "permit_tool_for_delegatee": FunctionSignature(("uint256", "string", "address")),
    "unpermit_tool_for_delegatee": FunctionSignature(("uint256", "string", "address")),
    "set_policy": FunctionSignature(("uint256", "string", "address", "bytes", "string")),
    "remove_policy": FunctionSignature(("uint256", "string", "address")),
    "enable_policy": FunctionSignature(("uint256", "string", "address")),
    "disable_policy": FunctionSignature(("uint256", "string", "address")),
    "set_parameter": FunctionSignature(("uint256", "string", "address", "string", "bytes")),
    "remove_parameter": FunctionSignature(("uint256", "string", "address", "string")),
    "batch_set_parameters": FunctionSignature(("uint256", "string", "address", "string[]", "bytes[]")),
    "batch_remove_parameters": FunctionSignature(("uint256", "string", "address", "string[]")),
    # Views
    "get_pkp_owner": FunctionSignature(("uint256",), view=True),
    "get_registered_tools": FunctionSignature(("uint256",), view=True),
    "get_delegatees": FunctionSignature(("uint256",), view=True),
    "get_delegatees_for_tool": FunctionSignature(("uint256", "string"), view=True),
    "get_permitted_tools_for_delegatee": FunctionSignature(("uint256", "address"), view=True),
    "is_tool_permitted_for_delegatee": FunctionSignature(("uint256", "string", "address"), view=True),
    "get_policy": FunctionSignature(("uint256", "string", "address"), view=True),
    "is_policy_enabled": FunctionSignature(("uint256", "string", "address"), view=True),
    "get_parameter_names": FunctionSignature(("uint256", "string", "address"), view=True),
    "get_parameter": FunctionSignature(("uint256", "string", "address", "string"), view=True),
}


def encode_value(type_name: str, value: Any) -> Any:
    """Encode a single argument as a JSON-safe value of the given type"""
    if type_name.endswith("[]"):
        if not isinstance(value, (list, tuple)):
            raise EncodingError(f"Expected array for {type_name}, got {type(value).__name__}")
        return [encode_value(type_name[:-2], item) for item in value]

    if type_name == "uint256":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise EncodingError(f"Invalid uint256: {value!r}")
        return value
    if type_name == "int256":
        if isinstance(value, bool) or not isinstance(value, int):
            raise EncodingError(f"Invalid int256: {value!r}")
        return value
    if type_name == "string":
        if not isinstance(value, str):
            raise EncodingError(f"Invalid string: {value!r}")
        return value
    if type_name == "address":
        if not is_address(value):
            raise EncodingError(f"Invalid address: {value!r}")
        return value.lower()
    if type_name == "bytes":
        if not isinstance(value, (bytes, bytearray)):
            raise EncodingError(f"Invalid bytes: {value!r}")
        return "0x" + bytes(value).hex()
    if type_name == "bool":
        if not isinstance(value, bool):
            raise EncodingError(f"Invalid bool: {value!r}")
        return value

    raise EncodingError(f"Unsupported type: {type_name}")


def decode_value(type_name: str, value: Any) -> Any:
    if type_name.endswith("[]"):
        if not isinstance(value, list):
            raise EncodingError(f"Expected array for {type_name}")
        return [decode_value(type_name[:-2], item) for item in value]
    if type_name == "bytes":
        if not isinstance(value, str) or not value.startswith("0x"):
            raise EncodingError(f"Invalid bytes: {value!r}")
        try:
            return bytes.fromhex(value[2:])
        except ValueError as e:
            raise EncodingError(f"Invalid bytes: {e}")
    # Remaining types round-trip through JSON unchanged; re-validate them.
    return encode_value(type_name, value)


def encode_function_data(function: str, args: Sequence[Any]) -> str:
    """Encode a PolicyStore call as hex call data"""
    signature = POLICY_STORE_ABI.get(function)
    if signature is None:
        raise EncodingError(f"Unknown PolicyStore function: {function}")
    if len(args) != len(signature.inputs):
        raise EncodingError(
            f"{function} expects {len(signature.inputs)} arguments, got {len(args)}"
        )
    encoded = [encode_value(type_name, arg) for type_name, arg in zip(signature.inputs, args)]
    return "0x" + canonical_json({"function": function, "args": encoded}).hex()


def decode_function_data(data: str) -> Tuple[str, List[Any]]:
    """Decode hex call data back to (function, args)"""
    try:
        payload = json.loads(bytes.fromhex(data[2:] if data.startswith("0x") else data))
        function = payload["function"]
        raw_args = payload["args"]
    except (ValueError, KeyError, TypeError) as e:
        raise EncodingError(f"Malformed call data: {e}")

    signature = POLICY_STORE_ABI.get(function)
    if signature is None:
        raise EncodingError(f"Unknown PolicyStore function: {function}")
    if not isinstance(raw_args, list) or len(raw_args) != len(signature.inputs):
        raise EncodingError(f"Argument count mismatch for {function}")
    return function, [decode_value(t, a) for t, a in zip(signature.inputs, raw_args)]


# === Policy values ===

def policy_value_type(policy: Any) -> str:
    """Type a policy value is encoded as"""
    if isinstance(policy, (dict, list, tuple)):
        return "tuple"
    if isinstance(policy, bool):
        return "bool"
    if isinstance(policy, int):
        return "uint256" if policy >= 0 else "int256"
    if isinstance(policy, str):
        return "string"
    if isinstance(policy, (bytes, bytearray)):
        return "bytes"
    raise EncodingError(f"Unsupported policy value type: {type(policy).__name__}")


def encode_policy_value(policy: Any) -> bytes:
    """Encode a policy value into the opaque blob stored on the ledger"""
    type_name = policy_value_type(policy)
    if type_name == "tuple":
        value = list(policy) if isinstance(policy, tuple) else policy
    else:
        value = encode_value(type_name, policy)
    try:
        return canonical_json({"type": type_name, "value": value})
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Policy value is not encodable: {e}")


def decode_policy_value(blob: bytes) -> Any:
    try:
        payload = json.loads(blob.decode('utf-8'))
        type_name = payload["type"]
        value = payload["value"]
    except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
        raise EncodingError(f"Malformed policy blob: {e}")
    if type_name == "tuple":
        return value
    return decode_value(type_name, value)


# === Transactions ===

@dataclass
class Transaction:
    """Unsigned PolicyStore transaction"""
    to: str
    data: str
    nonce: int = 0
    chain_id: int = 0
    gas_limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def serialize_transaction(tx: Transaction, signature: Optional[SignatureResponse] = None) -> bytes:
    payload: Dict[str, Any] = tx.to_dict()
    if signature is not None:
        payload["signature"] = {
            "signature": signature.signature,
            "public_key": signature.public_key,
        }
    return canonical_json(payload)


def transaction_hash(tx: Transaction) -> str:
    """Canonical hash of an unsigned transaction"""
    return "0x" + sha256_hex(serialize_transaction(tx))


def parse_transaction(raw: bytes) -> Tuple[Transaction, Optional[SignatureResponse]]:
    try:
        payload = json.loads(raw)
        signature_data = payload.pop("signature", None)
        tx = Transaction(**payload)
    except (ValueError, TypeError, AttributeError) as e:
        raise EncodingError(f"Malformed transaction: {e}")

    signature = None
    if signature_data is not None:
        try:
            signature = SignatureResponse(
                signature=signature_data["signature"],
                public_key=signature_data["public_key"],
            )
        except (KeyError, TypeError) as e:
            raise EncodingError(f"Malformed transaction signature: {e}")
    return tx, signature
