"""
Local Ledger Provider
=====================

In-process stand-in for an RPC node in front of a PolicyStore.

Gas estimation dry-runs the call against a fork of the store, so a call that
would revert fails at estimation time, as it does on a real node. Broadcast
verifies the Ed25519 signature over the transaction hash and derives the
sender from the signing key; the sender is never taken from the payload.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..crypto import address_from_public_key, digest_bytes, ed25519_verify_b64, normalize_address
from ..encoding import Transaction, decode_function_data, parse_transaction, transaction_hash
from ..errors import EncodingError, LedgerRevert, OutOfGas, TransactionRejected
from .policy_store import LedgerEvent, PolicyStore, operation_count

logger = logging.getLogger(__name__)

BASE_GAS = 21000
GAS_PER_DATA_BYTE = 16
GAS_PER_OPERATION = 20000

DEFAULT_CHAIN_ID = 175188  # Chronicle Yellowstone


@dataclass
class TransactionReceipt:
    transaction_hash: str
    sender: str
    block_number: int
    gas_used: int
    status: int = 1
    events: List[LedgerEvent] = field(default_factory=list)


@dataclass
class TransactionHandle:
    """Broadcast transaction; await ``wait()`` for its receipt"""
    hash: str
    to: str
    nonce: int
    gas_limit: int
    receipt: TransactionReceipt

    async def wait(self) -> TransactionReceipt:
        return self.receipt


class LocalProvider:
    """Provider that executes PolicyStore transactions in-process"""

    def __init__(self, store: PolicyStore, contract_address: str, chain_id: int = DEFAULT_CHAIN_ID):
        self.store = store
        self.contract_address = normalize_address(contract_address)
        self.chain_id = chain_id
        self.block_number = 0
        self._nonces: Dict[str, int] = {}
        self.receipts: Dict[str, TransactionReceipt] = {}

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_transaction_count(self, address: str) -> int:
        return self._nonces.get(address.lower(), 0)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for ``{to, data, from}``; raises if the call would revert"""
        self._check_destination(tx["to"])
        function, args = decode_function_data(tx["data"])
        self.store.fork().execute(tx["from"], function, args)
        return self._gas_for(tx["data"], function, args)

    async def call(self, to: str, data: str) -> Any:
        self._check_destination(to)
        function, args = decode_function_data(data)
        return self.store.call(function, args)

    async def send_raw_transaction(self, raw: bytes) -> TransactionHandle:
        try:
            tx, signature = parse_transaction(raw)
        except EncodingError as e:
            raise TransactionRejected(str(e))
        if signature is None:
            raise TransactionRejected("Transaction is not signed")
        if tx.chain_id != self.chain_id:
            raise TransactionRejected(f"Wrong chain id {tx.chain_id}, expected {self.chain_id}")

        unsigned_hash = transaction_hash(tx)
        if not ed25519_verify_b64(digest_bytes(unsigned_hash), signature.signature, signature.public_key):
            raise TransactionRejected("Invalid transaction signature")
        sender = address_from_public_key(signature.public_key)

        expected_nonce = self._nonces.get(sender, 0)
        if tx.nonce != expected_nonce:
            raise TransactionRejected(f"Nonce {tx.nonce} does not match expected {expected_nonce}")

        self._check_destination(tx.to)
        function, args = decode_function_data(tx.data)
        gas_used = self._gas_for(tx.data, function, args)
        if tx.gas_limit is None or tx.gas_limit < gas_used:
            raise OutOfGas(f"Gas limit {tx.gas_limit} below required {gas_used}")

        events = self.store.execute(sender, function, args)
        self._nonces[sender] = expected_nonce + 1
        self.block_number += 1

        receipt = TransactionReceipt(
            transaction_hash=unsigned_hash,
            sender=sender,
            block_number=self.block_number,
            gas_used=gas_used,
            events=events,
        )
        self.receipts[unsigned_hash] = receipt
        logger.info(f"Mined {function} from {sender} in block {self.block_number} ({unsigned_hash})")
        return TransactionHandle(
            hash=unsigned_hash,
            to=tx.to,
            nonce=tx.nonce,
            gas_limit=tx.gas_limit,
            receipt=receipt,
        )

    def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self.receipts.get(tx_hash)

    def _check_destination(self, to: str) -> None:
        if not isinstance(to, str) or to.lower() != self.contract_address:
            raise LedgerRevert(f"No PolicyStore deployed at {to}")

    @staticmethod
    def _gas_for(data: str, function: str, args: List[Any]) -> int:
        data_bytes = (len(data) - 2) // 2 if data.startswith("0x") else len(data) // 2
        return BASE_GAS + GAS_PER_DATA_BYTE * data_bytes + GAS_PER_OPERATION * operation_count(function, args)
