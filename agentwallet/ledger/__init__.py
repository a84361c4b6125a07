"""
Ledger - PolicyStore Contract and Local Provider
================================================

Ledger-side implementation that shares the client's wire formats.
"""

from .policy_store import LedgerEvent, PkpRecord, PolicyRecord, PolicyStore
from .provider import LocalProvider, TransactionHandle, TransactionReceipt

__all__ = [
    "LedgerEvent",
    "PkpRecord",
    "PolicyRecord",
    "PolicyStore",
    "LocalProvider",
    "TransactionHandle",
    "TransactionReceipt",
]
