"""
datamarket/ledger/

Boundary to the remote registry ledger.

Web3LedgerClient lives in datamarket.ledger.web3_client and is imported
from there.
"""

from .client import LedgerClient, PurchaseEvent, TxReceipt
from .memory import InMemoryLedger, PLATFORM_ACCOUNT
from .retry import RetryConfig, retry_read, submit_write

__all__ = [
    "LedgerClient",
    "PurchaseEvent",
    "TxReceipt",
    "InMemoryLedger",
    "PLATFORM_ACCOUNT",
    "RetryConfig",
    "retry_read",
    "submit_write",
]
