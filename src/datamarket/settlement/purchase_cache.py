"""
datamarket/settlement/purchase_cache.py

Local Reconciliation Cache.

The ledger only answers event queries for a bounded recent window, so any
purchase the engine has seen once is remembered here, per account, in
insertion order. Appends are idempotent on the transaction id.

Usage:
    cache = PurchaseCache(FileBackend(Path("~/.datamarket").expanduser()))
    added = await cache.append(account, record)   # False if already cached
    records = await cache.list_for(account)
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..config import UNKNOWN_TX_ID
from ..ledger.codec import decode_record_set, encode_record_set
from ..models import PurchaseRecord, normalize_account, same_account
from ..storage import MemoryBackend, StorageBackend

logger = logging.getLogger("datamarket.settlement.purchase_cache")


class PurchaseCache:
    """
    Per-account append-only purchase store.

    Records for an account are loaded once, kept in memory and written
    through to the backend. The duplicate check and the in-memory append
    happen without suspending, so two concurrent appends for the same
    account are both kept; every write persists the latest full list.
    """

    def __init__(self, backend: Optional[StorageBackend] = None):
        self.backend = backend or MemoryBackend()
        self._records: Dict[str, List[PurchaseRecord]] = {}
        self._generation: Dict[str, int] = defaultdict(int)

    async def _load(self, key: str) -> List[PurchaseRecord]:
        records = self._records.get(key)
        if records is not None:
            return records
        payload = await self.backend.get(key)
        loaded = decode_record_set(payload) if payload is not None else []
        # Another call may have loaded this account while we were suspended
        records = self._records.setdefault(key, loaded)
        logger.debug(f"Loaded {len(records)} cached purchases for {key}")
        return records

    async def _persist(self, key: str) -> None:
        while True:
            generation = self._generation[key]
            records = self._records.get(key)
            if records is None:
                await self.backend.delete(key)
            else:
                await self.backend.put(key, encode_record_set(records))
            if self._generation[key] == generation:
                return

    async def append(self, account: str, record: PurchaseRecord) -> bool:
        """
        Add a record unless one with the same transaction id is cached.

        Returns:
            True if the record was added, False if it was already present

        Raises:
            ValueError: record has no real transaction id or another buyer
        """
        key = normalize_account(account)
        if record.transaction_id == UNKNOWN_TX_ID or not record.transaction_id:
            raise ValueError("Cannot cache a purchase without a transaction id")
        if not same_account(record.buyer, key):
            raise ValueError(f"Purchase buyer {record.buyer} does not match account {account}")

        records = await self._load(key)
        if any(r.transaction_id == record.transaction_id for r in records):
            logger.debug(f"Purchase {record.transaction_id} already cached for {key}")
            return False

        records.append(record)
        self._generation[key] += 1
        try:
            await self._persist(key)
        except Exception as e:
            # Keep memory in step with the backend; pending writers re-persist
            records.remove(record)
            self._generation[key] += 1
            logger.error(f"Failed to cache purchase {record.transaction_id} for {key}: {e}")
            raise
        logger.debug(f"Cached purchase {record.transaction_id} of dataset {record.dataset_id} for {key}")
        return True

    async def list_for(self, account: str) -> List[PurchaseRecord]:
        """Cached records for an account in insertion order."""
        key = normalize_account(account)
        return list(await self._load(key))

    async def count(self, account: str) -> int:
        return len(await self._load(normalize_account(account)))

    async def clear(self, account: str) -> int:
        """
        Forget every cached purchase of an account.

        Only ever called on an explicit user request.

        Returns:
            Number of records removed
        """
        key = normalize_account(account)
        records = await self._load(key)
        removed = len(records)
        self._records.pop(key, None)
        self._generation[key] += 1
        try:
            await self._persist(key)
        except Exception:
            self._records.setdefault(key, records)
            self._generation[key] += 1
            raise
        logger.info(f"Cleared {removed} cached purchases for {key}")
        return removed

    async def accounts(self) -> List[str]:
        """Accounts with persisted purchases."""
        return sorted(set(await self.backend.list_keys()) | set(self._records))
