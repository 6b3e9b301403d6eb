"""
datamarket/settlement/reconciler.py

Purchase Reconciler.

Merges the two partial views of an account's purchase history:
1. Local cache - durable, everything the engine has seen
2. Ledger events - authoritative, but only for the bounded recent window

Precedence: cached records are always included. A ledger-observed
purchase is added only when the merged set has no purchase of the same
dataset for the account yet, since ledger events may not carry a
transaction id. The merged set is independent of the order in which the
two sources were read, and is returned sorted by (timestamp, dataset id,
transaction id).
"""

import time
import logging
from typing import Dict, List, Optional, Set, Tuple, Union

from ..config import UNKNOWN_TX_ID
from ..errors import DatasetUnresolvable, MarketError
from ..ledger.client import LedgerClient, PurchaseEvent
from ..metrics import MetricsCollector
from ..models import Dataset, PurchaseRecord, PurchaseView, normalize_account, same_account
from ..money import from_units
from ..session import Session
from .purchase_cache import PurchaseCache

logger = logging.getLogger("datamarket.settlement.reconciler")

SOURCE_CACHE = "cache"
SOURCE_LEDGER = "ledger"


def event_to_record(event: PurchaseEvent) -> PurchaseRecord:
    """Synthesize a PurchaseRecord from a ledger purchase event."""
    return PurchaseRecord(
        dataset_id=event.dataset_id,
        price=from_units(event.price_units),
        timestamp=event.timestamp,
        transaction_id=event.transaction_id or UNKNOWN_TX_ID,
        buyer=event.buyer,
    )


def merge_records(
    cached: List[PurchaseRecord],
    observed: List[PurchaseRecord],
) -> List[Tuple[PurchaseRecord, str]]:
    """
    Merge cached and ledger-observed records.

    Cached records are deduplicated by transaction id; observed records by
    dataset id against everything merged so far.

    Returns:
        (record, source) pairs in sort_key order
    """
    merged: List[Tuple[PurchaseRecord, str]] = []
    seen_tx: Set[str] = set()
    seen_datasets: Set[int] = set()

    for record in cached:
        if record.transaction_id in seen_tx:
            continue
        seen_tx.add(record.transaction_id)
        seen_datasets.add(record.dataset_id)
        merged.append((record, SOURCE_CACHE))

    for record in sorted(observed, key=PurchaseRecord.sort_key):
        if record.dataset_id in seen_datasets:
            continue
        seen_datasets.add(record.dataset_id)
        merged.append((record, SOURCE_LEDGER))

    merged.sort(key=lambda pair: pair[0].sort_key())
    return merged


class PurchaseReconciler:
    """
    Produces one deduplicated, ordered purchase view per account.

    Usage:
        reconciler = PurchaseReconciler(ledger, cache)
        views = await reconciler.reconcile(session)
        for view in views:
            print(view.dataset.id, view.record.price)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        cache: PurchaseCache,
        metrics: Optional[MetricsCollector] = None,
        persist_observed: bool = True,
    ):
        """
        Args:
            ledger: Ledger to query for recent purchase events
            cache: Local cache of everything seen before
            metrics: Optional collector
            persist_observed: Copy ledger-observed purchases that carry a
                transaction id into the cache, so they survive leaving the
                event window
        """
        self.ledger = ledger
        self.cache = cache
        self.metrics = metrics
        self.persist_observed = persist_observed

    async def _observed(self, account: str) -> Optional[List[PurchaseRecord]]:
        """Ledger-observed purchases in the current window, or None if the query failed."""
        try:
            head = await self.ledger.get_block_number()
            from_block = max(0, head - self.ledger.event_window)
            events = await self.ledger.get_purchase_events(account, from_block, head)
        except MarketError as e:
            logger.warning(f"Ledger purchase query failed for {account}, using cache only: {e}")
            return None
        return [event_to_record(e) for e in events if same_account(e.buyer, account)]

    async def _backfill(self, account: str, record: PurchaseRecord) -> bool:
        try:
            await self.cache.append(account, record)
        except OSError as e:
            logger.warning(f"Could not cache observed purchase {record.transaction_id}: {e}")
            return False
        if self.metrics:
            self.metrics.record_backfill()
        return True

    async def _resolve(self, dataset_ids: List[int]) -> Dict[int, Dataset]:
        datasets: Dict[int, Dataset] = {}
        for dataset_id in dataset_ids:
            try:
                dataset = await self.ledger.get_dataset(dataset_id)
            except MarketError as e:
                raise DatasetUnresolvable(dataset_id, str(e)) from e
            if dataset is None:
                raise DatasetUnresolvable(dataset_id, "not registered")
            datasets[dataset_id] = dataset
        return datasets

    async def reconcile(self, account: Union[Session, str]) -> List[PurchaseView]:
        """
        Reconcile an account's purchases.

        A failing ledger event query is not fatal; the result then holds
        the cached records only.

        Raises:
            DatasetUnresolvable: a merged purchase references a dataset the
                ledger cannot return
        """
        key = account.key if isinstance(account, Session) else normalize_account(account)
        started = time.monotonic()

        cached = await self.cache.list_for(key)
        observed = await self._observed(key)
        merged = merge_records(cached, observed or [])

        if self.persist_observed:
            promoted = []
            for record, source in merged:
                if source == SOURCE_LEDGER and record.transaction_id != UNKNOWN_TX_ID:
                    if await self._backfill(key, record):
                        source = SOURCE_CACHE
                promoted.append((record, source))
            merged = promoted

        datasets = await self._resolve(sorted({r.dataset_id for r, _ in merged}))
        views = [
            PurchaseView(record=record, dataset=datasets[record.dataset_id], source=source)
            for record, source in merged
        ]

        if self.metrics:
            self.metrics.record_reconciliation(
                len(views),
                degraded=observed is None,
                seconds=time.monotonic() - started,
            )
        logger.debug(
            f"Reconciled {len(views)} purchases for {key} "
            f"({len(cached)} cached, {len(observed or [])} observed)"
        )
        return views
