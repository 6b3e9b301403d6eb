"""
datamarket/engine.py

MarketplaceEngine - the operations the storefront UI calls.

Wires the ledger client, the purchase cache, the reconciler, the bounty
state machine and the analytics functions behind one object. Every
account-scoped call takes an explicit Session; the engine itself holds no
per-user state and can serve several accounts at once.

Usage:
    from datamarket import MarketplaceEngine, Session
    from datamarket.ledger import InMemoryLedger

    engine = MarketplaceEngine(InMemoryLedger())
    alice = Session("0xA11ce...")

    quote = engine.quote_purchase("100")
    record = await engine.purchase_dataset(alice, dataset_id=3)
    views = await engine.reconcile_purchases(alice)
    analytics = await engine.period_analytics(alice, days=30)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .config import PLATFORM_FEE_BPS
from .errors import InvalidAmount, MarketError, PayloadError, Rejected
from .ledger.client import LedgerClient, TxReceipt
from .ledger.retry import submit_write
from .metrics import MetricsCollector
from .models import Bounty, Dataset, PurchaseRecord, PurchaseView, Submission, normalize_account, same_account
from .money import AmountLike, to_decimal, to_units
from .session import Session
from .settlement.analytics import (
    CategoryRevenue,
    PeriodAnalytics,
    TrendPoint,
    category_breakdown,
    period_analytics,
    revenue_trend,
)
from .settlement.bounties import BountyRefund, BountySettlement, BountyStateMachine
from .settlement.fees import BountyFeeQuote, PurchaseQuote, quote_bounty_fee, quote_purchase
from .settlement.purchase_cache import PurchaseCache
from .settlement.reconciler import PurchaseReconciler

logger = logging.getLogger("datamarket.engine")

AccountLike = Union[Session, str]


def _account_key(account: AccountLike) -> str:
    return account.key if isinstance(account, Session) else normalize_account(account)


@dataclass(frozen=True)
class DatasetRegistration:
    """A registered dataset plus the optional quality score of its sample."""
    dataset: Dataset
    receipt: TxReceipt
    quality_score: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "dataset": self.dataset.to_dict(),
            "receipt": self.receipt.to_dict(),
            "qualityScore": self.quality_score,
        }


@dataclass(frozen=True)
class Dashboard:
    """Summary figures for an account's dashboard."""
    total_earnings: Decimal
    datasets_listed: int
    total_purchases: int
    total_datasets: int

    def to_dict(self) -> dict:
        return {
            "totalEarnings": str(self.total_earnings),
            "datasetsListed": self.datasets_listed,
            "totalPurchases": self.total_purchases,
            "totalDatasets": self.total_datasets,
        }


class MarketplaceEngine:
    """
    Settlement & reconciliation engine for the dataset marketplace.

    Args:
        ledger: Registry ledger client
        cache: Local purchase cache (in-memory if omitted)
        metrics: Optional metrics collector
        scorer: Optional quality scorer with an async analyze(sample) method
            returning a dict that may hold "qualityScore" (0..100)
        fee_bps: Platform fee for purchase quotes
    """

    def __init__(
        self,
        ledger: LedgerClient,
        cache: Optional[PurchaseCache] = None,
        metrics: Optional[MetricsCollector] = None,
        scorer: Any = None,
        fee_bps: int = PLATFORM_FEE_BPS,
    ):
        self.ledger = ledger
        self.cache = cache or PurchaseCache()
        self.metrics = metrics or MetricsCollector()
        self.scorer = scorer
        self.fee_bps = fee_bps

        self.reconciler = PurchaseReconciler(ledger, self.cache, self.metrics)
        self.bounties = BountyStateMachine(ledger, self.metrics)

    # ========================================================================
    # QUOTES
    # ========================================================================

    def quote_purchase(self, price: AmountLike) -> PurchaseQuote:
        return quote_purchase(price, self.fee_bps)

    def quote_bounty_fee(self, reward: AmountLike) -> BountyFeeQuote:
        return quote_bounty_fee(reward, self.fee_bps)

    # ========================================================================
    # DATASETS
    # ========================================================================

    async def get_dataset(self, dataset_id: int) -> Optional[Dataset]:
        return await self.ledger.get_dataset(dataset_id)

    async def list_datasets(
        self,
        category: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[Dataset]:
        """Marketplace listing, in registration order."""
        count = await self.ledger.get_dataset_count()
        datasets = []
        for dataset_id in range(count):
            try:
                dataset = await self.ledger.get_dataset(dataset_id)
            except PayloadError as e:
                logger.warning(f"Skipping dataset {dataset_id}: {e}")
                continue
            if dataset is None:
                continue
            if not include_inactive and not dataset.active:
                continue
            if category and dataset.category.lower() != category.lower():
                continue
            datasets.append(dataset)
        return datasets

    async def datasets_by_owner(self, account: AccountLike) -> List[Dataset]:
        ids = await self.ledger.get_datasets_by_owner(_account_key(account))
        datasets = []
        for dataset_id in ids:
            dataset = await self.ledger.get_dataset(dataset_id)
            if dataset is not None:
                datasets.append(dataset)
        return datasets

    async def _score(self, sample: Any) -> Optional[int]:
        try:
            result = await self.scorer.analyze(sample)
        except Exception as e:
            logger.warning(f"Quality scoring failed, registering without a score: {e}")
            return None
        score = result.get("qualityScore") if isinstance(result, dict) else None
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
            logger.warning(f"Quality scorer returned no usable score: {result!r}")
            return None
        return int(round(score))

    async def register_dataset(
        self,
        session: Session,
        content_hash: str,
        metadata_hash: str,
        price: AmountLike,
        category: str,
        sample: Any = None,
    ) -> DatasetRegistration:
        """
        List a dataset on the ledger.

        When a scorer is configured and a sample is given, the sample is
        scored first. A scoring failure never blocks registration.

        Raises:
            InvalidAmount: negative or malformed price
        """
        value = to_decimal(price, "price")
        if value < 0:
            raise InvalidAmount(f"price must be non-negative, got {value}", price)
        price_units = to_units(value)

        quality_score = None
        if self.scorer is not None and sample is not None:
            quality_score = await self._score(sample)

        receipt = await submit_write(
            "register_dataset",
            lambda: self.ledger.register_dataset(
                session.account, content_hash, metadata_hash, price_units, category,
            ),
            self.metrics,
        )
        try:
            dataset = await self.ledger.get_dataset(receipt.result)
        except MarketError as e:
            logger.warning(f"Could not re-read dataset {receipt.result} after registration: {e}")
            dataset = None
        if dataset is None:
            dataset = Dataset(
                id=receipt.result,
                owner=session.account,
                content_hash=content_hash,
                metadata_hash=metadata_hash,
                price=value,
                category=category,
                created_at=int(session.now()),
            )
        logger.info(f"Dataset {dataset.id} registered by {session.account} at {value}")
        return DatasetRegistration(dataset=dataset, receipt=receipt, quality_score=quality_score)

    async def update_dataset_metadata(
        self,
        session: Session,
        dataset_id: int,
        metadata_hash: str,
    ) -> Dataset:
        """
        Point a dataset at a new metadata descriptor. Owner only.

        Raises:
            Rejected: dataset missing or caller is not the owner
        """
        dataset = await self.ledger.get_dataset(dataset_id)
        if dataset is None or not same_account(dataset.owner, session.account):
            raise Rejected("Not the owner", "update_dataset_metadata")

        await submit_write(
            "update_dataset_metadata",
            lambda: self.ledger.update_dataset_metadata(session.account, dataset_id, metadata_hash),
            self.metrics,
        )
        logger.info(f"Dataset {dataset_id} metadata updated")
        return dataset.with_metadata(metadata_hash)

    # ========================================================================
    # PURCHASES
    # ========================================================================

    async def purchase_dataset(self, session: Session, dataset_id: int) -> PurchaseRecord:
        """
        Pay the listed price for a dataset and remember the purchase.

        The record is cached as soon as the ledger confirms it, so it
        survives leaving the ledger's event window. A failed cache write
        is logged and the settled record is still returned.

        Raises:
            Rejected: dataset missing or inactive, or a ledger guard
            Unavailable: transport failure (see outcome_unknown)
        """
        dataset = await self.ledger.get_dataset(dataset_id)
        if dataset is None or not dataset.active:
            raise Rejected("Dataset not active", "purchase_dataset")

        receipt = await submit_write(
            "purchase_dataset",
            lambda: self.ledger.purchase_dataset(session.account, dataset_id, to_units(dataset.price)),
            self.metrics,
        )
        record = PurchaseRecord(
            dataset_id=dataset_id,
            price=dataset.price,
            timestamp=int(session.now()),
            transaction_id=receipt.tx_hash,
            buyer=session.account,
        )
        try:
            await self.cache.append(session.key, record)
        except OSError as e:
            # Payment is settled; reconciliation backfills the record while it
            # is still inside the event window
            logger.error(f"Purchase {receipt.tx_hash} settled but not cached: {e}")
        self.metrics.record_purchase()
        logger.info(f"Purchase of dataset {dataset_id} by {session.account} recorded ({receipt.tx_hash})")
        return record

    async def reconcile_purchases(self, account: AccountLike) -> List[PurchaseView]:
        return await self.reconciler.reconcile(_account_key(account))

    async def clear_purchases(self, account: AccountLike) -> int:
        """Explicit user action: forget the locally cached purchases."""
        return await self.cache.clear(_account_key(account))

    # ========================================================================
    # BOUNTIES
    # ========================================================================

    async def get_bounty(self, bounty_id: int) -> Bounty:
        return await self.bounties.get(bounty_id)

    async def list_bounties(self, status_filter: str = "all", sort: str = "newest") -> List[Bounty]:
        return await self.bounties.list_bounties(status_filter, sort)

    async def bounties_by_creator(self, account: AccountLike) -> List[Bounty]:
        return await self.bounties.bounties_by_creator(_account_key(account))

    async def bounties_by_submitter(self, account: AccountLike) -> List[Bounty]:
        return await self.bounties.bounties_by_submitter(_account_key(account))

    async def get_submissions(self, bounty_id: int) -> List[Submission]:
        return await self.bounties.get_submissions(bounty_id)

    async def create_bounty(
        self,
        session: Session,
        title: str,
        description: str,
        metadata_hash: str,
        category: str,
        deadline: int,
        reward: AmountLike,
    ) -> Bounty:
        return await self.bounties.create(
            session, title, description, metadata_hash, category, deadline, reward,
        )

    async def submit_to_bounty(
        self,
        session: Session,
        bounty_id: int,
        content_hash: str,
        description: str,
    ) -> Submission:
        return await self.bounties.submit(session, bounty_id, content_hash, description)

    async def approve_bounty(self, session: Session, bounty_id: int, submission_index: int) -> BountySettlement:
        return await self.bounties.approve(session, bounty_id, submission_index)

    async def cancel_bounty(self, session: Session, bounty_id: int) -> BountyRefund:
        return await self.bounties.cancel(session, bounty_id)

    # ========================================================================
    # ANALYTICS
    # ========================================================================

    async def revenue_trend(self, session: Session, days: int) -> List[TrendPoint]:
        views = await self.reconcile_purchases(session)
        return revenue_trend(views, days, session.now())

    async def period_analytics(self, session: Session, days: int) -> PeriodAnalytics:
        views = await self.reconcile_purchases(session)
        return period_analytics(views, days, session.now())

    async def category_breakdown(self, account: AccountLike) -> List[CategoryRevenue]:
        return category_breakdown(await self.datasets_by_owner(account))

    async def dashboard(self, session: Session) -> Dashboard:
        """Earnings and counts shown on the account dashboard."""
        owned = await self.datasets_by_owner(session)
        purchases = await self.reconcile_purchases(session)
        total_datasets = await self.ledger.get_dataset_count()
        return Dashboard(
            total_earnings=sum((d.price for d in owned), Decimal(0)),
            datasets_listed=len(owned),
            total_purchases=len(purchases),
            total_datasets=total_datasets,
        )

    def get_stats(self) -> Dict[str, Any]:
        return self.metrics.get_stats()
