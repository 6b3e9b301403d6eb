"""
datamarket - Settlement & reconciliation engine for a dataset marketplace

Built around a remote registry ledger with:
- Decimal fee quotes for dataset purchases and bounty rewards
- A local purchase cache covering the ledger's bounded event window
- Reconciliation of cached and ledger-observed purchases
- The bounty lifecycle (create, submit, approve, cancel)
- Daily revenue trend and period-over-period analytics
- REST API and Prometheus metrics

Usage:
    from datamarket import MarketplaceEngine, Session
    from datamarket.ledger import InMemoryLedger

    engine = MarketplaceEngine(InMemoryLedger())
    seller = Session("0xSeller...")

    registration = await engine.register_dataset(seller, "QmData..", "QmMeta..", "10", "nlp")
    views = await engine.reconcile_purchases(Session("0xBuyer..."))

Contract ledger:
    from datamarket.config import EngineConfig
    from datamarket.ledger.web3_client import Web3LedgerClient

    ledger = Web3LedgerClient.from_config(EngineConfig.from_env())

REST API Usage:
    from datamarket.api import EngineAPI

    api = EngineAPI(engine, host="0.0.0.0", port=8645)
    await api.start()
"""

from .config import (
    EngineConfig,
    PLATFORM_FEE_BPS,
    UNKNOWN_TX_ID,
    VERSION,
)
from .errors import (
    MarketError,
    InvalidAmount,
    Rejected,
    Unavailable,
    DatasetUnresolvable,
    PayloadError,
)
from .models import (
    Dataset,
    PurchaseRecord,
    PurchaseView,
    Bounty,
    BountyStatus,
    Submission,
)
from .money import to_decimal, to_units, from_units
from .session import Session
from .settlement import (
    PurchaseQuote,
    BountyFeeQuote,
    quote_purchase,
    quote_bounty_fee,
    PurchaseCache,
    PurchaseReconciler,
    BountyStateMachine,
    BountySettlement,
    BountyRefund,
    TrendPoint,
    PeriodAnalytics,
    revenue_trend,
    period_analytics,
)
from .storage import StorageBackend, MemoryBackend, FileBackend
from .metrics import MetricsCollector
from .engine import MarketplaceEngine, Dashboard, DatasetRegistration
from .api import EngineAPI

__version__ = VERSION
__all__ = [
    # Engine
    "MarketplaceEngine",
    "Dashboard",
    "DatasetRegistration",
    "Session",
    "EngineConfig",
    # Models
    "Dataset",
    "PurchaseRecord",
    "PurchaseView",
    "Bounty",
    "BountyStatus",
    "Submission",
    # Errors
    "MarketError",
    "InvalidAmount",
    "Rejected",
    "Unavailable",
    "DatasetUnresolvable",
    "PayloadError",
    # Money & fees
    "to_decimal",
    "to_units",
    "from_units",
    "PurchaseQuote",
    "BountyFeeQuote",
    "quote_purchase",
    "quote_bounty_fee",
    "PLATFORM_FEE_BPS",
    "UNKNOWN_TX_ID",
    # Settlement
    "PurchaseCache",
    "PurchaseReconciler",
    "BountyStateMachine",
    "BountySettlement",
    "BountyRefund",
    "TrendPoint",
    "PeriodAnalytics",
    "revenue_trend",
    "period_analytics",
    # Storage
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    # API & Metrics
    "EngineAPI",
    "MetricsCollector",
]
