"""
datamarket/settlement/

Fee quotes, purchase caching and reconciliation, the bounty state machine
and revenue analytics.
"""

from .fees import (
    PurchaseQuote,
    BountyFeeQuote,
    quote_purchase,
    quote_bounty_fee,
)
from .purchase_cache import PurchaseCache
from .reconciler import PurchaseReconciler, merge_records
from .bounties import (
    BountyStateMachine,
    BountySettlement,
    BountyRefund,
    filter_and_sort,
)
from .analytics import (
    TrendPoint,
    PeriodAnalytics,
    CategoryRevenue,
    revenue_trend,
    period_analytics,
    category_breakdown,
)

__all__ = [
    "PurchaseQuote",
    "BountyFeeQuote",
    "quote_purchase",
    "quote_bounty_fee",
    "PurchaseCache",
    "PurchaseReconciler",
    "merge_records",
    "BountyStateMachine",
    "BountySettlement",
    "BountyRefund",
    "filter_and_sort",
    "TrendPoint",
    "PeriodAnalytics",
    "CategoryRevenue",
    "revenue_trend",
    "period_analytics",
    "category_breakdown",
]
