"""
datamarket/settlement/analytics.py

Revenue analytics over reconciled purchases.

Purchases are bucketed by UTC calendar day. The current window is
[now - N days, now]; the previous window is [now - 2N days, now - N days).
Days without purchases are omitted rather than zero-filled.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Union

from ..config import SECONDS_PER_DAY
from ..models import Dataset, PurchaseRecord, PurchaseView
from .fees import quantize

logger = logging.getLogger("datamarket.settlement.analytics")

GROWTH_QUANTUM = Decimal("0.1")

# Growth reported when the previous period earned nothing
GROWTH_FROM_ZERO = Decimal("100.0")

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"

Purchase = Union[PurchaseView, PurchaseRecord]


@dataclass(frozen=True)
class TrendPoint:
    """Revenue of one UTC day."""
    day: date
    revenue: Decimal

    def to_dict(self) -> dict:
        return {"date": self.day.isoformat(), "revenue": str(self.revenue)}


@dataclass(frozen=True)
class PeriodAnalytics:
    """Current window compared against the window before it."""
    days: int
    period_revenue: Decimal
    previous_period_revenue: Decimal
    growth_rate_percent: Decimal
    trend: str
    avg_daily_revenue: Decimal

    def to_dict(self) -> dict:
        return {
            "days": self.days,
            "periodRevenue": str(self.period_revenue),
            "previousPeriodRevenue": str(self.previous_period_revenue),
            "growthRatePercent": str(self.growth_rate_percent),
            "trend": self.trend,
            "avgDailyRevenue": str(self.avg_daily_revenue),
        }


@dataclass(frozen=True)
class CategoryRevenue:
    category: str
    count: int
    revenue: Decimal

    def to_dict(self) -> dict:
        return {"category": self.category, "count": self.count, "revenue": str(self.revenue)}


def _record(item: Purchase) -> PurchaseRecord:
    return item.record if isinstance(item, PurchaseView) else item


def _check_days(days: int) -> None:
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValueError(f"days must be a positive integer, got {days!r}")


def utc_day(timestamp: float) -> date:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date()


def revenue_trend(purchases: Iterable[Purchase], days: int, now: float) -> List[TrendPoint]:
    """
    Daily revenue within [now - days, now], ascending by date.

    Args:
        purchases: Reconciled views or bare records
        days: Window length in days
        now: Current time (unix seconds)
    """
    _check_days(days)
    start = now - days * SECONDS_PER_DAY
    buckets: Dict[date, Decimal] = defaultdict(Decimal)
    for item in purchases:
        record = _record(item)
        if start <= record.timestamp <= now:
            buckets[utc_day(record.timestamp)] += record.price
    return [TrendPoint(day=d, revenue=buckets[d]) for d in sorted(buckets)]


def _growth(period: Decimal, previous: Decimal) -> Decimal:
    if previous > 0:
        return ((period - previous) / previous * 100).quantize(GROWTH_QUANTUM, rounding=ROUND_HALF_UP)
    if period > 0:
        return GROWTH_FROM_ZERO
    return Decimal("0.0")


def period_analytics(purchases: Iterable[Purchase], days: int, now: float) -> PeriodAnalytics:
    """
    Period-over-period revenue summary.

    growth_rate_percent is (period - previous) / previous * 100, rounded
    half-up to one decimal place. With an empty previous period it is 100.0
    if the current period earned anything and 0.0 otherwise.
    avg_daily_revenue divides by the number of days that had purchases.
    """
    _check_days(days)
    records = [_record(item) for item in purchases]
    window = days * SECONDS_PER_DAY
    current_start = now - window
    previous_start = now - 2 * window

    trend_points = revenue_trend(records, days, now)
    period = sum((p.revenue for p in trend_points), Decimal(0))
    previous = sum(
        (r.price for r in records if previous_start <= r.timestamp < current_start),
        Decimal(0),
    )

    if period > previous:
        trend = TREND_UP
    elif period < previous:
        trend = TREND_DOWN
    else:
        trend = TREND_STABLE

    avg_daily = quantize(period / len(trend_points)) if trend_points else Decimal(0)
    return PeriodAnalytics(
        days=days,
        period_revenue=period,
        previous_period_revenue=previous,
        growth_rate_percent=_growth(period, previous),
        trend=trend,
        avg_daily_revenue=avg_daily,
    )


def category_breakdown(datasets: Iterable[Dataset]) -> List[CategoryRevenue]:
    """Dataset count and summed listed price per category, highest revenue first."""
    counts: Dict[str, int] = defaultdict(int)
    revenue: Dict[str, Decimal] = defaultdict(Decimal)
    for dataset in datasets:
        category = dataset.category or "Uncategorized"
        counts[category] += 1
        revenue[category] += dataset.price
    return sorted(
        (CategoryRevenue(category=c, count=counts[c], revenue=revenue[c]) for c in counts),
        key=lambda c: (-c.revenue, c.category),
    )
