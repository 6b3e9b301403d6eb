"""
datamarket/metrics.py

Prometheus metrics collection for the settlement engine.

Counts reconciliations (and how many degraded to cache-only), recorded
purchases, bounty transitions and failed ledger writes.
"""

import time
import logging
from collections import defaultdict
from typing import Dict, Any

logger = logging.getLogger("datamarket.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for datamarket.

    Usage:
        from datamarket.metrics import MetricsCollector

        metrics = MetricsCollector()
        engine = MarketplaceEngine(ledger, cache, metrics=metrics)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "datamarket_reconciliations_total": {
            "type": "counter",
            "help": "Total purchase reconciliations",
        },
        "datamarket_reconciliations_degraded_total": {
            "type": "counter",
            "help": "Reconciliations served from the cache only because the ledger query failed",
        },
        "datamarket_reconciled_purchases": {
            "type": "gauge",
            "help": "Purchases returned by the most recent reconciliation",
        },
        "datamarket_cache_backfills_total": {
            "type": "counter",
            "help": "Ledger-observed purchases copied into the local cache",
        },
        "datamarket_purchases_total": {
            "type": "counter",
            "help": "Dataset purchases settled through the engine",
        },
        "datamarket_bounty_transitions_total": {
            "type": "counter",
            "help": "Bounty state changes by target state",
        },
        "datamarket_ledger_write_failures_total": {
            "type": "counter",
            "help": "Failed ledger writes by error kind",
        },
        "datamarket_reconcile_seconds": {
            "type": "histogram",
            "help": "Reconciliation latency in seconds",
        },
        "datamarket_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    LATENCY_BUCKETS = [0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]

    def __init__(self):
        self._start_time = time.time()
        self.reset_counters()

    def record_reconciliation(self, purchases: int, degraded: bool = False, seconds: float = 0.0) -> None:
        """Record a finished reconciliation."""
        self._reconciliations += 1
        if degraded:
            self._degraded += 1
        self._last_reconciled = purchases

        self._latency_sum += seconds
        self._latency_count += 1
        for bucket in self.LATENCY_BUCKETS:
            if seconds <= bucket:
                self._latency_counts[bucket] += 1
        self._latency_counts[float('inf')] += 1

    def record_backfill(self, count: int = 1) -> None:
        self._backfills += count

    def record_purchase(self) -> None:
        self._purchases += 1

    def record_bounty_transition(self, state: str) -> None:
        """Record a bounty reaching a state (active, fulfilled, cancelled)."""
        self._bounty_transitions[state] += 1

    def record_write_failure(self, kind: str) -> None:
        """Record a failed ledger write (rejected, unavailable, outcome_unknown)."""
        self._write_failures[kind] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float):
            header(name)
            lines.append(f"{name} {value}")

        def add_labeled(name: str, label: str, values: Dict[str, int]):
            header(name)
            for key in sorted(values):
                lines.append(f'{name}{{{label}="{key}"}} {values[key]}')

        add_metric("datamarket_reconciliations_total", self._reconciliations)
        add_metric("datamarket_reconciliations_degraded_total", self._degraded)
        add_metric("datamarket_reconciled_purchases", self._last_reconciled)
        add_metric("datamarket_cache_backfills_total", self._backfills)
        add_metric("datamarket_purchases_total", self._purchases)
        add_labeled("datamarket_bounty_transitions_total", "state", self._bounty_transitions)
        add_labeled("datamarket_ledger_write_failures_total", "kind", self._write_failures)
        add_metric("datamarket_uptime_seconds", time.time() - self._start_time)

        # Reconcile latency histogram
        if self._latency_count > 0:
            header("datamarket_reconcile_seconds")
            # Bucket counts are already cumulative
            for bucket in self.LATENCY_BUCKETS:
                lines.append(f'datamarket_reconcile_seconds_bucket{{le="{bucket}"}} {self._latency_counts[bucket]}')
            lines.append(
                f'datamarket_reconcile_seconds_bucket{{le="+Inf"}} {self._latency_counts[float("inf")]}'
            )
            lines.append(f"datamarket_reconcile_seconds_sum {self._latency_sum}")
            lines.append(f"datamarket_reconcile_seconds_count {self._latency_count}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        return {
            "reconciliations": self._reconciliations,
            "degraded_reconciliations": self._degraded,
            "last_reconciled_purchases": self._last_reconciled,
            "cache_backfills": self._backfills,
            "purchases": self._purchases,
            "bounty_transitions": dict(self._bounty_transitions),
            "write_failures": dict(self._write_failures),
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._reconciliations = 0
        self._degraded = 0
        self._last_reconciled = 0
        self._backfills = 0
        self._purchases = 0
        self._bounty_transitions: Dict[str, int] = defaultdict(int)
        self._write_failures: Dict[str, int] = defaultdict(int)
        self._latency_counts = {b: 0 for b in self.LATENCY_BUCKETS}
        self._latency_counts[float('inf')] = 0
        self._latency_sum = 0.0
        self._latency_count = 0
