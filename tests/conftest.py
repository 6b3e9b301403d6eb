"""
Shared fixtures for datamarket tests.

Every test runs against an InMemoryLedger driven by a controllable clock,
so deadlines, event windows and analytics windows are deterministic.
"""

import pytest

from datamarket.engine import MarketplaceEngine
from datamarket.ledger.memory import InMemoryLedger
from datamarket.metrics import MetricsCollector
from datamarket.session import Session
from datamarket.settlement.purchase_cache import PurchaseCache
from datamarket.storage import MemoryBackend

# 2023-11-14 22:13:20 UTC
NOW = 1_700_000_000
DAY = 86_400

SELLER = "0x" + "a1" * 20
BUYER = "0x" + "b2" * 20
OTHER = "0x" + "c3" * 20


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def cache():
    return PurchaseCache(MemoryBackend())


@pytest.fixture
def engine(ledger, cache, metrics):
    return MarketplaceEngine(ledger, cache, metrics=metrics)


@pytest.fixture
def seller(clock):
    return Session(SELLER, clock=clock)


@pytest.fixture
def buyer(clock):
    return Session(BUYER, clock=clock)


@pytest.fixture
def other(clock):
    return Session(OTHER, clock=clock)
