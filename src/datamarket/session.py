"""
datamarket/session.py

Explicit caller context passed into every engine operation.

Replaces ambient wallet/connection state so several accounts can use one
engine at the same time.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

from .models import normalize_account


@dataclass(frozen=True)
class Session:
    """
    The account acting on the engine plus the clock it sees.

    Usage:
        session = Session(account="0xAbc...")
        views = await engine.reconcile_purchases(session)
    """
    account: str
    clock: Callable[[], float] = field(default=time.time, compare=False, repr=False)

    def __post_init__(self):
        normalize_account(self.account)

    @property
    def key(self) -> str:
        """Normalized account used for cache keys."""
        return normalize_account(self.account)

    def now(self) -> float:
        return self.clock()
