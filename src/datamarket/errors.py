"""
datamarket/errors.py

Error taxonomy shared by the settlement engine and its ledger boundary.

- InvalidAmount: malformed or out-of-range money, rejected before any write
- Rejected: a ledger guard failed (wrong caller, expired deadline, terminal bounty)
- Unavailable: transport failure; reads may be retried, writes never are
- DatasetUnresolvable: a purchase references a dataset that cannot be fetched
- PayloadError: a ledger or cache payload does not match the expected shape
"""

from typing import Optional


class MarketError(Exception):
    """Base class for all datamarket errors."""
    pass


class InvalidAmount(MarketError, ValueError):
    """Price or reward is negative, zero where forbidden, or malformed."""

    def __init__(self, message: str, value: object = None):
        super().__init__(message)
        self.value = value


class Rejected(MarketError):
    """A ledger guard condition was not met. The reason is kept verbatim."""

    def __init__(self, reason: str, operation: str = ""):
        super().__init__(f"{operation}: {reason}" if operation else reason)
        self.reason = reason
        self.operation = operation


class Unavailable(MarketError):
    """
    The ledger could not be reached.

    outcome_unknown is False when nothing was sent, True when a write was
    sent but its receipt never arrived.
    """

    def __init__(self, message: str, operation: str = "", outcome_unknown: bool = False):
        super().__init__(message)
        self.operation = operation
        self.outcome_unknown = outcome_unknown


class DatasetUnresolvable(MarketError):
    """A reconciled purchase references a dataset the ledger cannot return."""

    def __init__(self, dataset_id: int, cause: Optional[str] = None):
        message = f"Dataset {dataset_id} referenced by a purchase could not be resolved"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.dataset_id = dataset_id


class PayloadError(MarketError):
    """A payload did not match the expected schema and was rejected."""
    pass
