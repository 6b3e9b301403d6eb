"""
datamarket/models.py

Record types for datasets, purchases, bounties and bounty submissions.

Snapshots read from the ledger are immutable (frozen dataclasses); a state
change produces a new snapshot rather than mutating an old one.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import IntEnum
from typing import Optional

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_account(account: str) -> str:
    """Canonical form of an account identifier for keys and comparisons."""
    if not isinstance(account, str) or not account.strip():
        raise ValueError(f"account must be a non-empty string, got {account!r}")
    return account.strip().lower()


def same_account(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive account comparison."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


# ============================================================================
# DATASETS & PURCHASES
# ============================================================================

@dataclass(frozen=True)
class Dataset:
    """A dataset listing as recorded on the ledger."""
    id: int
    owner: str
    content_hash: str           # blob store reference to the data
    metadata_hash: str          # blob store reference to the JSON descriptor
    price: Decimal
    category: str
    created_at: int             # ledger timestamp (unix seconds)
    active: bool = True

    def with_metadata(self, metadata_hash: str) -> "Dataset":
        return replace(self, metadata_hash=metadata_hash)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "contentHash": self.content_hash,
            "metadataHash": self.metadata_hash,
            "price": str(self.price),
            "category": self.category,
            "createdAt": self.created_at,
            "active": self.active,
        }


@dataclass(frozen=True)
class PurchaseRecord:
    """
    One purchase of a dataset by a buyer.

    transaction_id is unique per buyer and is the cache dedup key.
    """
    dataset_id: int
    price: Decimal
    timestamp: int
    transaction_id: str
    buyer: str

    def to_dict(self) -> dict:
        """Persisted layout of a cached purchase."""
        return {
            "datasetId": self.dataset_id,
            "price": str(self.price),
            "timestamp": self.timestamp,
            "transactionId": self.transaction_id,
            "buyerAddress": self.buyer,
        }

    def sort_key(self) -> tuple:
        return (self.timestamp, self.dataset_id, self.transaction_id)


@dataclass(frozen=True)
class PurchaseView:
    """A reconciled purchase joined with its dataset."""
    record: PurchaseRecord
    dataset: Dataset
    source: str = "cache"       # "cache" or "ledger"

    def to_dict(self) -> dict:
        return {
            "purchase": self.record.to_dict(),
            "dataset": self.dataset.to_dict(),
            "source": self.source,
        }


# ============================================================================
# BOUNTIES
# ============================================================================

class BountyStatus(IntEnum):
    """Bounty lifecycle state. Values match the ledger's encoding."""
    ACTIVE = 0
    FULFILLED = 1
    CANCELLED = 2

    @property
    def is_terminal(self) -> bool:
        return self is not BountyStatus.ACTIVE

    @classmethod
    def from_string(cls, value: str) -> "BountyStatus":
        normalized = value.strip().upper()
        try:
            return cls[normalized]
        except KeyError:
            raise ValueError(
                f"Invalid bounty status: {value}. Valid options: active, fulfilled, cancelled"
            )

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Bounty:
    """A bounty snapshot. Reward is escrowed by the ledger and never changes."""
    id: int
    creator: str
    title: str
    description: str
    metadata_hash: str
    category: str
    reward: Decimal
    deadline: int
    status: BountyStatus = BountyStatus.ACTIVE
    created_at: int = 0
    fulfiller: Optional[str] = None
    fee_bps: int = 250
    submission_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.status is BountyStatus.ACTIVE

    def is_expired(self, now: float) -> bool:
        """Past the deadline. Expiry only blocks new submissions."""
        return now >= self.deadline

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creator": self.creator,
            "title": self.title,
            "description": self.description,
            "metadataHash": self.metadata_hash,
            "category": self.category,
            "reward": str(self.reward),
            "deadline": self.deadline,
            "status": str(self.status),
            "createdAt": self.created_at,
            "fulfiller": self.fulfiller,
            "feeBps": self.fee_bps,
            "submissionCount": self.submission_count,
        }


@dataclass(frozen=True)
class Submission:
    """A candidate fulfillment of a bounty."""
    bounty_id: int
    submitter: str
    content_hash: str
    description: str
    timestamp: int
    approved: bool = False

    def to_dict(self) -> dict:
        return {
            "bountyId": self.bounty_id,
            "submitter": self.submitter,
            "contentHash": self.content_hash,
            "description": self.description,
            "timestamp": self.timestamp,
            "approved": self.approved,
        }
