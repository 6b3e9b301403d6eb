"""
datamarket/ledger/memory.py

In-process dataset and bounty registry.

Enforces the same guards as the deployed registry contracts and the same
bounded event-query window, so the engine can be developed and tested
without a remote ledger. Every write mines one block.

Usage:
    ledger = InMemoryLedger(clock=lambda: 1_700_000_000)
    receipt = await ledger.register_dataset(owner, "Qm..", "Qm..", to_units("10"), "nlp")
    dataset = await ledger.get_dataset(receipt.result)
"""

import time
import hashlib
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Set

from ..config import (
    BPS_DENOMINATOR,
    DEFAULT_EVENT_WINDOW,
    PLATFORM_FEE_BPS,
)
from ..errors import Rejected, Unavailable
from ..models import (
    Bounty,
    BountyStatus,
    Dataset,
    Submission,
    normalize_account,
    same_account,
)
from ..money import from_units
from .client import LedgerClient, PurchaseEvent, TxReceipt

logger = logging.getLogger("datamarket.ledger.memory")

# Account credited with platform fees and purchase payments
PLATFORM_ACCOUNT = "0xe8c42b0c182d31f06d938a97a969606a7731ffda"


@dataclass
class _StoredDataset:
    owner: str
    content_hash: str
    metadata_hash: str
    price_units: int
    category: str
    timestamp: int
    active: bool = True


@dataclass
class _StoredBounty:
    creator: str
    title: str
    description: str
    metadata_hash: str
    category: str
    reward_units: int
    deadline: int
    timestamp: int
    fee_bps: int
    status: BountyStatus = BountyStatus.ACTIVE
    fulfiller: Optional[str] = None
    submissions: List[Submission] = field(default_factory=list)


class InMemoryLedger(LedgerClient):
    """
    Registry ledger held in memory.

    Args:
        clock: Source of ledger timestamps (unix seconds)
        event_window: Maximum block range accepted by get_purchase_events
        fee_bps: Platform fee charged on bounty fulfillment
        expose_tx_ids: Whether purchase events carry their transaction hash
        enforce_balances: Reject writes whose sender cannot cover the value
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        event_window: int = DEFAULT_EVENT_WINDOW,
        fee_bps: int = PLATFORM_FEE_BPS,
        expose_tx_ids: bool = True,
        enforce_balances: bool = False,
    ):
        self.clock = clock
        self.event_window = event_window
        self.fee_bps = fee_bps
        self.expose_tx_ids = expose_tx_ids
        self.enforce_balances = enforce_balances

        self._datasets: Dict[int, _StoredDataset] = {}
        self._bounties: Dict[int, _StoredBounty] = {}
        self._purchases: List[PurchaseEvent] = []
        self._balances: Dict[str, int] = {}
        self._block_number = 0
        self._nonce = 0

        # Operations that currently fail with Unavailable (simulated outage)
        self.unavailable: Set[str] = set()

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _now(self) -> int:
        return int(self.clock())

    def _check_available(self, operation: str) -> None:
        if operation in self.unavailable:
            raise Unavailable(f"ledger unreachable during {operation}", operation=operation)

    def _mine(self, sender: str, operation: str) -> TxReceipt:
        self._block_number += 1
        self._nonce += 1
        digest = hashlib.sha256(
            f"{self._block_number}:{sender}:{operation}:{self._nonce}".encode()
        ).hexdigest()
        return TxReceipt(tx_hash=f"0x{digest}", block_number=self._block_number)

    def _debit(self, account: str, units: int, operation: str) -> None:
        key = normalize_account(account)
        balance = self._balances.get(key, 0)
        if self.enforce_balances and balance < units:
            raise Rejected("Insufficient funds", operation)
        self._balances[key] = balance - units

    def _credit(self, account: str, units: int) -> None:
        key = normalize_account(account)
        self._balances[key] = self._balances.get(key, 0) + units

    def fund(self, account: str, units: int) -> None:
        """Credit an account, e.g. to test enforce_balances."""
        self._credit(account, units)

    def balance_of(self, account: str) -> int:
        """Net units credited to an account."""
        return self._balances.get(normalize_account(account), 0)

    def advance_blocks(self, count: int) -> None:
        """Move the head forward without writes."""
        self._block_number += count

    def _stored_bounty(self, bounty_id: int, operation: str) -> _StoredBounty:
        stored = self._bounties.get(bounty_id)
        if stored is None:
            raise Rejected("Bounty does not exist", operation)
        return stored

    def _to_dataset(self, dataset_id: int, stored: _StoredDataset) -> Dataset:
        return Dataset(
            id=dataset_id,
            owner=stored.owner,
            content_hash=stored.content_hash,
            metadata_hash=stored.metadata_hash,
            price=from_units(stored.price_units),
            category=stored.category,
            created_at=stored.timestamp,
            active=stored.active,
        )

    def _to_bounty(self, bounty_id: int, stored: _StoredBounty) -> Bounty:
        return Bounty(
            id=bounty_id,
            creator=stored.creator,
            title=stored.title,
            description=stored.description,
            metadata_hash=stored.metadata_hash,
            category=stored.category,
            reward=from_units(stored.reward_units),
            deadline=stored.deadline,
            status=stored.status,
            created_at=stored.timestamp,
            fulfiller=stored.fulfiller,
            fee_bps=stored.fee_bps,
            submission_count=len(stored.submissions),
        )

    # ========================================================================
    # DATASET READS
    # ========================================================================

    async def get_dataset(self, dataset_id: int) -> Optional[Dataset]:
        self._check_available("get_dataset")
        stored = self._datasets.get(dataset_id)
        return self._to_dataset(dataset_id, stored) if stored else None

    async def get_dataset_count(self) -> int:
        self._check_available("get_dataset_count")
        return len(self._datasets)

    async def get_datasets_by_owner(self, owner: str) -> List[int]:
        self._check_available("get_datasets_by_owner")
        return [i for i, d in self._datasets.items() if same_account(d.owner, owner)]

    async def get_block_number(self) -> int:
        self._check_available("get_block_number")
        return self._block_number

    async def get_purchase_events(
        self,
        account: str,
        from_block: int,
        to_block: int,
    ) -> List[PurchaseEvent]:
        self._check_available("get_purchase_events")
        if from_block < 0 or to_block < from_block:
            raise Rejected(f"Invalid block range {from_block}..{to_block}", "get_purchase_events")
        if to_block - from_block > self.event_window:
            raise Rejected(
                f"Block range {to_block - from_block} exceeds limit of {self.event_window}",
                "get_purchase_events",
            )
        events = [
            e for e in self._purchases
            if same_account(e.buyer, account) and from_block <= e.block_number <= to_block
        ]
        if not self.expose_tx_ids:
            events = [replace(e, transaction_id=None) for e in events]
        return events

    # ========================================================================
    # BOUNTY READS
    # ========================================================================

    async def get_bounty(self, bounty_id: int) -> Optional[Bounty]:
        self._check_available("get_bounty")
        stored = self._bounties.get(bounty_id)
        return self._to_bounty(bounty_id, stored) if stored else None

    async def get_bounty_count(self) -> int:
        self._check_available("get_bounty_count")
        return len(self._bounties)

    async def get_submissions(self, bounty_id: int) -> List[Submission]:
        self._check_available("get_submissions")
        stored = self._bounties.get(bounty_id)
        return list(stored.submissions) if stored else []

    async def get_bounties_by_creator(self, creator: str) -> List[int]:
        self._check_available("get_bounties_by_creator")
        return [i for i, b in self._bounties.items() if same_account(b.creator, creator)]

    async def get_bounties_by_submitter(self, submitter: str) -> List[int]:
        self._check_available("get_bounties_by_submitter")
        return [
            i for i, b in self._bounties.items()
            if any(same_account(s.submitter, submitter) for s in b.submissions)
        ]

    # ========================================================================
    # WRITES
    # ========================================================================

    async def register_dataset(
        self,
        sender: str,
        content_hash: str,
        metadata_hash: str,
        price_units: int,
        category: str,
    ) -> TxReceipt:
        self._check_available("register_dataset")
        dataset_id = len(self._datasets)
        self._datasets[dataset_id] = _StoredDataset(
            owner=sender,
            content_hash=content_hash,
            metadata_hash=metadata_hash,
            price_units=price_units,
            category=category,
            timestamp=self._now(),
        )
        receipt = self._mine(sender, "register_dataset")
        logger.debug(f"Registered dataset {dataset_id} for {sender}")
        return replace(receipt, result=dataset_id)

    async def update_dataset_metadata(
        self,
        sender: str,
        dataset_id: int,
        metadata_hash: str,
    ) -> TxReceipt:
        self._check_available("update_dataset_metadata")
        stored = self._datasets.get(dataset_id)
        if stored is None or not same_account(stored.owner, sender):
            raise Rejected("Not the owner", "update_dataset_metadata")
        stored.metadata_hash = metadata_hash
        return self._mine(sender, "update_dataset_metadata")

    async def purchase_dataset(
        self,
        sender: str,
        dataset_id: int,
        payment_units: int,
    ) -> TxReceipt:
        self._check_available("purchase_dataset")
        stored = self._datasets.get(dataset_id)
        if stored is None or not stored.active:
            raise Rejected("Dataset not active", "purchase_dataset")
        if payment_units < stored.price_units:
            raise Rejected("Insufficient payment", "purchase_dataset")

        self._debit(sender, payment_units, "purchase_dataset")
        self._credit(PLATFORM_ACCOUNT, payment_units)
        receipt = self._mine(sender, "purchase_dataset")
        self._purchases.append(PurchaseEvent(
            dataset_id=dataset_id,
            buyer=sender,
            price_units=payment_units,
            timestamp=self._now(),
            block_number=receipt.block_number,
            transaction_id=receipt.tx_hash,
        ))
        return receipt

    async def create_bounty(
        self,
        sender: str,
        title: str,
        description: str,
        metadata_hash: str,
        category: str,
        deadline: int,
        reward_units: int,
    ) -> TxReceipt:
        self._check_available("create_bounty")
        if reward_units <= 0:
            raise Rejected("Reward must be greater than 0", "create_bounty")
        if deadline <= self._now():
            raise Rejected("Deadline must be in the future", "create_bounty")

        self._debit(sender, reward_units, "create_bounty")
        bounty_id = len(self._bounties)
        self._bounties[bounty_id] = _StoredBounty(
            creator=sender,
            title=title,
            description=description,
            metadata_hash=metadata_hash,
            category=category,
            reward_units=reward_units,
            deadline=deadline,
            timestamp=self._now(),
            fee_bps=self.fee_bps,
        )
        receipt = self._mine(sender, "create_bounty")
        return replace(receipt, result=bounty_id)

    async def submit_to_bounty(
        self,
        sender: str,
        bounty_id: int,
        content_hash: str,
        description: str,
    ) -> TxReceipt:
        self._check_available("submit_to_bounty")
        stored = self._stored_bounty(bounty_id, "submit_to_bounty")
        if stored.status is not BountyStatus.ACTIVE:
            raise Rejected("Bounty not active", "submit_to_bounty")
        if self._now() >= stored.deadline:
            raise Rejected("Bounty deadline passed", "submit_to_bounty")

        stored.submissions.append(Submission(
            bounty_id=bounty_id,
            submitter=sender,
            content_hash=content_hash,
            description=description,
            timestamp=self._now(),
        ))
        return self._mine(sender, "submit_to_bounty")

    async def approve_bounty(
        self,
        sender: str,
        bounty_id: int,
        submission_index: int,
    ) -> TxReceipt:
        self._check_available("approve_bounty")
        stored = self._stored_bounty(bounty_id, "approve_bounty")
        if not same_account(stored.creator, sender):
            raise Rejected("Only creator can approve", "approve_bounty")
        if stored.status is not BountyStatus.ACTIVE:
            raise Rejected("Bounty not active", "approve_bounty")
        if not 0 <= submission_index < len(stored.submissions):
            raise Rejected("Invalid submission index", "approve_bounty")

        chosen = stored.submissions[submission_index]
        stored.submissions[submission_index] = replace(chosen, approved=True)
        stored.status = BountyStatus.FULFILLED
        stored.fulfiller = chosen.submitter

        fee_units = stored.reward_units * stored.fee_bps // BPS_DENOMINATOR
        self._credit(chosen.submitter, stored.reward_units - fee_units)
        self._credit(PLATFORM_ACCOUNT, fee_units)
        return self._mine(sender, "approve_bounty")

    async def cancel_bounty(self, sender: str, bounty_id: int) -> TxReceipt:
        self._check_available("cancel_bounty")
        stored = self._stored_bounty(bounty_id, "cancel_bounty")
        if not same_account(stored.creator, sender):
            raise Rejected("Only creator can cancel", "cancel_bounty")
        if stored.status is not BountyStatus.ACTIVE:
            raise Rejected("Bounty not active", "cancel_bounty")

        stored.status = BountyStatus.CANCELLED
        self._credit(stored.creator, stored.reward_units)
        return self._mine(sender, "cancel_bounty")
