"""
datamarket/ledger/client.py

Abstract boundary to the remote registry ledger.

The engine never owns dataset or bounty state; it reads snapshots and
submits state-changing operations through a LedgerClient. Money crosses
this boundary as integer ledger units (wei); implementations convert
snapshots to Decimal via datamarket.ledger.codec.

Subclass LedgerClient to implement different ledger backends:
- InMemoryLedger: in-process registry for development and tests
- Web3LedgerClient: contract calls over an EVM JSON-RPC endpoint
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..config import DEFAULT_EVENT_WINDOW
from ..models import Bounty, Dataset, Submission

logger = logging.getLogger("datamarket.ledger.client")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class PurchaseEvent:
    """
    A purchase observed through the bounded event query.

    transaction_id is None when the ledger does not expose one.
    """
    dataset_id: int
    buyer: str
    price_units: int
    timestamp: int
    block_number: int = 0
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class TxReceipt:
    """Outcome of a confirmed write."""
    tx_hash: str
    block_number: int = 0
    result: Optional[int] = None   # id returned by register/create calls

    def to_dict(self) -> dict:
        return {
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "result": self.result,
        }


# ============================================================================
# ABSTRACT LEDGER CLIENT
# ============================================================================

class LedgerClient(ABC):
    """
    Read/write interface over the dataset and bounty registries.

    Every method is a suspension point. Writes return only after the
    ledger confirmed them, and raise:
    - Rejected when a guard condition fails
    - Unavailable when the transport fails (outcome_unknown tells whether
      the write may have landed)
    """

    event_window: int = DEFAULT_EVENT_WINDOW

    # ------------------------------------------------------------------
    # Dataset registry reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_dataset(self, dataset_id: int) -> Optional[Dataset]:
        """Get a dataset snapshot, or None if the id was never registered."""
        pass

    @abstractmethod
    async def get_dataset_count(self) -> int:
        """Total datasets ever registered."""
        pass

    @abstractmethod
    async def get_datasets_by_owner(self, owner: str) -> List[int]:
        """Ids of the datasets registered by owner."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current ledger head."""
        pass

    @abstractmethod
    async def get_purchase_events(
        self,
        account: str,
        from_block: int,
        to_block: int,
    ) -> List[PurchaseEvent]:
        """
        Query purchase events for a buyer in [from_block, to_block].

        The range may not exceed event_window blocks. Results cover that
        window only, never full history.
        """
        pass

    # ------------------------------------------------------------------
    # Bounty registry reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_bounty(self, bounty_id: int) -> Optional[Bounty]:
        """Get a bounty snapshot, or None if the id does not exist."""
        pass

    @abstractmethod
    async def get_bounty_count(self) -> int:
        """Total bounties ever created."""
        pass

    @abstractmethod
    async def get_submissions(self, bounty_id: int) -> List[Submission]:
        """Submissions of a bounty in submission order."""
        pass

    @abstractmethod
    async def get_bounties_by_creator(self, creator: str) -> List[int]:
        pass

    @abstractmethod
    async def get_bounties_by_submitter(self, submitter: str) -> List[int]:
        pass

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def register_dataset(
        self,
        sender: str,
        content_hash: str,
        metadata_hash: str,
        price_units: int,
        category: str,
    ) -> TxReceipt:
        """Register a dataset. receipt.result holds the new dataset id."""
        pass

    @abstractmethod
    async def update_dataset_metadata(
        self,
        sender: str,
        dataset_id: int,
        metadata_hash: str,
    ) -> TxReceipt:
        """Owner-only metadata update."""
        pass

    @abstractmethod
    async def purchase_dataset(
        self,
        sender: str,
        dataset_id: int,
        payment_units: int,
    ) -> TxReceipt:
        """Pay for a dataset. The ledger requires payment >= listed price."""
        pass

    @abstractmethod
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
        """Create a bounty escrowing reward_units. receipt.result holds the id."""
        pass

    @abstractmethod
    async def submit_to_bounty(
        self,
        sender: str,
        bounty_id: int,
        content_hash: str,
        description: str,
    ) -> TxReceipt:
        pass

    @abstractmethod
    async def approve_bounty(
        self,
        sender: str,
        bounty_id: int,
        submission_index: int,
    ) -> TxReceipt:
        """Creator-only. Releases reward minus fee to the submitter."""
        pass

    @abstractmethod
    async def cancel_bounty(self, sender: str, bounty_id: int) -> TxReceipt:
        """Creator-only. Returns the full escrow to the creator."""
        pass
