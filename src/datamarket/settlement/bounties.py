"""
datamarket/settlement/bounties.py

Bounty State Machine.

    ACTIVE --approve--> FULFILLED
    ACTIVE --cancel---> CANCELLED

Both targets are terminal. The ledger owns bounty state and escrow; this
module checks the guards against a fresh snapshot before every write so
callers get a clear Rejected without paying for a doomed transaction, then
lets the ledger enforce them again authoritatively.

A bounty past its deadline stays ACTIVE. The deadline only blocks new
submissions; approve and cancel remain available until a terminal state.

Usage:
    machine = BountyStateMachine(ledger)
    bounty = await machine.create(creator, "Labelled tweets", "...", "Qm..", "nlp",
                                  deadline=now + 7 * 86400, reward="40")
    await machine.submit(submitter, bounty.id, "QmData..", "10k rows")
    settlement = await machine.approve(creator, bounty.id, 0)
    settlement.quote.net_reward   # Decimal('39.0000')
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from ..errors import InvalidAmount, MarketError, PayloadError, Rejected
from ..ledger.client import LedgerClient, TxReceipt
from ..ledger.retry import submit_write
from ..metrics import MetricsCollector
from ..models import Bounty, BountyStatus, Submission, normalize_account, same_account
from ..money import AmountLike, to_decimal, to_units
from ..session import Session
from .fees import BountyFeeQuote, quote_bounty_fee

logger = logging.getLogger("datamarket.settlement.bounties")

STATUS_FILTERS = ("all", "active", "fulfilled", "cancelled")
SORT_ORDERS = ("newest", "reward", "deadline")


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class BountySettlement:
    """Outcome of an approval: who was paid and how the reward was split."""
    bounty: Bounty
    submission: Submission
    quote: BountyFeeQuote
    receipt: TxReceipt

    @property
    def fulfiller(self) -> str:
        return self.submission.submitter

    @property
    def net_reward(self) -> Decimal:
        return self.quote.net_reward

    def to_dict(self) -> dict:
        return {
            "bounty": self.bounty.to_dict(),
            "fulfiller": self.fulfiller,
            "fee": self.quote.to_dict(),
            "receipt": self.receipt.to_dict(),
        }


@dataclass(frozen=True)
class BountyRefund:
    """Outcome of a cancellation. The full escrow goes back, no fee."""
    bounty: Bounty
    refunded: Decimal
    receipt: TxReceipt

    def to_dict(self) -> dict:
        return {
            "bounty": self.bounty.to_dict(),
            "refunded": str(self.refunded),
            "receipt": self.receipt.to_dict(),
        }


# ============================================================================
# LISTING
# ============================================================================

def filter_and_sort(
    bounties: List[Bounty],
    status_filter: str = "all",
    sort: str = "newest",
) -> List[Bounty]:
    """
    Filter bounties by status and order them.

    Args:
        status_filter: all, active, fulfilled or cancelled
        sort: newest (created-at desc), reward (desc) or deadline (asc)

    Raises:
        ValueError: unknown filter or sort order
    """
    if status_filter not in STATUS_FILTERS:
        raise ValueError(
            f"Invalid status filter: {status_filter}. Valid options: {', '.join(STATUS_FILTERS)}"
        )
    if sort not in SORT_ORDERS:
        raise ValueError(f"Invalid sort order: {sort}. Valid options: {', '.join(SORT_ORDERS)}")

    if status_filter != "all":
        wanted = BountyStatus.from_string(status_filter)
        bounties = [b for b in bounties if b.status is wanted]

    if sort == "reward":
        return sorted(bounties, key=lambda b: (-b.reward, b.id))
    if sort == "deadline":
        return sorted(bounties, key=lambda b: (b.deadline, b.id))
    return sorted(bounties, key=lambda b: (-b.created_at, -b.id))


# ============================================================================
# STATE MACHINE
# ============================================================================

class BountyStateMachine:
    """
    Drives bounty creation, submission, approval and cancellation.

    Writes are never retried. A failed write is logged, counted and
    re-raised unchanged, so Unavailable.outcome_unknown reaches the caller.
    """

    def __init__(self, ledger: LedgerClient, metrics: Optional[MetricsCollector] = None):
        self.ledger = ledger
        self.metrics = metrics

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def get(self, bounty_id: int, operation: str = "get_bounty") -> Bounty:
        """Fresh snapshot of a bounty. Rejected if it does not exist."""
        bounty = await self.ledger.get_bounty(bounty_id)
        if bounty is None:
            raise Rejected("Bounty does not exist", operation)
        return bounty

    async def _refresh(self, bounty_id: int, expected: Bounty) -> Bounty:
        """Re-read after a confirmed write; fall back to the expected snapshot."""
        try:
            bounty = await self.ledger.get_bounty(bounty_id)
        except MarketError as e:
            logger.warning(f"Could not re-read bounty {bounty_id} after write: {e}")
            return expected
        return bounty if bounty is not None else expected

    def _record_transition(self, status: BountyStatus) -> None:
        if self.metrics:
            self.metrics.record_bounty_transition(str(status))

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    async def create(
        self,
        session: Session,
        title: str,
        description: str,
        metadata_hash: str,
        category: str,
        deadline: int,
        reward: AmountLike,
    ) -> Bounty:
        """
        Create a bounty, escrowing the reward with the ledger.

        Raises:
            InvalidAmount: reward is not greater than 0
            ValueError: empty title
            Rejected: deadline not strictly in the future, or a ledger guard
            Unavailable: transport failure
        """
        value = to_decimal(reward, "reward")
        if value <= 0:
            raise InvalidAmount(f"reward must be greater than 0, got {value}", reward)
        reward_units = to_units(value)
        if not title or not title.strip():
            raise ValueError("Bounty title is required")
        deadline = int(deadline)
        now = session.now()
        if deadline <= now:
            raise Rejected("Deadline must be in the future", "create_bounty")

        receipt = await submit_write(
            "create_bounty",
            lambda: self.ledger.create_bounty(
                session.account, title, description, metadata_hash, category, deadline, reward_units,
            ),
            self.metrics,
        )
        bounty_id = receipt.result
        expected = Bounty(
            id=bounty_id,
            creator=session.account,
            title=title,
            description=description,
            metadata_hash=metadata_hash,
            category=category,
            reward=value,
            deadline=deadline,
            created_at=int(now),
        )
        bounty = await self._refresh(bounty_id, expected)
        self._record_transition(BountyStatus.ACTIVE)
        logger.info(f"Bounty {bounty_id} created by {session.account} with reward {value}")
        return bounty

    async def submit(
        self,
        session: Session,
        bounty_id: int,
        content_hash: str,
        description: str,
    ) -> Submission:
        """
        Submit a candidate fulfillment. Does not change the bounty's status.

        Raises:
            Rejected: bounty not ACTIVE, or deadline passed
        """
        bounty = await self.get(bounty_id, "submit_to_bounty")
        if not bounty.is_active:
            raise Rejected("Bounty not active", "submit_to_bounty")
        if bounty.is_expired(session.now()):
            raise Rejected("Bounty deadline passed", "submit_to_bounty")

        await submit_write(
            "submit_to_bounty",
            lambda: self.ledger.submit_to_bounty(session.account, bounty_id, content_hash, description),
            self.metrics,
        )
        submission = Submission(
            bounty_id=bounty_id,
            submitter=session.account,
            content_hash=content_hash,
            description=description,
            timestamp=int(session.now()),
        )
        logger.info(f"Submission to bounty {bounty_id} by {session.account}")
        return submission

    async def approve(self, session: Session, bounty_id: int, submission_index: int) -> BountySettlement:
        """
        Approve a submission, fulfilling the bounty.

        The fee is computed at the rate recorded on the bounty when it
        was created.

        Raises:
            Rejected: caller is not the creator, bounty not ACTIVE, or no
                such submission
        """
        bounty = await self.get(bounty_id, "approve_bounty")
        if not same_account(bounty.creator, session.account):
            raise Rejected("Only creator can approve", "approve_bounty")
        if not bounty.is_active:
            raise Rejected("Bounty not active", "approve_bounty")
        submissions = await self.ledger.get_submissions(bounty_id)
        if not 0 <= submission_index < len(submissions):
            raise Rejected("Invalid submission index", "approve_bounty")
        chosen = submissions[submission_index]
        quote = quote_bounty_fee(bounty.reward, bounty.fee_bps)

        receipt = await submit_write(
            "approve_bounty",
            lambda: self.ledger.approve_bounty(session.account, bounty_id, submission_index),
            self.metrics,
        )
        expected = replace(bounty, status=BountyStatus.FULFILLED, fulfiller=chosen.submitter)
        fulfilled = await self._refresh(bounty_id, expected)
        self._record_transition(BountyStatus.FULFILLED)
        logger.info(
            f"Bounty {bounty_id} fulfilled by {chosen.submitter}: "
            f"{quote.net_reward} released, {quote.platform_fee} fee"
        )
        return BountySettlement(
            bounty=fulfilled,
            submission=replace(chosen, approved=True),
            quote=quote,
            receipt=receipt,
        )

    async def cancel(self, session: Session, bounty_id: int) -> BountyRefund:
        """
        Cancel a bounty and refund the full escrow to its creator.

        Raises:
            Rejected: caller is not the creator, or bounty not ACTIVE
        """
        bounty = await self.get(bounty_id, "cancel_bounty")
        if not same_account(bounty.creator, session.account):
            raise Rejected("Only creator can cancel", "cancel_bounty")
        if not bounty.is_active:
            raise Rejected("Bounty not active", "cancel_bounty")

        receipt = await submit_write(
            "cancel_bounty",
            lambda: self.ledger.cancel_bounty(session.account, bounty_id),
            self.metrics,
        )
        cancelled = await self._refresh(bounty_id, replace(bounty, status=BountyStatus.CANCELLED))
        self._record_transition(BountyStatus.CANCELLED)
        logger.info(f"Bounty {bounty_id} cancelled, {bounty.reward} refunded to {bounty.creator}")
        return BountyRefund(bounty=cancelled, refunded=bounty.reward, receipt=receipt)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def _fetch(self, bounty_ids: List[int]) -> List[Bounty]:
        bounties = []
        for bounty_id in bounty_ids:
            try:
                bounty = await self.ledger.get_bounty(bounty_id)
            except PayloadError as e:
                logger.warning(f"Skipping bounty {bounty_id}: {e}")
                continue
            if bounty is not None:
                bounties.append(bounty)
        return bounties

    async def list_bounties(self, status_filter: str = "all", sort: str = "newest") -> List[Bounty]:
        """All bounties on the ledger, filtered and sorted."""
        # Validate before touching the ledger
        filter_and_sort([], status_filter, sort)
        count = await self.ledger.get_bounty_count()
        return filter_and_sort(await self._fetch(list(range(count))), status_filter, sort)

    async def bounties_by_creator(self, account: str) -> List[Bounty]:
        ids = await self.ledger.get_bounties_by_creator(normalize_account(account))
        return filter_and_sort(await self._fetch(ids))

    async def bounties_by_submitter(self, account: str) -> List[Bounty]:
        ids = await self.ledger.get_bounties_by_submitter(normalize_account(account))
        return filter_and_sort(await self._fetch(ids))

    async def get_submissions(self, bounty_id: int) -> List[Submission]:
        await self.get(bounty_id, "get_submissions")
        return await self.ledger.get_submissions(bounty_id)
