"""
Tests for datamarket/ledger/memory.py

Tests the in-process registry: guards, escrow balances, the bounded event
query and simulated outages.
"""

import pytest

from datamarket.errors import Rejected, Unavailable
from datamarket.ledger.memory import PLATFORM_ACCOUNT, InMemoryLedger
from datamarket.models import BountyStatus
from datamarket.money import to_units

from conftest import BUYER, DAY, NOW, OTHER, SELLER

COIN = 10 ** 18


async def _bounty(ledger, reward=40, deadline=NOW + DAY):
    receipt = await ledger.create_bounty(
        SELLER, "Labelled tweets", "10k rows", "QmMeta", "nlp", deadline, reward * COIN,
    )
    return receipt.result


# ============================================================================
# DATASETS
# ============================================================================

class TestDatasets:
    """Test dataset registration and purchase."""

    @pytest.mark.asyncio
    async def test_register_assigns_sequential_ids(self, ledger):
        first = await ledger.register_dataset(SELLER, "Qm1", "QmM1", COIN, "nlp")
        second = await ledger.register_dataset(SELLER, "Qm2", "QmM2", COIN, "cv")
        assert (first.result, second.result) == (0, 1)
        assert second.block_number == first.block_number + 1
        assert await ledger.get_dataset_count() == 2

    @pytest.mark.asyncio
    async def test_unknown_dataset_is_none(self, ledger):
        assert await ledger.get_dataset(42) is None

    @pytest.mark.asyncio
    async def test_owner_lookup_is_case_insensitive(self, ledger):
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", COIN, "nlp")
        assert await ledger.get_datasets_by_owner(SELLER.upper().replace("0X", "0x")) == [0]

    @pytest.mark.asyncio
    async def test_metadata_update_owner_only(self, ledger):
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", COIN, "nlp")
        with pytest.raises(Rejected) as exc_info:
            await ledger.update_dataset_metadata(BUYER, 0, "QmEvil")
        assert exc_info.value.reason == "Not the owner"
        await ledger.update_dataset_metadata(SELLER, 0, "QmM2")
        assert (await ledger.get_dataset(0)).metadata_hash == "QmM2"

    @pytest.mark.asyncio
    async def test_purchase_requires_full_payment(self, ledger):
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", 10 * COIN, "nlp")
        with pytest.raises(Rejected) as exc_info:
            await ledger.purchase_dataset(BUYER, 0, 10 * COIN - 1)
        assert exc_info.value.reason == "Insufficient payment"

    @pytest.mark.asyncio
    async def test_purchase_of_unknown_dataset(self, ledger):
        with pytest.raises(Rejected) as exc_info:
            await ledger.purchase_dataset(BUYER, 5, COIN)
        assert exc_info.value.reason == "Dataset not active"

    @pytest.mark.asyncio
    async def test_purchase_moves_funds(self, ledger):
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", 10 * COIN, "nlp")
        await ledger.purchase_dataset(BUYER, 0, 10 * COIN)
        assert ledger.balance_of(BUYER) == -10 * COIN
        assert ledger.balance_of(PLATFORM_ACCOUNT) == 10 * COIN

    @pytest.mark.asyncio
    async def test_enforced_balances(self, clock):
        ledger = InMemoryLedger(clock=clock, enforce_balances=True)
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", 10 * COIN, "nlp")
        with pytest.raises(Rejected) as exc_info:
            await ledger.purchase_dataset(BUYER, 0, 10 * COIN)
        assert exc_info.value.reason == "Insufficient funds"

        ledger.fund(BUYER, 10 * COIN)
        await ledger.purchase_dataset(BUYER, 0, 10 * COIN)
        assert ledger.balance_of(BUYER) == 0


# ============================================================================
# PURCHASE EVENTS
# ============================================================================

class TestPurchaseEvents:
    """Test the bounded event query."""

    @pytest.mark.asyncio
    async def test_events_for_buyer_only(self, ledger):
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", COIN, "nlp")
        receipt = await ledger.purchase_dataset(BUYER, 0, COIN)
        await ledger.purchase_dataset(OTHER, 0, COIN)

        head = await ledger.get_block_number()
        events = await ledger.get_purchase_events(BUYER, 0, head)
        assert len(events) == 1
        assert events[0].transaction_id == receipt.tx_hash
        assert events[0].timestamp == NOW

    @pytest.mark.asyncio
    async def test_range_over_window_rejected(self, clock):
        ledger = InMemoryLedger(clock=clock, event_window=10)
        with pytest.raises(Rejected, match="exceeds limit of 10"):
            await ledger.get_purchase_events(BUYER, 0, 11)
        assert await ledger.get_purchase_events(BUYER, 0, 10) == []

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, ledger):
        with pytest.raises(Rejected):
            await ledger.get_purchase_events(BUYER, 5, 4)

    @pytest.mark.asyncio
    async def test_hidden_transaction_ids(self, clock):
        ledger = InMemoryLedger(clock=clock, expose_tx_ids=False)
        await ledger.register_dataset(SELLER, "Qm1", "QmM1", COIN, "nlp")
        await ledger.purchase_dataset(BUYER, 0, COIN)
        events = await ledger.get_purchase_events(BUYER, 0, await ledger.get_block_number())
        assert events[0].transaction_id is None


# ============================================================================
# BOUNTY GUARDS
# ============================================================================

class TestBountyGuards:
    """Test the bounty registry guards and escrow."""

    @pytest.mark.asyncio
    async def test_create_guards(self, ledger):
        with pytest.raises(Rejected) as exc_info:
            await ledger.create_bounty(SELLER, "t", "d", "m", "c", NOW + DAY, 0)
        assert exc_info.value.reason == "Reward must be greater than 0"
        with pytest.raises(Rejected) as exc_info:
            await ledger.create_bounty(SELLER, "t", "d", "m", "c", NOW, COIN)
        assert exc_info.value.reason == "Deadline must be in the future"

    @pytest.mark.asyncio
    async def test_create_escrows_reward(self, ledger):
        bounty_id = await _bounty(ledger)
        bounty = await ledger.get_bounty(bounty_id)
        assert bounty.status is BountyStatus.ACTIVE
        assert bounty.fee_bps == 250
        assert ledger.balance_of(SELLER) == -40 * COIN

    @pytest.mark.asyncio
    async def test_submit_after_deadline(self, ledger, clock):
        bounty_id = await _bounty(ledger)
        clock.advance(DAY)
        with pytest.raises(Rejected) as exc_info:
            await ledger.submit_to_bounty(BUYER, bounty_id, "QmSub", "rows")
        assert exc_info.value.reason == "Bounty deadline passed"

    @pytest.mark.asyncio
    async def test_approve_pays_net_and_fee(self, ledger):
        bounty_id = await _bounty(ledger)
        await ledger.submit_to_bounty(BUYER, bounty_id, "QmSub", "rows")
        await ledger.approve_bounty(SELLER, bounty_id, 0)

        bounty = await ledger.get_bounty(bounty_id)
        assert bounty.status is BountyStatus.FULFILLED
        assert bounty.fulfiller == BUYER
        assert ledger.balance_of(BUYER) == 39 * COIN
        assert ledger.balance_of(PLATFORM_ACCOUNT) == COIN
        assert (await ledger.get_submissions(bounty_id))[0].approved is True

    @pytest.mark.asyncio
    async def test_approve_guards(self, ledger):
        bounty_id = await _bounty(ledger)
        with pytest.raises(Rejected) as exc_info:
            await ledger.approve_bounty(BUYER, bounty_id, 0)
        assert exc_info.value.reason == "Only creator can approve"
        with pytest.raises(Rejected) as exc_info:
            await ledger.approve_bounty(SELLER, bounty_id, 0)
        assert exc_info.value.reason == "Invalid submission index"
        with pytest.raises(Rejected) as exc_info:
            await ledger.approve_bounty(SELLER, 99, 0)
        assert exc_info.value.reason == "Bounty does not exist"

    @pytest.mark.asyncio
    async def test_cancel_refunds_creator(self, ledger):
        bounty_id = await _bounty(ledger)
        await ledger.cancel_bounty(SELLER, bounty_id)
        assert (await ledger.get_bounty(bounty_id)).status is BountyStatus.CANCELLED
        assert ledger.balance_of(SELLER) == 0
        assert ledger.balance_of(PLATFORM_ACCOUNT) == 0

    @pytest.mark.asyncio
    async def test_terminal_states_reject_everything(self, ledger):
        bounty_id = await _bounty(ledger)
        await ledger.cancel_bounty(SELLER, bounty_id)
        for call in (
            ledger.cancel_bounty(SELLER, bounty_id),
            ledger.approve_bounty(SELLER, bounty_id, 0),
            ledger.submit_to_bounty(BUYER, bounty_id, "QmSub", "rows"),
        ):
            with pytest.raises(Rejected) as exc_info:
                await call
            assert exc_info.value.reason == "Bounty not active"

    @pytest.mark.asyncio
    async def test_cancel_by_stranger(self, ledger):
        bounty_id = await _bounty(ledger)
        with pytest.raises(Rejected) as exc_info:
            await ledger.cancel_bounty(OTHER, bounty_id)
        assert exc_info.value.reason == "Only creator can cancel"

    @pytest.mark.asyncio
    async def test_submitter_index(self, ledger):
        first = await _bounty(ledger)
        second = await _bounty(ledger)
        await ledger.submit_to_bounty(BUYER, second, "QmSub", "rows")
        assert await ledger.get_bounties_by_submitter(BUYER) == [second]
        assert await ledger.get_bounties_by_creator(SELLER) == [first, second]


# ============================================================================
# OUTAGES
# ============================================================================

class TestOutages:
    """Test simulated transport failures."""

    @pytest.mark.asyncio
    async def test_unavailable_operation(self, ledger):
        ledger.unavailable.add("get_block_number")
        with pytest.raises(Unavailable) as exc_info:
            await ledger.get_block_number()
        assert exc_info.value.outcome_unknown is False
        assert exc_info.value.operation == "get_block_number"

        ledger.unavailable.clear()
        assert await ledger.get_block_number() == 0

    @pytest.mark.asyncio
    async def test_failed_write_changes_nothing(self, ledger):
        ledger.unavailable.add("register_dataset")
        with pytest.raises(Unavailable):
            await ledger.register_dataset(SELLER, "Qm1", "QmM1", to_units(1), "nlp")
        assert await ledger.get_dataset_count() == 0
