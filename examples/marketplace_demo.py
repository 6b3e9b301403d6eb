"""
datamarket/examples/marketplace_demo.py

Walk through the engine against the in-memory ledger.

This shows how a storefront uses datamarket to:
1. List datasets and quote a purchase
2. Buy a dataset and reconcile purchases after the event window moves on
3. Run a bounty from creation to approval
4. Read revenue analytics for an account

Usage:
    python examples/marketplace_demo.py
"""

import logging
import time

import trio

from datamarket import MarketplaceEngine, Session
from datamarket.ledger import InMemoryLedger

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [DEMO] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)

SELLER = "0x" + "a1" * 20
BUYER = "0x" + "b2" * 20
DAY = 24 * 60 * 60


async def main():
    ledger = InMemoryLedger(event_window=50)
    engine = MarketplaceEngine(ledger)
    seller = Session(SELLER)
    buyer = Session(BUYER)

    # Listing and quoting
    listing = await engine.register_dataset(seller, "QmTweets", "QmTweetsMeta", "100", "nlp")
    await engine.register_dataset(seller, "QmFaces", "QmFacesMeta", "40", "vision")
    quote = engine.quote_purchase(listing.dataset.price)
    logger.info(f"Quote for dataset {listing.dataset.id}: {quote.to_dict()}")

    # Purchase, then let the ledger's event window move past it
    await engine.purchase_dataset(buyer, listing.dataset.id)
    ledger.advance_blocks(ledger.event_window * 2)
    for view in await engine.reconcile_purchases(buyer):
        logger.info(f"Purchase of dataset {view.dataset.id} at {view.record.price} ({view.source})")

    # Bounty lifecycle
    bounty = await engine.create_bounty(
        buyer, "Labelled tweets", "10k rows with sentiment", "QmBountyMeta", "nlp",
        deadline=int(time.time()) + 7 * DAY, reward="40",
    )
    await engine.submit_to_bounty(seller, bounty.id, "QmLabelled", "10k rows")
    settlement = await engine.approve_bounty(buyer, bounty.id, 0)
    logger.info(
        f"Bounty {bounty.id} paid {settlement.net_reward} to {settlement.fulfiller} "
        f"(fee {settlement.quote.platform_fee})"
    )

    # Analytics
    summary = await engine.period_analytics(buyer, days=30)
    logger.info(f"30 day analytics: {summary.to_dict()}")
    dashboard = await engine.dashboard(seller)
    logger.info(f"Seller dashboard: {dashboard.to_dict()}")
    logger.info(f"Engine stats: {engine.get_stats()}")


if __name__ == "__main__":
    trio.run(main)
