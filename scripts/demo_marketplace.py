#!/usr/bin/env python3
"""
NFT Market - Demo Walk-through

Runs a direct sale and an auction end to end against an in-memory market,
driving time with a manual clock, and prints the resulting owners,
balances and notification log.

Usage:
    python scripts/demo_marketplace.py
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from nftmarket.config import get_settings
from nftmarket.kernel.clock import ManualClock
from nftmarket.kernel.context import MarketContext
from nftmarket.monitoring.logging import configure_logging
from nftmarket.services.marketplace import MarketplaceService


async def run_demo() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    clock = ManualClock()
    market = MarketplaceService(MarketContext(settings=settings, clock=clock))

    collection = await market.create_collection("Genesis", owner="alice")
    x = await market.mint_nft(collection.id, "Genesis #1", Decimal("1"), caller="alice")
    y = await market.mint_nft(collection.id, "Genesis #2", Decimal("0.1"), caller="alice")

    print("=== Direct sale ===")
    await market.sell_nft(x.id, seller="alice", price=Decimal("1.5"))
    receipt = await market.buy_nft(x.id, buyer="bob", paid_amount=Decimal("1.5"))
    print(f"NFT {x.id} sold to {receipt.buyer} for {receipt.price}")

    print("\n=== Auction ===")
    t0 = market.get_current_time()
    await market.create_auction(
        y.id,
        seller="alice",
        starting_price=Decimal("0.11"),
        start_time=t0,
        end_time=t0 + timedelta(hours=1),
    )
    await market.place_bid(y.id, bidder="bob", amount=Decimal("0.12"))
    await market.place_bid(y.id, bidder="carol", amount=Decimal("0.15"))
    clock.advance(seconds=3600)
    result = await market.finalize_auction(y.id, caller="dave")
    print(f"NFT {y.id} won by {result.winner} for {result.amount}")

    print("\n=== Owners ===")
    for nft_id in (x.id, y.id):
        print(f"  NFT {nft_id}: {market.owner_of(nft_id)}")

    print("\n=== Balances ===")
    for principal, amount in sorted(market.ctx.escrow.balances().items()):
        print(f"  {principal}: {amount}")

    print("\n=== Notifications ===")
    for event in market.ctx.events.history():
        print(f"  #{event.sequence} {event.type} nft={event.nft_id} {event.payload}")


def main() -> None:
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
