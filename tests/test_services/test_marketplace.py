"""
Tests for Marketplace Service

Tests cover:
- Direct sale, auction and cancellation scenarios end to end
- Mutual exclusion between sale and auction listings
- Fund accounting across displaced bids
- All-or-nothing failure semantics
- Read-only queries and metrics
- Subscribers that call back into the market
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import structlog
from structlog.testing import capture_logs

from nftmarket.errors import (
    AlreadyListedError,
    AuctionNotEndedError,
    BidTooLowError,
    ErrorKind,
    HasBidsError,
    NotListedError,
    NotOwnerError,
)
from nftmarket.models.events import MarketEventType
from nftmarket.models.marketplace import AuctionState, EscrowPurpose, ListingMode


class TestDirectSaleScenario:
    """Item minted by A, listed at 1.5, bought by B paying exactly 1.5."""

    @pytest.mark.asyncio
    async def test_buy_transfers_ownership_and_pays_seller(self, market, listed_nft):
        before = market.balance_of("alice")

        receipt = await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert market.owner_of(listed_nft.id) == "bob"
        assert market.get_listing(listed_nft.id) is None
        assert market.ctx.listings.mode_of(listed_nft.id) == ListingMode.NONE
        assert market.balance_of("alice") - before == Decimal("1.5")
        assert receipt.refunded == Decimal("0")

    @pytest.mark.asyncio
    async def test_buy_leaves_nothing_in_escrow(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert market.ctx.escrow.held_for(listed_nft.id) == Decimal("0")
        assert market.ctx.escrow.total_held() == Decimal("0")

    @pytest.mark.asyncio
    async def test_ownership_changes_exactly_once(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        transfers = market.ctx.events.history(
            event_type=MarketEventType.NFT_TRANSFERRED, nft_id=listed_nft.id
        )
        assert len(transfers) == 1
        assert transfers[0].payload == {"from": "alice", "to": "bob"}

    @pytest.mark.asyncio
    async def test_second_buy_fails(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        with pytest.raises(NotListedError):
            await market.buy_nft(listed_nft.id, buyer="carol", paid_amount=Decimal("1.5"))

        assert market.owner_of(listed_nft.id) == "bob"
        assert market.balance_of("carol") == Decimal("0")

    @pytest.mark.asyncio
    async def test_new_owner_can_relist(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        listing = await market.sell_nft(listed_nft.id, seller="bob", price=Decimal("2"))

        assert listing.seller == "bob"
        assert market.is_listed_for_sale(listed_nft.id)

    @pytest.mark.asyncio
    async def test_previous_owner_cannot_relist(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        with pytest.raises(NotOwnerError):
            await market.sell_nft(listed_nft.id, seller="alice", price=Decimal("2"))


class TestAuctionScenario:
    """Auction at 0.1+, bids 0.12 by B and 0.15 by C, finalized after end."""

    @pytest.mark.asyncio
    async def test_displaced_bidder_refunded_and_winner_settled(
        self, market, clock, auctioned_nft
    ):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.12"))
        await market.place_bid(auctioned_nft.id, bidder="carol", amount=Decimal("0.15"))

        assert market.balance_of("bob") == Decimal("0.12")
        assert market.ctx.escrow.held_for(auctioned_nft.id, EscrowPurpose.BID) == Decimal("0.15")
        assert market.ctx.escrow.get(auctioned_nft.id, EscrowPurpose.BID).depositor == "carol"

        clock.advance(seconds=3600)
        result = await market.finalize_auction(auctioned_nft.id, caller="dave")

        assert result.winner == "carol"
        assert result.amount == Decimal("0.15")
        assert market.owner_of(auctioned_nft.id) == "carol"
        assert market.balance_of("alice") == Decimal("0.15")
        assert market.get_listing(auctioned_nft.id) is None
        assert market.ctx.escrow.total_held() == Decimal("0")

    @pytest.mark.asyncio
    async def test_finalize_twice_never_pays_twice(self, market, clock, auctioned_nft):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.2"))
        clock.advance(hours=2)
        await market.finalize_auction(auctioned_nft.id, caller="bob")

        with pytest.raises(NotListedError) as exc_info:
            await market.finalize_auction(auctioned_nft.id, caller="bob")

        assert exc_info.value.kind == ErrorKind.STATE_CONFLICT
        assert market.balance_of("alice") == Decimal("0.2")

    @pytest.mark.asyncio
    async def test_finalize_before_end_rejected(self, market, clock, auctioned_nft):
        clock.advance(seconds=3599)

        with pytest.raises(AuctionNotEndedError):
            await market.finalize_auction(auctioned_nft.id, caller="alice")

        assert market.nft_in_auction(auctioned_nft.id)

    @pytest.mark.asyncio
    async def test_finalize_without_bids_returns_item_unsold(self, market, clock, auctioned_nft):
        clock.advance(hours=1)

        result = await market.finalize_auction(auctioned_nft.id, caller="anyone")

        assert result.winner is None
        assert result.amount == Decimal("0")
        assert market.owner_of(auctioned_nft.id) == "alice"
        assert not market.nft_in_auction(auctioned_nft.id)
        finalized = market.ctx.events.history(event_type=MarketEventType.AUCTION_FINALIZED)
        assert finalized[-1].payload["winner"] is None


class TestCancelAuctionScenario:
    """cancelAuction fails once a bid exists, succeeds before any bid."""

    @pytest.mark.asyncio
    async def test_cancel_with_bid_fails(self, market, auctioned_nft):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.12"))

        with pytest.raises(HasBidsError):
            await market.cancel_auction(auctioned_nft.id, caller="alice")

        assert market.nft_in_auction(auctioned_nft.id)
        assert market.ctx.escrow.held_for(auctioned_nft.id) == Decimal("0.12")

    @pytest.mark.asyncio
    async def test_cancel_without_bids_resets_mode(self, market, auctioned_nft):
        await market.cancel_auction(auctioned_nft.id, caller="alice")

        assert market.ctx.listings.mode_of(auctioned_nft.id) == ListingMode.NONE
        assert market.auction_state(auctioned_nft.id) == AuctionState.CLOSED


class TestMutualExclusion:
    """An item is never in direct sale and auction at once."""

    @pytest.mark.asyncio
    async def test_cannot_auction_item_listed_for_sale(self, market, listed_nft, t0):
        with pytest.raises(AlreadyListedError):
            await market.create_auction(
                listed_nft.id,
                seller="alice",
                starting_price=Decimal("0.5"),
                start_time=t0,
                end_time=t0 + timedelta(hours=1),
            )

        assert market.is_listed_for_sale(listed_nft.id)
        assert not market.nft_in_auction(listed_nft.id)

    @pytest.mark.asyncio
    async def test_cannot_sell_item_in_auction(self, market, auctioned_nft):
        with pytest.raises(AlreadyListedError):
            await market.sell_nft(auctioned_nft.id, seller="alice", price=Decimal("1"))

        assert market.nft_in_auction(auctioned_nft.id)
        assert not market.is_listed_for_sale(auctioned_nft.id)

    @pytest.mark.asyncio
    async def test_switch_modes_after_cancel(self, market, listed_nft, t0):
        await market.cancel_sell(listed_nft.id, caller="alice")

        await market.create_auction(
            listed_nft.id,
            seller="alice",
            starting_price=Decimal("0.5"),
            start_time=t0,
            end_time=t0 + timedelta(hours=1),
        )

        assert market.nft_in_auction(listed_nft.id)
        assert not market.is_listed_for_sale(listed_nft.id)

    @pytest.mark.asyncio
    async def test_cannot_gift_listed_item(self, market, listed_nft):
        with pytest.raises(AlreadyListedError):
            await market.transfer_nft(listed_nft.id, caller="alice", to="bob")

        assert market.owner_of(listed_nft.id) == "alice"


class TestBidAccounting:
    """After N increasing bids only the last remains escrowed."""

    @pytest.mark.asyncio
    async def test_each_displaced_bidder_refunded_exactly(self, market, auctioned_nft):
        bids = [
            ("b1", Decimal("0.12")),
            ("b2", Decimal("0.13")),
            ("b3", Decimal("0.20")),
            ("b4", Decimal("0.21")),
            ("b5", Decimal("1.00")),
        ]
        for bidder, amount in bids:
            await market.place_bid(auctioned_nft.id, bidder=bidder, amount=amount)

        for bidder, amount in bids[:-1]:
            assert market.balance_of(bidder) == amount
        assert market.balance_of("b5") == Decimal("0")
        assert market.ctx.escrow.held_for(auctioned_nft.id) == Decimal("1.00")
        assert market.ctx.escrow.total_held() == Decimal("1.00")

        refunds = market.ctx.events.history(event_type=MarketEventType.BID_REFUNDED)
        assert [e.payload["bidder"] for e in refunds] == ["b1", "b2", "b3", "b4"]

    @pytest.mark.asyncio
    async def test_same_bidder_outbidding_self_gets_refund(self, market, auctioned_nft):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.12"))
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.14"))

        assert market.balance_of("bob") == Decimal("0.12")
        assert market.ctx.escrow.held_for(auctioned_nft.id) == Decimal("0.14")


class TestAtomicity:
    """Failed operations leave every store untouched."""

    @pytest.mark.asyncio
    async def test_rejected_bid_changes_nothing(self, market, auctioned_nft):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.15"))
        events_before = len(market.ctx.events.history())

        with pytest.raises(BidTooLowError):
            await market.place_bid(auctioned_nft.id, bidder="carol", amount=Decimal("0.15"))

        listing = market.get_listing(auctioned_nft.id)
        assert listing.auction.highest_bid.bidder == "bob"
        assert market.ctx.escrow.held_for(auctioned_nft.id) == Decimal("0.15")
        assert market.balance_of("bob") == Decimal("0")
        assert len(market.ctx.events.history()) == events_before

    @pytest.mark.asyncio
    async def test_failure_midway_rolls_back_transfer(self, market, listed_nft, monkeypatch):
        """A fault after the ownership change must undo it."""

        def broken_release(*args, **kwargs):
            raise RuntimeError("payout failed")

        monkeypatch.setattr(market.ctx.escrow, "release", broken_release)

        with pytest.raises(RuntimeError):
            await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        monkeypatch.undo()
        assert market.owner_of(listed_nft.id) == "alice"
        assert market.is_listed_for_sale(listed_nft.id)
        assert market.ctx.escrow.total_held() == Decimal("0")
        assert market.ctx.events.history(event_type=MarketEventType.SOLD) == []

    @pytest.mark.asyncio
    async def test_notifications_published_after_commit(self, market, listed_nft):
        seen = []

        async def observer(event):
            # State is already committed when observers run
            seen.append((event.type, market.owner_of(listed_nft.id), market.get_listing(listed_nft.id)))

        market.ctx.events.subscribe(observer, {MarketEventType.SOLD})
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert seen == [(MarketEventType.SOLD, "bob", None)]


class TestQueries:
    """Tests for read-only queries."""

    @pytest.mark.asyncio
    async def test_get_current_time_uses_clock(self, market, clock, t0):
        assert market.get_current_time() == t0
        clock.advance(seconds=10)
        assert market.get_current_time() == t0 + timedelta(seconds=10)

    @pytest.mark.asyncio
    async def test_get_listings_filters_by_mode(self, market, collection, t0):
        first = await market.mint_nft(collection.id, "A", Decimal("0.1"), caller="alice")
        second = await market.mint_nft(collection.id, "B", Decimal("0.1"), caller="alice")
        await market.sell_nft(first.id, seller="alice", price=Decimal("1"))
        await market.create_auction(
            second.id,
            seller="alice",
            starting_price=Decimal("0.2"),
            start_time=t0,
            end_time=t0 + timedelta(hours=1),
        )

        sales = market.get_listings(mode=ListingMode.DIRECT_SALE)
        auctions = market.get_listings(mode=ListingMode.AUCTION)

        assert [l.nft_id for l in sales] == [first.id]
        assert [l.nft_id for l in auctions] == [second.id]
        assert len(market.get_listings(seller="alice")) == 2
        assert market.get_listings(seller="bob") == []

    @pytest.mark.asyncio
    async def test_listing_ids_increase_from_zero(self, market, collection):
        first = await market.mint_nft(collection.id, "A", Decimal("0.1"), caller="alice")
        second = await market.mint_nft(collection.id, "B", Decimal("0.1"), caller="alice")

        a = await market.sell_nft(first.id, seller="alice", price=Decimal("1"))
        b = await market.sell_nft(second.id, seller="alice", price=Decimal("1"))

        assert (a.listing_id, b.listing_id) == (0, 1)


class TestWithdraw:
    """Tests for pulling out accumulated balances."""

    @pytest.mark.asyncio
    async def test_withdraw_pays_out_once(self, market, listed_nft):
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert await market.withdraw("alice") == Decimal("1.5")
        assert await market.withdraw("alice") == Decimal("0")
        assert market.balance_of("alice") == Decimal("0")

        withdrawals = market.ctx.events.history(event_type=MarketEventType.FUNDS_WITHDRAWN)
        assert len(withdrawals) == 1


class TestMetrics:
    """Committed and rejected operations are counted."""

    @pytest.mark.asyncio
    async def test_operations_and_rejections_counted(self, market, listed_nft):
        with pytest.raises(NotOwnerError):
            await market.sell_nft(listed_nft.id, seller="mallory", price=Decimal("1"))
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        metrics = market.ctx.metrics
        assert metrics.operations_total.get(operation="buy_nft") == 1
        assert metrics.operations_total.get(operation="sell_nft") == 1
        assert metrics.rejections_total.get(operation="sell_nft", kind="authorization") == 1

    @pytest.mark.asyncio
    async def test_gauges_follow_committed_state(self, market, auctioned_nft):
        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.3"))

        metrics = market.ctx.metrics
        assert metrics.active_listings.get(mode="auction") == 1
        assert metrics.active_listings.get(mode="direct_sale") == 0
        assert metrics.escrow_held.get() == pytest.approx(0.3)


class TestReentrantSubscribers:
    """Subscribers run after the writer lock is released."""

    @pytest.mark.asyncio
    async def test_buyer_relists_from_sold_handler(self, market, listed_nft):
        async def relist(event):
            await market.sell_nft(event.nft_id, seller=event.payload["buyer"], price=Decimal("2"))

        market.ctx.events.subscribe(relist, {MarketEventType.SOLD})

        await asyncio.wait_for(
            market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5")), timeout=3
        )

        listing = market.get_listing(listed_nft.id)
        assert market.owner_of(listed_nft.id) == "bob"
        assert listing.seller == "bob"
        assert listing.price == Decimal("2")

    @pytest.mark.asyncio
    async def test_events_keep_commit_order(self, market, listed_nft):
        async def relist(event):
            await market.sell_nft(event.nft_id, seller="bob", price=Decimal("2"))

        market.ctx.events.subscribe(relist, {MarketEventType.SOLD})
        await asyncio.wait_for(
            market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5")), timeout=3
        )

        types = [e.type for e in market.ctx.events.history()][-3:]
        assert types == [
            MarketEventType.NFT_TRANSFERRED,
            MarketEventType.SOLD,
            MarketEventType.LISTED,
        ]


class TestOperationCost:
    """Operations only save the records they change."""

    @pytest.mark.asyncio
    async def test_bid_work_does_not_grow_with_registry(
        self, market, collection, auctioned_nft, monkeypatch
    ):
        for i in range(300):
            await market.mint_nft(collection.id, f"Filler #{i}", Decimal("0.1"), caller="alice")

        journal = market.ctx.journal
        touched = []
        commit = journal.commit

        def counting_commit():
            touched.append(len(journal))
            commit()

        monkeypatch.setattr(journal, "commit", counting_commit)

        await market.place_bid(auctioned_nft.id, bidder="bob", amount=Decimal("0.2"))
        await market.place_bid(auctioned_nft.id, bidder="carol", amount=Decimal("0.3"))

        assert len(touched) == 2
        assert max(touched) <= 4

    @pytest.mark.asyncio
    async def test_failed_operation_keeps_untouched_records(self, market, collection, listed_nft):
        other = await market.mint_nft(collection.id, "Other", Decimal("0.1"), caller="alice")
        stored = market.get_nft(other.id)

        with pytest.raises(NotListedError):
            await market.buy_nft(other.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert market.get_nft(other.id) is stored


class TestTimestamps:
    """Model timestamps come from the market clock."""

    @pytest.mark.asyncio
    async def test_listing_and_event_use_market_clock(self, market, clock, nft, t0):
        clock.advance(minutes=5)

        listing = await market.sell_nft(nft.id, seller="alice", price=Decimal("1"))

        event = market.ctx.events.history(event_type=MarketEventType.LISTED)[-1]
        assert listing.created_at == t0 + timedelta(minutes=5)
        assert event.timestamp == t0 + timedelta(minutes=5)


class TestOperationLogging:
    """Log records emitted around each operation."""

    @pytest.mark.asyncio
    async def test_rejection_logged_once(self, market, listed_nft):
        with capture_logs() as logs:
            with pytest.raises(NotOwnerError):
                await market.sell_nft(listed_nft.id, seller="mallory", price=Decimal("1"))

        names = [entry["event"] for entry in logs]
        assert names.count("operation_rejected") == 1
        assert "sell_nft_failed" not in names

    @pytest.mark.asyncio
    async def test_operation_context_bound_during_call(self, market, listed_nft, monkeypatch):
        seen = {}
        release = market.ctx.escrow.release

        def recording_release(*args, **kwargs):
            seen.update(structlog.contextvars.get_contextvars())
            return release(*args, **kwargs)

        monkeypatch.setattr(market.ctx.escrow, "release", recording_release)
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert seen["operation"] == "buy_nft"
        assert seen["caller"] == "bob"
        leftover = structlog.contextvars.get_contextvars()
        assert "operation" not in leftover
        assert "caller" not in leftover

    @pytest.mark.asyncio
    async def test_context_cleared_before_subscribers_run(self, market, listed_nft):
        seen = []

        async def observer(event):
            seen.append(dict(structlog.contextvars.get_contextvars()))

        market.ctx.events.subscribe(observer, {MarketEventType.SOLD})
        await market.buy_nft(listed_nft.id, buyer="bob", paid_amount=Decimal("1.5"))

        assert seen == [{}]
