"""
Auction Engine

Time-boxed ascending-price auctions.

States:
    SCHEDULED -> OPEN -> ENDED -> CLOSED

There is no timer. ``auction_state`` derives the state from the stored
terms and the time of the call, so a deadline only changes what the next
call may do. Bids are admitted over ``[start_time, end_time)``.

Escrow invariant: the value held for an auction always equals its current
highest bid. A displaced bid is refunded before the new one is held.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from nftmarket.errors import (
    AuctionNotEndedError,
    BidTooLowError,
    HasBidsError,
    NotListedError,
    NotOpenError,
    NotSellerError,
    SelfBidError,
)
from nftmarket.models.base import to_amount
from nftmarket.models.events import MarketEvent, MarketEventType
from nftmarket.models.marketplace import (
    AuctionResult,
    AuctionState,
    Bid,
    EscrowPurpose,
    Listing,
    ListingMode,
)

if TYPE_CHECKING:
    from nftmarket.kernel.context import MarketContext

logger = structlog.get_logger(__name__)


def auction_state(listing: Listing | None, now: datetime) -> AuctionState:
    """Lifecycle state of an auction listing at time ``now``."""
    if listing is None or listing.mode != ListingMode.AUCTION or listing.auction is None:
        return AuctionState.CLOSED
    terms = listing.auction
    if now < terms.start_time:
        return AuctionState.SCHEDULED
    if now < terms.end_time:
        return AuctionState.OPEN
    return AuctionState.ENDED


class AuctionEngine:
    """Owns listings while they are in auction mode."""

    def __init__(self, ctx: "MarketContext") -> None:
        self.ctx = ctx

    def _auction_listing(self, nft_id: int) -> Listing:
        listing = self.ctx.listings.get(nft_id)
        if listing is None or listing.mode != ListingMode.AUCTION:
            raise NotListedError("NFT is not in auction", field="nft_id", nft_id=nft_id)
        return listing

    def state_of(self, nft_id: int) -> AuctionState:
        return auction_state(self.ctx.listings.get(nft_id), self.ctx.now())

    async def create_auction(
        self,
        nft_id: int,
        seller: str,
        starting_price: Decimal | float | str,
        start_time: datetime,
        end_time: datetime,
    ) -> Listing:
        """Open an auction; it starts SCHEDULED or OPEN depending on ``start_time``."""
        async with self.ctx.transaction():
            listing = self.ctx.listings.open_auction(
                nft_id,
                seller,
                to_amount(starting_price, "starting_price"),
                start_time,
                end_time,
            )
            terms = listing.auction
            self.ctx.emit(MarketEvent(
                type=MarketEventType.AUCTION_CREATED,
                nft_id=nft_id,
                payload={
                    "listing_id": listing.listing_id,
                    "seller": seller,
                    "starting_price": str(terms.starting_price),
                    "start_time": terms.start_time.isoformat(),
                    "end_time": terms.end_time.isoformat(),
                },
            ))
        logger.info(
            "auction_created",
            nft_id=nft_id,
            seller=seller,
            state=auction_state(listing, self.ctx.now()).value,
        )
        return listing

    async def place_bid(
        self,
        nft_id: int,
        bidder: str,
        amount: Decimal | float | str,
    ) -> Bid:
        """
        Admit a bid strictly above the current highest.

        The previous highest bidder, if any, is refunded in full before the
        new amount goes into escrow.
        """
        value = to_amount(amount, "amount")
        async with self.ctx.transaction():
            listing = self.ctx.listings.get(nft_id)
            now = self.ctx.now()
            if auction_state(listing, now) != AuctionState.OPEN:
                raise NotOpenError(
                    field="nft_id",
                    nft_id=nft_id,
                    state=auction_state(listing, now).value,
                )
            terms = listing.auction
            if bidder == listing.seller:
                raise SelfBidError(field="bidder", nft_id=nft_id)
            if value < terms.starting_price:
                raise BidTooLowError(
                    "Bid is below the starting price",
                    field="amount",
                    minimum=str(terms.starting_price),
                )
            if value <= terms.current_price:
                raise BidTooLowError(
                    "Bid must be higher than the current highest bid",
                    field="amount",
                    highest=str(terms.current_price),
                )

            displaced = terms.highest_bid
            if displaced is not None:
                refunded = self.ctx.escrow.release(nft_id, EscrowPurpose.BID, displaced.bidder)
                self.ctx.emit(MarketEvent(
                    type=MarketEventType.BID_REFUNDED,
                    nft_id=nft_id,
                    payload={"bidder": displaced.bidder, "amount": str(refunded)},
                ))

            self.ctx.escrow.hold(
                nft_id, EscrowPurpose.BID, value, from_principal=bidder, recipient=listing.seller
            )
            bid = Bid(bidder=bidder, amount=value, placed_at=now)
            self.ctx.listings.record_bid(nft_id, bid)
            self.ctx.emit(MarketEvent(
                type=MarketEventType.BID_PLACED,
                nft_id=nft_id,
                payload={"bidder": bidder, "amount": str(value)},
            ))

        if displaced is not None:
            self.ctx.metrics.bid_refunds_total.inc()
        logger.info(
            "bid_placed",
            nft_id=nft_id,
            bidder=bidder,
            amount=str(value),
            displaced=displaced.bidder if displaced else None,
        )
        return bid

    async def finalize_auction(self, nft_id: int, caller: str) -> AuctionResult:
        """
        Settle an ended auction. Anyone may call this.

        Without bids the listing is simply closed and the winner is None.
        """
        async with self.ctx.transaction():
            listing = self._auction_listing(nft_id)
            now = self.ctx.now()
            if auction_state(listing, now) != AuctionState.ENDED:
                raise AuctionNotEndedError(
                    field="nft_id",
                    nft_id=nft_id,
                    end_time=listing.auction.end_time.isoformat(),
                )

            winning = listing.auction.highest_bid
            if winning is None:
                self.ctx.listings.close(nft_id)
                result = AuctionResult(
                    listing_id=listing.listing_id,
                    nft_id=nft_id,
                    seller=listing.seller,
                    settled_at=now,
                )
            else:
                # State first, payout after.
                self.ctx.registry.transfer(nft_id, listing.seller, winning.bidder)
                self.ctx.listings.close(nft_id)
                paid = self.ctx.escrow.release(nft_id, EscrowPurpose.BID, listing.seller)
                result = AuctionResult(
                    listing_id=listing.listing_id,
                    nft_id=nft_id,
                    seller=listing.seller,
                    winner=winning.bidder,
                    amount=paid,
                    settled_at=now,
                )

            self.ctx.emit(MarketEvent(
                type=MarketEventType.AUCTION_FINALIZED,
                nft_id=nft_id,
                payload={
                    "winner": result.winner,
                    "amount": str(result.amount),
                    "finalized_by": caller,
                },
            ))

        logger.info(
            "auction_finalized",
            nft_id=nft_id,
            winner=result.winner,
            amount=str(result.amount),
            finalized_by=caller,
        )
        return result

    async def cancel_auction(self, nft_id: int, caller: str) -> Listing:
        """Withdraw an auction that has no bids. Seller only."""
        async with self.ctx.transaction():
            listing = self._auction_listing(nft_id)
            if listing.seller != caller:
                raise NotSellerError(field="caller", nft_id=nft_id)
            if listing.has_bids:
                raise HasBidsError(
                    field="nft_id",
                    nft_id=nft_id,
                    highest=str(listing.auction.current_price),
                )

            closed = self.ctx.listings.close(nft_id)
            self.ctx.emit(MarketEvent(
                type=MarketEventType.AUCTION_CANCELLED,
                nft_id=nft_id,
                payload={"listing_id": listing.listing_id, "seller": caller},
            ))
        logger.info("auction_cancelled", nft_id=nft_id, seller=caller)
        return closed
