"""
Marketplace Models

Listings, auction terms, bids and escrow entries for the exchange engine.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import Field, model_validator

from nftmarket.models.base import ZERO, MarketModel, utc_now


class ListingMode(str, Enum):
    """Exchange mode an item is currently in."""
    NONE = "none"
    DIRECT_SALE = "direct_sale"
    AUCTION = "auction"


class AuctionState(str, Enum):
    """Lifecycle of an auction, derived from stored terms and the clock."""
    SCHEDULED = "scheduled"  # start_time not reached
    OPEN = "open"            # accepting bids
    ENDED = "ended"          # end_time passed, awaiting finalize/cancel
    CLOSED = "closed"        # finalized or cancelled


class EscrowPurpose(str, Enum):
    """Why value is being held for an item."""
    BID = "bid"
    SALE = "sale"


class Bid(MarketModel):
    """The highest admitted bid of an auction."""

    bidder: str
    amount: Decimal = Field(gt=0)
    placed_at: datetime = Field(default_factory=utc_now)


class AuctionTerms(MarketModel):
    """Time window, price floor and current leader of an auction."""

    starting_price: Decimal = Field(gt=0)
    start_time: datetime
    end_time: datetime
    highest_bid: Bid | None = None

    @model_validator(mode="after")
    def check_window(self) -> "AuctionTerms":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def current_price(self) -> Decimal:
        """Highest bid so far, zero before any bid."""
        return self.highest_bid.amount if self.highest_bid else ZERO


class Listing(MarketModel):
    """
    Exchange record attached to an item.

    Exactly one of ``price`` (direct sale) or ``auction`` is set while the
    listing is active.
    """

    listing_id: int = Field(ge=0)
    nft_id: int = Field(ge=1)
    mode: ListingMode
    seller: str
    price: Decimal | None = Field(default=None, gt=0)
    auction: AuctionTerms | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_mode_payload(self) -> "Listing":
        if self.mode == ListingMode.DIRECT_SALE and self.price is None:
            raise ValueError("Direct sale listing requires a price")
        if self.mode == ListingMode.AUCTION and self.auction is None:
            raise ValueError("Auction listing requires auction terms")
        return self

    @property
    def has_bids(self) -> bool:
        return self.auction is not None and self.auction.highest_bid is not None


class EscrowEntry(MarketModel):
    """Value held on behalf of a party pending settlement or refund."""

    nft_id: int
    purpose: EscrowPurpose
    amount: Decimal = Field(gt=0)
    depositor: str
    recipient: str | None = Field(
        default=None,
        description="Intended payee on successful settlement",
    )
    held_at: datetime = Field(default_factory=utc_now)


class SaleReceipt(MarketModel):
    """Outcome of a successful direct buy."""

    listing_id: int
    nft_id: int
    seller: str
    buyer: str
    price: Decimal
    refunded: Decimal = Field(default=ZERO, description="Excess returned to buyer")
    settled_at: datetime


class AuctionResult(MarketModel):
    """Outcome of a finalized auction."""

    listing_id: int
    nft_id: int
    seller: str
    winner: str | None = None
    amount: Decimal = Field(default=ZERO)
    settled_at: datetime
