"""
Event Models

Notifications emitted by the registry and the exchange engines. They are
append-only: the core publishes them after a state change commits and
never reads them back.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from nftmarket.models.base import MarketModel, generate_id, utc_now


class MarketEventType(str, Enum):
    """Types of events in the marketplace."""

    # Registry Events
    COLLECTION_CREATED = "registry.collection_created"
    COLLECTION_ACTIVATED = "registry.collection_activated"
    COLLECTION_DEACTIVATED = "registry.collection_deactivated"
    NFT_MINTED = "registry.nft_minted"
    NFT_TRANSFERRED = "registry.nft_transferred"

    # Direct Sale Events
    LISTED = "sale.listed"
    SALE_CANCELLED = "sale.cancelled"
    SOLD = "sale.sold"

    # Auction Events
    AUCTION_CREATED = "auction.created"
    BID_PLACED = "auction.bid_placed"
    BID_REFUNDED = "auction.bid_refunded"
    AUCTION_FINALIZED = "auction.finalized"
    AUCTION_CANCELLED = "auction.cancelled"

    # Ledger Events
    FUNDS_WITHDRAWN = "ledger.funds_withdrawn"


class MarketEvent(MarketModel):
    """A single notification for external observers."""

    id: str = Field(default_factory=generate_id)
    type: MarketEventType
    nft_id: int | None = Field(default=None, description="Item the event concerns")
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    sequence: int = Field(default=0, ge=0, description="Position in the event log")
