"""
NFT Market Models

Pydantic models for all domain entities.
"""

from nftmarket.models.base import MarketModel
from nftmarket.models.events import MarketEvent, MarketEventType
from nftmarket.models.marketplace import (
    AuctionResult,
    AuctionState,
    AuctionTerms,
    Bid,
    EscrowEntry,
    EscrowPurpose,
    Listing,
    ListingMode,
    SaleReceipt,
)
from nftmarket.models.registry import NFT, Collection

__all__ = [
    "MarketModel",
    "MarketEvent",
    "MarketEventType",
    "AuctionResult",
    "AuctionState",
    "AuctionTerms",
    "Bid",
    "EscrowEntry",
    "EscrowPurpose",
    "Listing",
    "ListingMode",
    "SaleReceipt",
    "NFT",
    "Collection",
]
