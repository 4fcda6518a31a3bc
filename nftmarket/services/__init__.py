"""
NFT Market Services

- AssetRegistry: collections, NFTs and ownership transfers
- ListingStore: per-item exchange mode with mutual exclusion
- EscrowLedger: held bids and sale proceeds, principal balances
- SaleEngine / AuctionEngine: the two exchange mechanisms
- MarketplaceService: caller-facing entry point (``services.marketplace``)
"""

from .auction_engine import AuctionEngine, auction_state
from .escrow import EscrowLedger
from .listing_store import ListingStore
from .registry import AssetRegistry
from .sale_engine import SaleEngine

__all__ = [
    "AssetRegistry",
    "AuctionEngine",
    "EscrowLedger",
    "ListingStore",
    "SaleEngine",
    "auction_state",
]
