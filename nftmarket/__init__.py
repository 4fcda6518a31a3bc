"""
NFT Market - Registry and Exchange Core

Tracks collections and the NFTs minted under them, and brokers their
transfer through fixed-price sales and time-boxed ascending auctions with
escrowed funds.
"""

__version__ = "1.0.0"

from nftmarket.config import settings

__all__ = ["settings", "__version__"]
