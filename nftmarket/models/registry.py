"""
Registry Models

Collections and the NFTs minted under them.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from nftmarket.models.base import MarketModel, utc_now


class Collection(MarketModel):
    """
    A named collection owned by a single principal.

    NFTs can only be minted into a collection while it is active.
    """

    id: int = Field(ge=1, description="Monotonically assigned collection ID")
    name: str = Field(min_length=1, max_length=200)
    owner: str = Field(description="Principal that created the collection")
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)


class NFT(MarketModel):
    """
    A uniquely identified item with a single current owner.

    Identifiers are never reused; ``exists`` may be cleared but the record
    stays in the registry.
    """

    id: int = Field(ge=1, description="Monotonically assigned token ID")
    collection_id: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=200)
    owner: str
    mint_price: Decimal = Field(ge=0, frozen=True, description="Historical mint price")
    exists: bool = Field(default=True)
    minted_at: datetime = Field(default_factory=utc_now)
