"""
Listing Store

Per-item record of the current exchange mode. An item is in at most one of
direct sale or auction at any instant; opening either requires the item to
be unlisted and the seller to be its current owner.
"""

from collections import Counter
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import structlog

from nftmarket.config import Settings
from nftmarket.errors import (
    AlreadyListedError,
    CollectionInactiveError,
    InvalidPriceError,
    InvalidWindowError,
    NotOwnerError,
    PriceTooLowError,
)
from nftmarket.models.base import ensure_utc, utc_now
from nftmarket.models.marketplace import AuctionTerms, Bid, Listing, ListingMode
from nftmarket.services.journal import UndoJournal
from nftmarket.services.registry import AssetRegistry

logger = structlog.get_logger(__name__)


class ListingStore:
    """Active listings keyed by NFT id."""

    def __init__(
        self,
        registry: AssetRegistry,
        settings: Settings,
        journal: UndoJournal | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._journal = journal if journal is not None else UndoJournal()
        self._now = now or utc_now
        self._listings: dict[int, Listing] = {}
        self._mode_counts: Counter[str] = Counter()
        self._listing_counter = 0

    def _check_can_list(self, nft_id: int, seller: str) -> None:
        nft = self._registry.get_nft(nft_id)
        if nft.owner != seller:
            raise NotOwnerError("You don't own this NFT", field="seller", nft_id=nft_id)
        if nft_id in self._listings:
            raise AlreadyListedError(
                field="nft_id",
                nft_id=nft_id,
                mode=self._listings[nft_id].mode,
            )
        if not self._registry.is_active(nft.collection_id):
            raise CollectionInactiveError(field="nft_id", collection_id=nft.collection_id)

    def _next_listing_id(self) -> int:
        self._journal.touch_attr(self, "_listing_counter")
        listing_id = self._listing_counter
        self._listing_counter += 1
        return listing_id

    def _store(self, listing: Listing) -> None:
        self._journal.touch(self._listings, listing.nft_id)
        self._journal.touch(self._mode_counts, listing.mode)
        self._listings[listing.nft_id] = listing
        self._mode_counts[listing.mode] += 1

    def open_sale(self, nft_id: int, seller: str, price: Decimal) -> Listing:
        """Put an item up for direct sale at a fixed price."""
        self._check_can_list(nft_id, seller)
        if price <= 0:
            raise InvalidPriceError(field="price")

        listing = Listing(
            listing_id=self._next_listing_id(),
            nft_id=nft_id,
            mode=ListingMode.DIRECT_SALE,
            seller=seller,
            price=price,
            created_at=self._now(),
        )
        self._store(listing)
        logger.info("listing_opened", nft_id=nft_id, mode=listing.mode, price=str(price))
        return listing

    def open_auction(
        self,
        nft_id: int,
        seller: str,
        starting_price: Decimal,
        start_time: datetime,
        end_time: datetime,
    ) -> Listing:
        """Put an item up for auction over ``[start_time, end_time)``."""
        self._check_can_list(nft_id, seller)

        now = self._now()
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)
        if start_time >= end_time:
            raise InvalidWindowError("Start time must be before end time", field="start_time")
        if end_time <= now:
            raise InvalidWindowError("End time must be in the future", field="end_time")

        floor = self._settings.auction_floor(self._registry.get_nft(nft_id).mint_price)
        if starting_price < floor:
            raise PriceTooLowError(
                f"Starting price must be at least {floor}",
                field="starting_price",
                minimum=str(floor),
            )

        listing = Listing(
            listing_id=self._next_listing_id(),
            nft_id=nft_id,
            mode=ListingMode.AUCTION,
            seller=seller,
            auction=AuctionTerms(
                starting_price=starting_price,
                start_time=start_time,
                end_time=end_time,
            ),
            created_at=now,
        )
        self._store(listing)
        logger.info(
            "listing_opened",
            nft_id=nft_id,
            mode=listing.mode,
            starting_price=str(starting_price),
            end_time=end_time.isoformat(),
        )
        return listing

    def record_bid(self, nft_id: int, bid: Bid) -> Listing:
        """Make ``bid`` the highest bid of an auction listing. Engine use only."""
        listing = self._listings[nft_id]
        self._journal.touch(self._listings, nft_id)
        listing.auction.highest_bid = bid
        return listing

    def close(self, nft_id: int) -> Listing | None:
        """Reset an item to unlisted. Engine use only."""
        if nft_id not in self._listings:
            return None
        self._journal.touch(self._listings, nft_id)
        listing = self._listings.pop(nft_id)
        self._journal.touch(self._mode_counts, listing.mode)
        self._mode_counts[listing.mode] -= 1
        listing.is_active = False
        logger.debug("listing_closed", nft_id=nft_id, mode=listing.mode)
        return listing

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, nft_id: int) -> Listing | None:
        return self._listings.get(nft_id)

    def mode_of(self, nft_id: int) -> ListingMode:
        listing = self._listings.get(nft_id)
        return ListingMode(listing.mode) if listing else ListingMode.NONE

    def is_listed_for_sale(self, nft_id: int) -> bool:
        return self.mode_of(nft_id) == ListingMode.DIRECT_SALE

    def is_in_auction(self, nft_id: int) -> bool:
        return self.mode_of(nft_id) == ListingMode.AUCTION

    def is_listed(self, nft_id: int) -> bool:
        return nft_id in self._listings

    def count(self, mode: ListingMode) -> int:
        """Number of active listings in ``mode``."""
        return self._mode_counts[ListingMode(mode).value]

    def active_listings(
        self,
        mode: ListingMode | None = None,
        seller: str | None = None,
    ) -> list[Listing]:
        listings = list(self._listings.values())
        if mode is not None:
            listings = [l for l in listings if l.mode == mode]
        if seller is not None:
            listings = [l for l in listings if l.seller == seller]
        listings.sort(key=lambda l: l.listing_id)
        return listings
