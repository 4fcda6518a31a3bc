"""
Asset Registry

Authoritative record of collections and the NFTs minted under them.

The marketplace only ever reads owners through ``owner_of`` and changes
them through ``transfer``; that method is the single path by which
ownership moves.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import structlog

from nftmarket.errors import (
    AlreadyListedError,
    CollectionInactiveError,
    CollectionNotFoundError,
    InvalidNameError,
    InvalidPriceError,
    NFTNotFoundError,
    NotOwnerError,
)
from nftmarket.models.base import to_amount, utc_now
from nftmarket.models.events import MarketEvent, MarketEventType
from nftmarket.models.registry import NFT, Collection
from nftmarket.services.journal import UndoJournal

logger = structlog.get_logger(__name__)

EventSink = Callable[[MarketEvent], None]


class AssetRegistry:
    """
    In-memory store of collections and NFTs.

    Identifiers for both collections and NFTs start at 1, increase by one
    per creation and are never reused.
    """

    def __init__(
        self,
        emit: EventSink | None = None,
        journal: UndoJournal | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._collections: dict[int, Collection] = {}
        self._nfts: dict[int, NFT] = {}
        self._collection_counter = 0
        self._token_counter = 0
        self._emit = emit or (lambda event: None)
        self._journal = journal if journal is not None else UndoJournal()
        self._now = now or utc_now
        # Set by the context so gift transfers cannot pull a listed item
        # out from under its listing.
        self.is_listed: Callable[[int], bool] = lambda nft_id: False

    # =========================================================================
    # Collections
    # =========================================================================

    def create_collection(self, name: str, owner: str) -> Collection:
        """Create a new active collection owned by ``owner``."""
        if not name or not name.strip():
            raise InvalidNameError("Collection name cannot be empty", field="name")

        self._journal.touch_attr(self, "_collection_counter")
        self._collection_counter += 1
        collection = Collection(
            id=self._collection_counter,
            name=name,
            owner=owner,
            created_at=self._now(),
        )
        self._journal.touch(self._collections, collection.id)
        self._collections[collection.id] = collection

        self._emit(MarketEvent(
            type=MarketEventType.COLLECTION_CREATED,
            payload={"collection_id": collection.id, "name": collection.name, "owner": owner},
        ))
        logger.info("collection_created", collection_id=collection.id, owner=owner)
        return collection

    def get_collection(self, collection_id: int) -> Collection:
        collection = self._collections.get(collection_id)
        if collection is None:
            raise CollectionNotFoundError(field="collection_id", collection_id=collection_id)
        return collection

    def collections_of(self, owner: str) -> list[Collection]:
        return [c for c in self._collections.values() if c.owner == owner]

    def is_active(self, collection_id: int) -> bool:
        return self.get_collection(collection_id).is_active

    def activate_collection(self, collection_id: int, caller: str) -> Collection:
        return self._set_active(collection_id, caller, True)

    def deactivate_collection(self, collection_id: int, caller: str) -> Collection:
        return self._set_active(collection_id, caller, False)

    def _set_active(self, collection_id: int, caller: str, active: bool) -> Collection:
        collection = self.get_collection(collection_id)
        if collection.owner != caller:
            raise NotOwnerError("You don't own this collection", field="caller")

        self._journal.touch(self._collections, collection_id)
        collection.is_active = active
        self._emit(MarketEvent(
            type=(
                MarketEventType.COLLECTION_ACTIVATED
                if active
                else MarketEventType.COLLECTION_DEACTIVATED
            ),
            payload={"collection_id": collection_id, "owner": caller},
        ))
        logger.info(
            "collection_activation_changed",
            collection_id=collection_id,
            is_active=active,
        )
        return collection

    # =========================================================================
    # NFTs
    # =========================================================================

    def mint_nft(
        self,
        collection_id: int,
        name: str,
        mint_price: Decimal | float | str,
        caller: str,
    ) -> NFT:
        """Mint a new NFT into an active collection owned by ``caller``."""
        collection = self.get_collection(collection_id)
        if collection.owner != caller:
            raise NotOwnerError("You don't own this collection", field="caller")
        if not collection.is_active:
            raise CollectionInactiveError(field="collection_id", collection_id=collection_id)
        if not name or not name.strip():
            raise InvalidNameError("NFT name cannot be empty", field="name")
        price = to_amount(mint_price, "mint_price")
        if price < 0:
            raise InvalidPriceError("Mint price cannot be negative", field="mint_price")

        self._journal.touch_attr(self, "_token_counter")
        self._token_counter += 1
        nft = NFT(
            id=self._token_counter,
            collection_id=collection_id,
            name=name,
            owner=caller,
            mint_price=price,
            minted_at=self._now(),
        )
        self._journal.touch(self._nfts, nft.id)
        self._nfts[nft.id] = nft

        self._emit(MarketEvent(
            type=MarketEventType.NFT_MINTED,
            nft_id=nft.id,
            payload={
                "collection_id": collection_id,
                "owner": caller,
                "mint_price": str(price),
            },
        ))
        logger.info("nft_minted", nft_id=nft.id, collection_id=collection_id, owner=caller)
        return nft

    def get_nft(self, nft_id: int) -> NFT:
        nft = self._nfts.get(nft_id)
        if nft is None or not nft.exists:
            raise NFTNotFoundError(field="nft_id", nft_id=nft_id)
        return nft

    def owner_of(self, nft_id: int) -> str:
        return self.get_nft(nft_id).owner

    def nfts_of(self, owner: str) -> list[NFT]:
        return [n for n in self._nfts.values() if n.exists and n.owner == owner]

    def current_token_id(self) -> int:
        """ID of the most recently minted NFT, 0 before the first mint."""
        return self._token_counter

    def transfer(self, nft_id: int, from_: str, to: str) -> NFT:
        """Reassign ownership. Fails unless ``from_`` is the recorded owner."""
        nft = self.get_nft(nft_id)
        if nft.owner != from_:
            raise NotOwnerError(field="from", nft_id=nft_id, owner=nft.owner)

        self._journal.touch(self._nfts, nft_id)
        nft.owner = to
        self._emit(MarketEvent(
            type=MarketEventType.NFT_TRANSFERRED,
            nft_id=nft_id,
            payload={"from": from_, "to": to},
        ))
        logger.info("nft_transferred", nft_id=nft_id, from_owner=from_, to_owner=to)
        return nft

    def transfer_nft(self, nft_id: int, caller: str, to: str) -> NFT:
        """Owner-initiated transfer outside the marketplace."""
        if self.is_listed(nft_id):
            raise AlreadyListedError(
                "Cannot transfer an NFT while it is listed",
                field="nft_id",
                nft_id=nft_id,
            )
        return self.transfer(nft_id, caller, to)
