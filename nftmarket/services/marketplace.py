"""
Marketplace Service

Caller-facing entry point for the exchange core. Each public method maps to
one marketplace action (``sell_nft``, ``buy_nft``, ``place_bid``, ...).

State-changing calls are serialized through a single lock and run inside
``MarketContext.transaction()``, so they either commit fully or leave every
store exactly as it was. Notifications are published only after commit.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

import structlog

from nftmarket.errors import MarketplaceError
from nftmarket.kernel.context import MarketContext
from nftmarket.models.events import MarketEvent, MarketEventType
from nftmarket.models.marketplace import (
    AuctionResult,
    AuctionState,
    Bid,
    Listing,
    ListingMode,
    SaleReceipt,
)
from nftmarket.models.registry import NFT, Collection
from nftmarket.monitoring.logging import bind_context, log_duration, unbind_context
from nftmarket.services.auction_engine import AuctionEngine
from nftmarket.services.sale_engine import SaleEngine

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Amount = Decimal | float | str


class MarketplaceService:
    """
    Central service for marketplace operations.

    Example:
        ```python
        market = MarketplaceService()
        collection = await market.create_collection("Genesis", owner="alice")
        nft = await market.mint_nft(collection.id, "Genesis #1", "0.1", caller="alice")
        await market.sell_nft(nft.id, seller="alice", price="1.5")
        await market.buy_nft(nft.id, buyer="bob", paid_amount="1.5")
        ```
    """

    def __init__(self, context: MarketContext | None = None) -> None:
        self.ctx = context or MarketContext()
        self.sales = SaleEngine(self.ctx)
        self.auctions = AuctionEngine(self.ctx)

        # Single writer: one state-changing operation at a time
        self._lock = asyncio.Lock()

    async def _run(
        self,
        operation: str,
        action: Callable[[], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        bind_context(operation=operation, **log_context)
        try:
            async with self._lock:
                # Events committed under the lock are published after it is released
                with self.ctx.delivery_held():
                    try:
                        with log_duration(logger, operation, level="debug", log_failures=False):
                            result = await action()
                    except MarketplaceError as e:
                        self.ctx.metrics.record_rejection(operation, e.kind.value)
                        logger.warning("operation_rejected", **e.to_dict())
                        raise
                    except Exception:
                        logger.exception("operation_failed")
                        raise
            self.ctx.metrics.record_operation(operation)
        finally:
            unbind_context("operation", *log_context)
        await self.ctx.flush()
        return result

    async def _run_registry(self, operation: str, action: Callable[[], T], **log_context: Any) -> T:
        async def _in_transaction() -> T:
            async with self.ctx.transaction():
                return action()

        return await self._run(operation, _in_transaction, **log_context)

    # =========================================================================
    # Registry
    # =========================================================================

    async def create_collection(self, name: str, owner: str) -> Collection:
        return await self._run_registry(
            "create_collection",
            lambda: self.ctx.registry.create_collection(name, owner),
            owner=owner,
        )

    async def activate_collection(self, collection_id: int, caller: str) -> Collection:
        return await self._run_registry(
            "activate_collection",
            lambda: self.ctx.registry.activate_collection(collection_id, caller),
            collection_id=collection_id,
        )

    async def deactivate_collection(self, collection_id: int, caller: str) -> Collection:
        return await self._run_registry(
            "deactivate_collection",
            lambda: self.ctx.registry.deactivate_collection(collection_id, caller),
            collection_id=collection_id,
        )

    async def mint_nft(
        self,
        collection_id: int,
        name: str,
        mint_price: Amount,
        caller: str,
    ) -> NFT:
        return await self._run_registry(
            "mint_nft",
            lambda: self.ctx.registry.mint_nft(collection_id, name, mint_price, caller),
            collection_id=collection_id,
            caller=caller,
        )

    async def transfer_nft(self, nft_id: int, caller: str, to: str) -> NFT:
        return await self._run_registry(
            "transfer_nft",
            lambda: self.ctx.registry.transfer_nft(nft_id, caller, to),
            nft_id=nft_id,
        )

    def get_nft(self, nft_id: int) -> NFT:
        return self.ctx.registry.get_nft(nft_id)

    def get_collection(self, collection_id: int) -> Collection:
        return self.ctx.registry.get_collection(collection_id)

    def owner_of(self, nft_id: int) -> str:
        return self.ctx.registry.owner_of(nft_id)

    # =========================================================================
    # Direct Sale
    # =========================================================================

    async def sell_nft(self, nft_id: int, seller: str, price: Amount) -> Listing:
        return await self._run(
            "sell_nft",
            lambda: self.sales.sell(nft_id, seller, price),
            nft_id=nft_id,
            caller=seller,
        )

    async def cancel_sell(self, nft_id: int, caller: str) -> Listing:
        return await self._run(
            "cancel_sell",
            lambda: self.sales.cancel_sell(nft_id, caller),
            nft_id=nft_id,
            caller=caller,
        )

    async def buy_nft(self, nft_id: int, buyer: str, paid_amount: Amount) -> SaleReceipt:
        return await self._run(
            "buy_nft",
            lambda: self.sales.buy(nft_id, buyer, paid_amount),
            nft_id=nft_id,
            caller=buyer,
        )

    # =========================================================================
    # Auctions
    # =========================================================================

    async def create_auction(
        self,
        nft_id: int,
        seller: str,
        starting_price: Amount,
        start_time: datetime,
        end_time: datetime,
    ) -> Listing:
        return await self._run(
            "create_auction",
            lambda: self.auctions.create_auction(
                nft_id, seller, starting_price, start_time, end_time
            ),
            nft_id=nft_id,
            caller=seller,
        )

    async def place_bid(self, nft_id: int, bidder: str, amount: Amount) -> Bid:
        return await self._run(
            "place_bid",
            lambda: self.auctions.place_bid(nft_id, bidder, amount),
            nft_id=nft_id,
            caller=bidder,
        )

    async def finalize_auction(self, nft_id: int, caller: str) -> AuctionResult:
        return await self._run(
            "finalize_auction",
            lambda: self.auctions.finalize_auction(nft_id, caller),
            nft_id=nft_id,
            caller=caller,
        )

    async def cancel_auction(self, nft_id: int, caller: str) -> Listing:
        return await self._run(
            "cancel_auction",
            lambda: self.auctions.cancel_auction(nft_id, caller),
            nft_id=nft_id,
            caller=caller,
        )

    def auction_state(self, nft_id: int) -> AuctionState:
        return self.auctions.state_of(nft_id)

    # =========================================================================
    # Funds
    # =========================================================================

    def balance_of(self, principal: str) -> Decimal:
        return self.ctx.escrow.balance_of(principal)

    async def withdraw(self, principal: str) -> Decimal:
        """Pay out a principal's accumulated proceeds and refunds."""

        async def _withdraw() -> Decimal:
            async with self.ctx.transaction():
                amount = self.ctx.escrow.withdraw(principal)
                if amount:
                    self.ctx.emit(MarketEvent(
                        type=MarketEventType.FUNDS_WITHDRAWN,
                        payload={"principal": principal, "amount": str(amount)},
                    ))
                return amount

        return await self._run("withdraw", _withdraw, caller=principal)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_listing(self, nft_id: int) -> Listing | None:
        return self.ctx.listings.get(nft_id)

    def get_listings(
        self,
        mode: ListingMode | None = None,
        seller: str | None = None,
    ) -> list[Listing]:
        return self.ctx.listings.active_listings(mode=mode, seller=seller)

    def is_listed_for_sale(self, nft_id: int) -> bool:
        return self.ctx.listings.is_listed_for_sale(nft_id)

    def nft_in_auction(self, nft_id: int) -> bool:
        return self.ctx.listings.is_in_auction(nft_id)

    def get_current_time(self) -> datetime:
        return self.ctx.now()
