"""
Sale Engine

Fixed-price listings and atomic buys.

A buy commits four effects together or not at all: ownership moves to the
buyer, the price reaches the seller through escrow, the listing is closed
and a SOLD notification is published.
"""

from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from nftmarket.errors import (
    InsufficientFundsError,
    InvalidPriceError,
    NotListedError,
    NotSellerError,
    SelfPurchaseError,
)
from nftmarket.models.base import to_amount
from nftmarket.models.events import MarketEvent, MarketEventType
from nftmarket.models.marketplace import EscrowPurpose, Listing, ListingMode, SaleReceipt

if TYPE_CHECKING:
    from nftmarket.kernel.context import MarketContext

logger = structlog.get_logger(__name__)


class SaleEngine:
    """Owns listings while they are in direct-sale mode."""

    def __init__(self, ctx: "MarketContext") -> None:
        self.ctx = ctx

    def _sale_listing(self, nft_id: int) -> Listing:
        listing = self.ctx.listings.get(nft_id)
        if listing is None or listing.mode != ListingMode.DIRECT_SALE:
            raise NotListedError("NFT is not listed for sale", field="nft_id", nft_id=nft_id)
        return listing

    async def sell(self, nft_id: int, seller: str, price: Decimal | float | str) -> Listing:
        """List an owned NFT at a fixed price."""
        async with self.ctx.transaction():
            listing = self.ctx.listings.open_sale(nft_id, seller, to_amount(price, "price"))
            self.ctx.emit(MarketEvent(
                type=MarketEventType.LISTED,
                nft_id=nft_id,
                payload={
                    "listing_id": listing.listing_id,
                    "seller": seller,
                    "price": str(listing.price),
                },
            ))
        return listing

    async def cancel_sell(self, nft_id: int, caller: str) -> Listing:
        """Withdraw a direct-sale listing. Seller only."""
        async with self.ctx.transaction():
            listing = self._sale_listing(nft_id)
            if listing.seller != caller:
                raise NotSellerError(field="caller", nft_id=nft_id)

            closed = self.ctx.listings.close(nft_id)
            self.ctx.emit(MarketEvent(
                type=MarketEventType.SALE_CANCELLED,
                nft_id=nft_id,
                payload={"listing_id": listing.listing_id, "seller": caller},
            ))
        logger.info("sale_cancelled", nft_id=nft_id, seller=caller)
        return closed

    async def buy(
        self,
        nft_id: int,
        buyer: str,
        paid_amount: Decimal | float | str,
    ) -> SaleReceipt:
        """
        Buy a listed NFT.

        Args:
            nft_id: Item being bought
            buyer: Principal paying for it
            paid_amount: Value attached to the call; anything above the price
                is refunded to the buyer's balance

        Returns:
            SaleReceipt describing the settlement
        """
        paid = to_amount(paid_amount, "paid_amount")
        async with self.ctx.transaction():
            listing = self._sale_listing(nft_id)
            seller = listing.seller
            price = listing.price
            if buyer == seller:
                raise SelfPurchaseError(field="buyer", nft_id=nft_id)
            if paid < price:
                raise InsufficientFundsError(
                    field="paid_amount",
                    price=str(price),
                    paid=str(paid),
                )
            excess = paid - price
            if excess and not self.ctx.settings.refund_excess_payment:
                raise InvalidPriceError(
                    "Payment must equal the listed price",
                    field="paid_amount",
                    price=str(price),
                    paid=str(paid),
                )

            # State first, payouts after.
            self.ctx.escrow.hold(
                nft_id, EscrowPurpose.SALE, price, from_principal=buyer, recipient=seller
            )
            self.ctx.registry.transfer(nft_id, seller, buyer)
            self.ctx.listings.close(nft_id)
            self.ctx.escrow.release(nft_id, EscrowPurpose.SALE, seller)
            self.ctx.escrow.credit(buyer, excess)

            receipt = SaleReceipt(
                listing_id=listing.listing_id,
                nft_id=nft_id,
                seller=seller,
                buyer=buyer,
                price=price,
                refunded=excess,
                settled_at=self.ctx.now(),
            )
            self.ctx.emit(MarketEvent(
                type=MarketEventType.SOLD,
                nft_id=nft_id,
                payload={
                    "seller": seller,
                    "buyer": buyer,
                    "price": str(price),
                },
            ))

        logger.info(
            "nft_sold",
            nft_id=nft_id,
            seller=seller,
            buyer=buyer,
            price=str(price),
            refunded=str(excess),
        )
        return receipt
