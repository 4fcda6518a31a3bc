"""
Escrow Ledger

Holds value attached to active bids and pending sale proceeds.

Escrow Lifecycle:
1. An engine holds the attached payment under ``(nft_id, purpose)``
2. On settlement the entry is released to the seller, on displacement or
   cancellation back to the depositor
3. Release deletes the entry in the same step that credits the payee, so
   a second release fails with NoEscrowError instead of paying twice

Released value is credited to the payee's balance; principals pull it out
with ``withdraw``.
"""

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import structlog

from nftmarket.errors import EscrowIntegrityError, InvalidPriceError, NoEscrowError
from nftmarket.models.base import ZERO, utc_now
from nftmarket.models.marketplace import EscrowEntry, EscrowPurpose
from nftmarket.services.journal import UndoJournal

logger = structlog.get_logger(__name__)

EscrowKey = tuple[int, EscrowPurpose]


class EscrowLedger:
    """
    Keyed escrow entries plus per-principal balances.

    Only the sale and auction engines call ``hold`` and ``release``, always
    from inside their own atomic operation.
    """

    def __init__(
        self,
        journal: UndoJournal | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._journal = journal if journal is not None else UndoJournal()
        self._now = now or utc_now
        self._entries: dict[EscrowKey, EscrowEntry] = {}
        self._balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
        self._total_held = ZERO

    def hold(
        self,
        nft_id: int,
        purpose: EscrowPurpose,
        amount: Decimal,
        from_principal: str,
        recipient: str | None = None,
    ) -> EscrowEntry:
        """Lock ``amount`` paid by ``from_principal`` for an item."""
        if amount <= 0:
            raise InvalidPriceError("Escrow amount must be positive", field="amount")
        key = (nft_id, EscrowPurpose(purpose))
        if key in self._entries:
            raise EscrowIntegrityError(field="nft_id", nft_id=nft_id, purpose=key[1].value)

        entry = EscrowEntry(
            nft_id=nft_id,
            purpose=key[1],
            amount=amount,
            depositor=from_principal,
            recipient=recipient,
            held_at=self._now(),
        )
        self._journal.touch(self._entries, key)
        self._journal.touch_attr(self, "_total_held")
        self._entries[key] = entry
        self._total_held += amount
        logger.debug(
            "escrow_held",
            nft_id=nft_id,
            purpose=key[1].value,
            amount=str(amount),
            depositor=from_principal,
        )
        return entry

    def release(self, nft_id: int, purpose: EscrowPurpose, to_principal: str) -> Decimal:
        """Pay the held amount to ``to_principal`` and delete the entry."""
        key = (nft_id, EscrowPurpose(purpose))
        if key not in self._entries:
            raise NoEscrowError(field="nft_id", nft_id=nft_id, purpose=key[1].value)

        self._journal.touch(self._entries, key)
        self._journal.touch(self._balances, to_principal)
        self._journal.touch_attr(self, "_total_held")
        entry = self._entries.pop(key)
        self._total_held -= entry.amount
        self._balances[to_principal] += entry.amount
        logger.debug(
            "escrow_released",
            nft_id=nft_id,
            purpose=key[1].value,
            amount=str(entry.amount),
            payee=to_principal,
        )
        return entry.amount

    def credit(self, principal: str, amount: Decimal) -> None:
        """Credit a balance directly, used for refunding overpayment."""
        if amount > 0:
            self._journal.touch(self._balances, principal)
            self._balances[principal] += amount

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, nft_id: int, purpose: EscrowPurpose) -> EscrowEntry | None:
        return self._entries.get((nft_id, EscrowPurpose(purpose)))

    def held_for(self, nft_id: int, purpose: EscrowPurpose | None = None) -> Decimal:
        """Total held for an item, optionally restricted to one purpose."""
        purposes = list(EscrowPurpose) if purpose is None else [EscrowPurpose(purpose)]
        return sum(
            (
                self._entries[(nft_id, p)].amount
                for p in purposes
                if (nft_id, p) in self._entries
            ),
            ZERO,
        )

    def total_held(self) -> Decimal:
        return self._total_held

    def balance_of(self, principal: str) -> Decimal:
        return self._balances.get(principal, ZERO)

    def balances(self) -> dict[str, Decimal]:
        return {k: v for k, v in self._balances.items() if v}

    def withdraw(self, principal: str) -> Decimal:
        """Zero a principal's balance and return what it held."""
        self._journal.touch(self._balances, principal)
        amount = self._balances.pop(principal, ZERO)
        if amount:
            logger.info("funds_withdrawn", principal=principal, amount=str(amount))
        return amount
