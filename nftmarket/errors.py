"""
Marketplace Error Taxonomy

Every failure aborts the whole operation and leaves state untouched.
Errors are grouped by kind so callers can decide how to react:

- AuthorizationError: caller lacks standing for the action
- StateConflictError: target is not in the required lifecycle state
- PolicyValueError: an economic or temporal parameter violates a bound
- IntegrityError: an invariant the engine should have kept was broken
- NotFoundError: the referenced collection or item does not exist
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Category of a marketplace error."""
    AUTHORIZATION = "authorization"
    STATE_CONFLICT = "state_conflict"
    VALUE = "value"
    INTEGRITY = "integrity"
    NOT_FOUND = "not_found"


class MarketplaceError(Exception):
    """Base exception for marketplace errors."""

    kind: ErrorKind = ErrorKind.INTEGRITY
    default_message = "Marketplace operation failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        **details: Any,
    ) -> None:
        self.message = message or self.default_message
        self.field = field
        self.details = details
        super().__init__(self.message)

    @property
    def code(self) -> str:
        """Short identifier derived from the class name, e.g. ``NotOwner``."""
        return type(self).__name__.removesuffix("Error")

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "field": self.field,
            "message": self.message,
            **self.details,
        }


# =============================================================================
# Authorization
# =============================================================================

class AuthorizationError(MarketplaceError):
    """Caller lacks standing for the action."""
    kind = ErrorKind.AUTHORIZATION


class NotOwnerError(AuthorizationError):
    default_message = "Caller is not the owner"


class NotSellerError(AuthorizationError):
    default_message = "Only the seller can do this"


class SelfBidError(AuthorizationError):
    default_message = "Seller cannot bid on their own auction"


class SelfPurchaseError(AuthorizationError):
    default_message = "Cannot buy your own NFT"


# =============================================================================
# State conflicts
# =============================================================================

class StateConflictError(MarketplaceError):
    """Target is not in the required lifecycle state."""
    kind = ErrorKind.STATE_CONFLICT


class AlreadyListedError(StateConflictError):
    default_message = "NFT is already listed"


class NotListedError(StateConflictError):
    default_message = "NFT is not listed"


class NotOpenError(StateConflictError):
    default_message = "Auction is not open for bids"


class AuctionNotEndedError(StateConflictError):
    default_message = "Auction has not ended yet"


class HasBidsError(StateConflictError):
    default_message = "Auction already has bids"


class CollectionInactiveError(StateConflictError):
    default_message = "Collection is not active"


# =============================================================================
# Value policy
# =============================================================================

class PolicyValueError(MarketplaceError, ValueError):
    """An economic or temporal parameter violates a policy bound."""
    kind = ErrorKind.VALUE


class InvalidPriceError(PolicyValueError):
    default_message = "Price must be greater than zero"


class PriceTooLowError(PolicyValueError):
    default_message = "Starting price is below the auction floor"


class BidTooLowError(PolicyValueError):
    default_message = "Bid is too low"


class InsufficientFundsError(PolicyValueError):
    default_message = "Insufficient funds to buy NFT"


class InvalidWindowError(PolicyValueError):
    default_message = "Invalid auction time window"


class InvalidNameError(PolicyValueError):
    default_message = "Name cannot be empty"


# =============================================================================
# Integrity
# =============================================================================

class IntegrityError(MarketplaceError):
    """An invariant the engine itself should have kept was violated."""
    kind = ErrorKind.INTEGRITY


class NoEscrowError(IntegrityError):
    default_message = "No escrow entry to release"


class EscrowIntegrityError(IntegrityError):
    default_message = "Escrow entry already exists"


# =============================================================================
# Lookups
# =============================================================================

class NotFoundError(MarketplaceError, LookupError):
    """Referenced record does not exist."""
    kind = ErrorKind.NOT_FOUND


class CollectionNotFoundError(NotFoundError):
    default_message = "Collection not found"


class NFTNotFoundError(NotFoundError):
    default_message = "NFT not found"


__all__ = [
    "ErrorKind",
    "MarketplaceError",
    "AuthorizationError",
    "NotOwnerError",
    "NotSellerError",
    "SelfBidError",
    "SelfPurchaseError",
    "StateConflictError",
    "AlreadyListedError",
    "NotListedError",
    "NotOpenError",
    "AuctionNotEndedError",
    "HasBidsError",
    "CollectionInactiveError",
    "PolicyValueError",
    "InvalidPriceError",
    "PriceTooLowError",
    "BidTooLowError",
    "InsufficientFundsError",
    "InvalidWindowError",
    "InvalidNameError",
    "IntegrityError",
    "NoEscrowError",
    "EscrowIntegrityError",
    "NotFoundError",
    "CollectionNotFoundError",
    "NFTNotFoundError",
]
