"""
Base Models and Common Types

Foundation classes for all marketplace models: shared pydantic
configuration, id generation and amount helpers.
"""

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from nftmarket.errors import InvalidPriceError

# Native-unit amounts (e.g. ETH) are carried as Decimal end to end.
ZERO = Decimal("0")


class MarketModel(BaseModel):
    """Base model for all marketplace entities with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes so comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce a caller-supplied amount to Decimal.

    Floats go through ``str`` so ``1.5`` becomes ``Decimal("1.5")`` and not
    its binary approximation.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise InvalidPriceError(f"Invalid amount: {value!r}", field=field)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise InvalidPriceError(f"Invalid amount: {value!r}", field=field) from e
    if not amount.is_finite():
        raise InvalidPriceError(f"Invalid amount: {value!r}", field=field)
    return amount


def generate_id() -> str:
    """Generate a new UUID string."""
    return str(uuid4())
