"""
NFT Market - In-process Metrics

Lightweight counters and gauges for marketplace activity.

Metrics Categories:
- Exchange activity (listings, sales, bids, refunds, settlements)
- Rejected operations by error kind
- Current state (active listings per mode, value held in escrow)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from nftmarket.models.marketplace import ListingMode

if TYPE_CHECKING:
    from nftmarket.kernel.context import MarketContext

logger = structlog.get_logger(__name__)


# =============================================================================
# Metric Types
# =============================================================================

@dataclass
class Counter:
    """A monotonically increasing counter."""
    name: str
    description: str
    labels: list[str] = field(default_factory=list)
    _values: dict[tuple[str, ...], float] = field(default_factory=dict)
    # Limit label cardinality to prevent memory exhaustion
    _max_cardinality: int = 1000
    _cardinality_warned: bool = field(default=False, repr=False)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """Increment the counter with cardinality protection."""
        key = self._label_key(labels)

        if key not in self._values and len(self._values) >= self._max_cardinality:
            if not self._cardinality_warned:
                logger.warning(
                    "metric_cardinality_limit",
                    metric=self.name,
                    limit=self._max_cardinality,
                )
                self._cardinality_warned = True
            return

        self._values[key] = self._values.get(key, 0) + value

    def get(self, **labels: str) -> float:
        return self._values.get(self._label_key(labels), 0)

    def _label_key(self, labels: dict[str, str]) -> tuple[str, ...]:
        return tuple(labels.get(l, "") for l in self.labels)

    def collect(self) -> list[dict[str, Any]]:
        """Collect all metric values."""
        return [
            {
                "name": self.name,
                "type": "counter",
                "labels": dict(zip(self.labels, key, strict=False)),
                "value": value,
            }
            for key, value in self._values.items()
        ]


@dataclass
class Gauge:
    """A metric that can go up and down."""
    name: str
    description: str
    labels: list[str] = field(default_factory=list)
    _values: dict[tuple[str, ...], float] = field(default_factory=dict)

    def set(self, value: float, **labels: str) -> None:
        self._values[self._label_key(labels)] = value

    def get(self, **labels: str) -> float:
        return self._values.get(self._label_key(labels), 0)

    def _label_key(self, labels: dict[str, str]) -> tuple[str, ...]:
        return tuple(labels.get(l, "") for l in self.labels)

    def collect(self) -> list[dict[str, Any]]:
        return [
            {
                "name": self.name,
                "type": "gauge",
                "labels": dict(zip(self.labels, key, strict=False)),
                "value": value,
            }
            for key, value in self._values.items()
        ]


# =============================================================================
# Marketplace Metrics
# =============================================================================

class MarketMetrics:
    """Registry of the metrics the marketplace records."""

    def __init__(self) -> None:
        self.operations_total = Counter(
            "nftmarket_operations_total",
            "Committed marketplace operations",
            labels=["operation"],
        )
        self.rejections_total = Counter(
            "nftmarket_rejections_total",
            "Rejected marketplace operations",
            labels=["operation", "kind"],
        )
        self.bid_refunds_total = Counter(
            "nftmarket_bid_refunds_total",
            "Displaced bids refunded",
        )
        self.active_listings = Gauge(
            "nftmarket_active_listings",
            "Listings currently open",
            labels=["mode"],
        )
        self.escrow_held = Gauge(
            "nftmarket_escrow_held",
            "Value currently held in escrow",
        )

    def record_operation(self, operation: str) -> None:
        self.operations_total.inc(operation=operation)

    def record_rejection(self, operation: str, kind: str) -> None:
        self.rejections_total.inc(operation=operation, kind=kind)

    def sync_state(self, ctx: MarketContext) -> None:
        """Refresh gauges from committed state."""
        for mode in (ListingMode.DIRECT_SALE, ListingMode.AUCTION):
            self.active_listings.set(ctx.listings.count(mode), mode=mode.value)
        self.escrow_held.set(float(ctx.escrow.total_held()))

    def collect(self) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for metric in (
            self.operations_total,
            self.rejections_total,
            self.bid_refunds_total,
            self.active_listings,
            self.escrow_held,
        ):
            results.extend(metric.collect())
        return results
