"""
Market Context

The single top-level object that owns every store (registry, listings,
escrow), the clock, the settings and the event bus. Every engine receives
it explicitly; there is no module-level mutable state.

Atomicity:
    ``transaction()`` opens an undo journal shared by all stores. Each store
    saves the prior value of every entry or counter it touches, so rolling
    back costs as much as the operation itself. If the body raises, the
    journal is replayed and buffered events are dropped; otherwise the
    buffered events move to the outbox. Nested transactions join the
    outermost one.

Delivery:
    Committed events are published from the outbox by ``flush()``. While
    ``delivery_held()`` is active (the service holds it alongside its
    writer lock) commits only queue events, and the service flushes once
    the lock is released, so subscribers may call back into the market.
"""

from collections import deque
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime

import structlog

from nftmarket.config import Settings, get_settings
from nftmarket.kernel.clock import Clock, SystemClock
from nftmarket.kernel.event_system import EventBus
from nftmarket.models.events import MarketEvent
from nftmarket.monitoring.metrics import MarketMetrics
from nftmarket.services.escrow import EscrowLedger
from nftmarket.services.journal import UndoJournal
from nftmarket.services.listing_store import ListingStore
from nftmarket.services.registry import AssetRegistry

logger = structlog.get_logger(__name__)


class MarketContext:
    """Owns all marketplace state for one deployment."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        metrics: MarketMetrics | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.events = event_bus or EventBus()
        self.metrics = metrics or MarketMetrics()
        self.journal = UndoJournal()

        self.registry = AssetRegistry(emit=self.emit, journal=self.journal, now=self.now)
        self.listings = ListingStore(
            self.registry, self.settings, journal=self.journal, now=self.now
        )
        self.escrow = EscrowLedger(journal=self.journal, now=self.now)
        self.registry.is_listed = self.listings.is_listed

        self._pending: list[MarketEvent] = []
        self._outbox: deque[MarketEvent] = deque()
        self._depth = 0
        self._held = 0

    def now(self) -> datetime:
        return self.clock.now()

    def emit(self, event: MarketEvent) -> None:
        """Buffer an event until the enclosing transaction commits."""
        if self._depth == 0:
            raise RuntimeError("Events can only be emitted inside a transaction")
        event.timestamp = self.now()
        self._pending.append(event)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["MarketContext"]:
        """All-or-nothing scope for a state-changing operation."""
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self.journal.begin()
        self._depth = 1
        try:
            yield self
        except BaseException:
            touched = len(self.journal)
            self.journal.rollback()
            dropped = len(self._pending)
            self._pending = []
            logger.debug("transaction_rolled_back", touched=touched, dropped_events=dropped)
            raise
        finally:
            self._depth = 0

        self.journal.commit()
        self._outbox.extend(self._pending)
        self._pending = []
        self.metrics.sync_state(self)
        if not self._held:
            await self.flush()

    @contextmanager
    def delivery_held(self) -> Iterator[None]:
        """Queue committed events instead of publishing them."""
        self._held += 1
        try:
            yield
        finally:
            self._held -= 1

    async def flush(self) -> None:
        """Publish committed events in commit order."""
        while self._outbox:
            await self.events.publish(self._outbox.popleft())
