"""
Event System for the NFT Market

Append-only notification log with async pub/sub delivery. Events are only
published once the operation that raised them has committed, so observers
never see state that could still roll back.
"""

import time
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog

from ..models.events import MarketEvent, MarketEventType

logger = structlog.get_logger(__name__)


# Type alias for event handlers
EventHandler = Callable[[MarketEvent], Coroutine[Any, Any, None]]


@dataclass
class Subscription:
    """Represents an event subscription."""
    id: str
    handler: EventHandler
    event_types: set[MarketEventType]
    filter_func: Callable[[MarketEvent], bool] | None = None

    def matches(self, event: MarketEvent) -> bool:
        """Check if this subscription matches an event."""
        if MarketEventType(event.type) not in self.event_types:
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


@dataclass
class EventMetrics:
    """Metrics for event system monitoring."""
    events_published: int = 0
    events_delivered: int = 0
    events_failed: int = 0
    avg_delivery_time_ms: float = 0.0
    delivery_times: list[float] = field(default_factory=list)

    def record_delivery(self, duration_ms: float) -> None:
        """Record a delivery time."""
        self.delivery_times.append(duration_ms)
        # Keep only last 1000 samples
        if len(self.delivery_times) > 1000:
            self.delivery_times = self.delivery_times[-1000:]
        self.avg_delivery_time_ms = sum(self.delivery_times) / len(self.delivery_times)


class EventBus:
    """
    Event bus for marketplace notifications.

    Features:
    - Append-only history of every published event
    - Type-based subscriptions with optional filters
    - Failed deliveries recorded in a dead letter list
    - Delivery metrics
    """

    def __init__(self, max_history: int | None = None) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._type_index: dict[MarketEventType, set[str]] = defaultdict(set)
        self._history: list[MarketEvent] = []
        self._dead_letters: list[tuple[MarketEvent, Exception]] = []
        self._max_history = max_history
        self._sequence = 0
        self._metrics = EventMetrics()

    # =========================================================================
    # Subscription Management
    # =========================================================================

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[MarketEventType] | None = None,
        filter_func: Callable[[MarketEvent], bool] | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            handler: Async function to handle events
            event_types: Event types to receive (all types when omitted)
            filter_func: Optional additional filter

        Returns:
            Subscription ID
        """
        types = set(event_types) if event_types is not None else set(MarketEventType)
        subscription = Subscription(
            id=str(uuid4()),
            handler=handler,
            event_types=types,
            filter_func=filter_func,
        )
        self._subscriptions[subscription.id] = subscription
        for event_type in types:
            self._type_index[event_type].add(subscription.id)

        logger.debug(
            "event_subscription_created",
            subscription_id=subscription.id,
            event_types=sorted(t.value for t in types),
        )
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it did not exist."""
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        for event_type in subscription.event_types:
            self._type_index[event_type].discard(subscription_id)
        return True

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish(self, event: MarketEvent) -> MarketEvent:
        """Append an event to the log and deliver it to matching subscribers."""
        self._sequence += 1
        event.sequence = self._sequence
        self._history.append(event)
        if self._max_history and len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]
        self._metrics.events_published += 1

        event_type = MarketEventType(event.type)
        for subscription_id in list(self._type_index.get(event_type, ())):
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None or not subscription.matches(event):
                continue
            await self._deliver(subscription, event)

        return event

    async def publish_all(self, events: Iterable[MarketEvent]) -> None:
        for event in events:
            await self.publish(event)

    async def _deliver(self, subscription: Subscription, event: MarketEvent) -> None:
        start = time.monotonic()
        try:
            await subscription.handler(event)
        except Exception as e:
            # Observers cannot undo a committed operation.
            self._metrics.events_failed += 1
            self._dead_letters.append((event, e))
            logger.error(
                "event_delivery_failed",
                event_type=event.type,
                subscription_id=subscription.id,
                error=str(e),
            )
            return
        self._metrics.events_delivered += 1
        self._metrics.record_delivery((time.monotonic() - start) * 1000)

    # =========================================================================
    # Introspection
    # =========================================================================

    def history(
        self,
        event_type: MarketEventType | None = None,
        nft_id: int | None = None,
    ) -> list[MarketEvent]:
        """Published events in order, optionally filtered."""
        events = self._history
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        if nft_id is not None:
            events = [e for e in events if e.nft_id == nft_id]
        return list(events)

    @property
    def dead_letters(self) -> list[tuple[MarketEvent, Exception]]:
        return list(self._dead_letters)

    @property
    def metrics(self) -> EventMetrics:
        return self._metrics
