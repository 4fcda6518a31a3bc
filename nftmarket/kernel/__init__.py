"""
NFT Market Kernel

Clock sources, the notification bus and the context that owns all state.
"""

from .clock import Clock, ManualClock, SystemClock
from .context import MarketContext
from .event_system import EventBus, Subscription

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "MarketContext",
    "EventBus",
    "Subscription",
]
