"""
NFT Market - Monitoring Module

- Structured logging
- In-process metrics
"""

from .logging import bind_context, configure_logging, log_duration, unbind_context
from .metrics import Counter, Gauge, MarketMetrics

__all__ = [
    "configure_logging",
    "bind_context",
    "unbind_context",
    "log_duration",
    "Counter",
    "Gauge",
    "MarketMetrics",
]
