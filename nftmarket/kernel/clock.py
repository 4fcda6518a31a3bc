"""
Clock sources for deadline checks.

Auction windows are plain data compared against ``Clock.now()`` on each
call; nothing is scheduled. Production uses the wall clock, tests drive a
``ManualClock``.
"""

from datetime import datetime, timedelta
from typing import Protocol

from nftmarket.models.base import ensure_utc, utc_now


class Clock(Protocol):
    """Source of the current time for an operation."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, timezone-aware UTC."""

    def now(self) -> datetime:
        return utc_now()


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        clock = ManualClock(datetime(2026, 1, 1, tzinfo=UTC))
        clock.advance(seconds=3601)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else utc_now()

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = ensure_utc(when)

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        """Move forward by ``seconds`` plus any ``timedelta`` keyword arguments."""
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now
