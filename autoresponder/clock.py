"""
Injectable clocks. Rule evaluation never calls datetime.now() directly.
"""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


class SystemClock:
    """Wall clock in server local time (timezone-aware)."""

    def now(self) -> datetime:
        return datetime.now().astimezone()


class FixedClock:
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, at: datetime):
        if at.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._at = at

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = at

    def advance(self, **kwargs) -> datetime:
        self._at = self._at + timedelta(**kwargs)
        return self._at


def localize(moment: datetime, timezone: Optional[str]) -> datetime:
    """Convert an aware datetime into the named IANA timezone (no-op when unset)."""
    if not timezone:
        return moment
    return moment.astimezone(ZoneInfo(timezone))
