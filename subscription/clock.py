"""
Clock abstraction

Quota and trial logic never calls datetime.now() directly; a Clock is
injected so the reference time zone is explicit and tests can pin time.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from config import settings


class Clock:
    """Source of the current time in the server reference time zone"""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or settings.reference_tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, value: datetime) -> datetime:
        """Express a stored timestamp in the reference zone (naive values are taken as UTC)"""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.tz)


class FrozenClock(Clock):
    """Clock pinned to a fixed instant; advance() moves it forward"""

    def __init__(self, current: datetime, tz: Optional[tzinfo] = None):
        super().__init__(tz or current.tzinfo)
        self._current = self.localize(current)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = self.localize(current)

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs)"""
        self._current = self._current + timedelta(**kwargs)
        return self._current


_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """Get the singleton system clock"""
    global _clock
    if _clock is None:
        _clock = Clock()
    return _clock
