"""
Clock sources — every engine timestamp comes from one of these.
"""
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC_OFFSET_RE = re.compile(r"^(?:UTC)?([+-])(\d{2}):?(\d{2})$")


class ClockSource(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in `tz`, or in the server's local zone when none is given."""

    def __init__(self, tz: tzinfo | None = None):
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)


class ZonedClock:
    """Reads another clock and expresses its instants in the user's zone."""

    def __init__(self, source: ClockSource, tz: tzinfo):
        self.source = source
        self.tz = tz

    def now(self) -> datetime:
        return self.source.now().astimezone(self.tz)


class FixedClock:
    """Manually driven clock for tests and scripts."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def parse_timezone(value: str) -> tzinfo:
    """
    An IANA zone name ('America/New_York') or a fixed UTC offset
    ('-05:00', '+0530', 'UTC+01:00'). Raises ValueError for anything else.
    """
    value = value.strip()
    if not value:
        raise ValueError("empty timezone")
    match = UTC_OFFSET_RE.match(value)
    if match:
        sign, hours, minutes = match.groups()
        if int(hours) > 14 or int(minutes) > 59:
            raise ValueError(f"UTC offset out of range: {value!r}")
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-offset if sign == "-" else offset)
    if value.upper() in ("UTC", "Z"):
        return timezone.utc
    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise ValueError(f"unknown timezone: {value!r}") from e


def clamp_elapsed(later: datetime, earlier: datetime) -> timedelta:
    """later - earlier, never negative (device clocks can move backwards)."""
    return max(timedelta(0), later - earlier)
