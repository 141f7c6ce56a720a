"""Parsing of the ``range`` query parameter used by order listings."""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

TimeRange = Tuple[datetime, datetime]

RANGE_HELP = (
    "Invalid time range. Use relative formats like '12h', '24h', '7d' or absolute "
    "dates like '2025', '2025-12', '2025-12-10' or '12/10/2025'"
)

_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "m": timedelta(days=30),
}

_NAMED = {
    "day": timedelta(hours=24),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

_RELATIVE = re.compile(r"^(\d+)([hdwm])$")
_YEAR = re.compile(r"^(\d{4})$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _day(year: int, month: int, day: int) -> TimeRange:
    start = datetime(year, month, day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def parse_time_range(value: Optional[str], now: Optional[datetime] = None) -> Optional[TimeRange]:
    """
    Turn a range expression into a half-open ``[start, end)`` UTC window.

    Relative ranges (``day``, ``24h``, ``2w``, ``6m`` where m is 30 days) end
    at ``now``. Absolute ranges (``2025``, ``2025-12``, ``2025-12-10``,
    ``12/10/2025``) cover the whole calendar period.

    Returns:
        The window, or None for an empty or unrecognised expression
    """
    if not value:
        return None
    value = value.strip()
    now = now or datetime.now(timezone.utc)

    if value in _NAMED:
        return now - _NAMED[value], now

    try:
        match = _RELATIVE.match(value)
        if match:
            return now - int(match.group(1)) * _UNITS[match.group(2)], now

        match = _YEAR.match(value)
        if match:
            year = int(match.group(1))
            return (
                datetime(year, 1, 1, tzinfo=timezone.utc),
                datetime(year + 1, 1, 1, tzinfo=timezone.utc),
            )

        match = _YEAR_MONTH.match(value)
        if match:
            year, month = int(match.group(1)), int(match.group(2))
            start = datetime(year, month, 1, tzinfo=timezone.utc)
            end = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=timezone.utc)
            return start, end

        match = _ISO_DATE.match(value)
        if match:
            return _day(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        match = _US_DATE.match(value)
        if match:
            return _day(int(match.group(3)), int(match.group(1)), int(match.group(2)))
    except (ValueError, OverflowError):
        # Out-of-range calendar values such as 2025-13
        return None

    return None
