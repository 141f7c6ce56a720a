"""
Tests for order listing time ranges.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from chainbills.core.time_range import parse_time_range

NOW = datetime(2025, 12, 10, 15, 30, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, length",
    [
        ("day", timedelta(hours=24)),
        ("month", timedelta(days=30)),
        ("year", timedelta(days=365)),
        ("12h", timedelta(hours=12)),
        ("7d", timedelta(days=7)),
        ("2w", timedelta(weeks=2)),
        ("6m", timedelta(days=180)),
        (" 24h ", timedelta(hours=24)),
    ],
)
def test_relative_ranges_end_now(value: str, length: timedelta) -> None:
    assert parse_time_range(value, now=NOW) == (NOW - length, NOW)


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, start, end",
    [
        ("2025", utc(2025, 1, 1), utc(2026, 1, 1)),
        ("2025-02", utc(2025, 2, 1), utc(2025, 3, 1)),
        ("2025-12", utc(2025, 12, 1), utc(2026, 1, 1)),
        ("2025-12-10", utc(2025, 12, 10), utc(2025, 12, 11)),
        ("2025-12-31", utc(2025, 12, 31), utc(2026, 1, 1)),
        ("12/10/2025", utc(2025, 12, 10), utc(2025, 12, 11)),
    ],
)
def test_absolute_ranges_cover_calendar_period(
    value: str, start: datetime, end: datetime
) -> None:
    assert parse_time_range(value, now=NOW) == (start, end)


@pytest.mark.unit
@pytest.mark.parametrize(
    "value",
    [None, "", "fortnight", "7x", "h", "2025-13", "2025-02-30", "13/01/2025", "-3d"],
)
def test_unrecognised_ranges(value: Optional[str]) -> None:
    assert parse_time_range(value, now=NOW) is None


@pytest.mark.unit
def test_now_defaults_to_current_time() -> None:
    start, end = parse_time_range("1h")

    assert end - start == timedelta(hours=1)
    assert end.tzinfo is not None
