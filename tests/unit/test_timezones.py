from datetime import UTC, datetime

import pytest

from fortune.engagement.timezones import (
    day_of_year,
    get_current_hour_in_timezone,
    local_day_bounds,
    parse_hour,
    resolve_timezone,
    utc_day_bounds,
)


@pytest.mark.parametrize(
    "value, expected",
    [("08:00", 8), ("20:30", 20), ("7", 7), ("", 0), (None, 0), ("ab:cd", 0), ("25:00", 0)],
)
def test_parse_hour(value, expected):
    assert parse_hour(value) == expected


def test_unknown_timezone_falls_back_to_default():
    assert resolve_timezone("Not/AZone").key == "Europe/Moscow"
    assert resolve_timezone(None, "UTC").key == "UTC"
    assert resolve_timezone("Asia/Tokyo").key == "Asia/Tokyo"


def test_current_hour_follows_dst():
    # New York switched to EDT (UTC-4) on 2026-03-08
    assert get_current_hour_in_timezone("America/New_York", datetime(2026, 3, 10, 12, 0, tzinfo=UTC)) == 8
    assert get_current_hour_in_timezone("America/New_York", datetime(2026, 1, 10, 13, 0, tzinfo=UTC)) == 8


def test_local_day_bounds_in_utc():
    start, end = local_day_bounds("Europe/Moscow", datetime(2026, 3, 10, 22, 0, tzinfo=UTC))

    assert start == datetime(2026, 3, 10, 21, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 11, 21, 0, tzinfo=UTC)


def test_utc_day_bounds():
    start, end = utc_day_bounds(datetime(2026, 3, 10, 23, 59, tzinfo=UTC))

    assert start == datetime(2026, 3, 10, tzinfo=UTC)
    assert end == datetime(2026, 3, 11, tzinfo=UTC)


def test_day_of_year():
    assert day_of_year(datetime(2026, 1, 1, tzinfo=UTC)) == 1
    assert day_of_year(datetime(2026, 3, 10, tzinfo=UTC)) == 69
