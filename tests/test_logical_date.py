from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from daybook.core.logical_date import (
    clamp_tz_offset,
    format_offset_minutes,
    local_time,
    logical_date,
    month_day_from_iso,
    shift_iso_date,
)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_logical_date_before_four_am_belongs_to_previous_day() -> None:
    assert logical_date(_utc(2024, 5, 10, 3, 59), 0) == "2024-05-09"
    assert logical_date(_utc(2024, 5, 10, 4, 0), 0) == "2024-05-10"


def test_logical_date_applies_positive_offset() -> None:
    # 00:30 UTC + 180 min = 03:30 local, still the previous logical day
    assert logical_date(_utc(2024, 5, 10, 0, 30), 180) == "2024-05-09"
    # 01:00 UTC + 180 min = 04:00 local
    assert logical_date(_utc(2024, 5, 10, 1, 0), 180) == "2024-05-10"


def test_logical_date_negative_and_half_hour_offsets() -> None:
    assert logical_date(_utc(2024, 5, 10, 8, 0), -300) == "2024-05-09"
    assert logical_date(_utc(2024, 5, 10, 9, 0), -300) == "2024-05-10"
    # 22:30 UTC + 330 min = 04:00 local next day
    assert logical_date(_utc(2024, 5, 9, 22, 30), 330) == "2024-05-10"
    assert logical_date(_utc(2024, 5, 9, 22, 29), 330) == "2024-05-09"


def test_logical_date_treats_naive_datetime_as_utc() -> None:
    assert logical_date(datetime(2024, 5, 10, 3, 0), 0) == "2024-05-09"


def test_logical_date_is_monotonic_over_a_day() -> None:
    start = _utc(2024, 2, 28, 0, 0)
    previous = logical_date(start, 60)
    for minutes in range(0, 3 * 24 * 60, 17):
        current = logical_date(start + timedelta(minutes=minutes), 60)
        assert current >= previous
        previous = current


def test_local_time_is_naive_shifted_wall_clock() -> None:
    local = local_time(_utc(2024, 12, 31, 23, 30), 90)
    assert local == datetime(2025, 1, 1, 1, 0)
    assert local.tzinfo is None


def test_shift_iso_date_crosses_month_and_leap_day() -> None:
    assert shift_iso_date("2024-02-28", 1) == "2024-02-29"
    assert shift_iso_date("2024-03-01", -1) == "2024-02-29"
    assert shift_iso_date("2023-12-31", 1) == "2024-01-01"


def test_shift_iso_date_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        shift_iso_date("10.05.2024", 1)


def test_month_day_from_iso() -> None:
    assert month_day_from_iso("2000-03-08") == (3, 8)
    with pytest.raises(ValueError):
        month_day_from_iso("2000-13-01")
    with pytest.raises(ValueError):
        month_day_from_iso("03-08")
    assert month_day_from_iso("1996-02-29") == (2, 29)
    with pytest.raises(ValueError):
        month_day_from_iso("2000-02-31")


def test_format_offset_minutes() -> None:
    assert format_offset_minutes(-90) == "-01:30"
    assert format_offset_minutes(180) == "+03:00"
    assert format_offset_minutes(0) == "+00:00"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 0),
        ("", 0),
        ("abc", 0),
        ("180", 180),
        (" -300 ", -300),
        (840, 840),
        (841, 0),
        (-841, 0),
        (float("nan"), 0),
        (float("inf"), 0),
        (True, 0),
        (330.0, 330),
    ],
)
def test_clamp_tz_offset(raw, expected) -> None:
    assert clamp_tz_offset(raw) == expected


def test_clamp_tz_offset_custom_limit() -> None:
    assert clamp_tz_offset("600", limit_minutes=300) == 0
    assert clamp_tz_offset("300", limit_minutes=300) == 300
