"""Logical day arithmetic.

A user's day runs from 04:00 to the next 04:00 local time. Local time is a
linear shift of UTC by ``tz_offset_minutes``; no timezone database is used.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone

LOGICAL_DAY_START_HOUR = 4
DEFAULT_TZ_OFFSET_LIMIT_MINUTES = 14 * 60

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def _as_utc(now_utc: datetime) -> datetime:
    if now_utc.tzinfo is None:
        return now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(timezone.utc)


def local_time(now_utc: datetime, tz_offset_minutes: int) -> datetime:
    """Wall clock of the user as a naive datetime (UTC arithmetic, offset applied)."""
    shifted = _as_utc(now_utc) + timedelta(minutes=tz_offset_minutes)
    return shifted.replace(tzinfo=None)


def logical_date(now_utc: datetime, tz_offset_minutes: int) -> str:
    logical = local_time(now_utc, tz_offset_minutes) - timedelta(hours=LOGICAL_DAY_START_HOUR)
    return logical.date().isoformat()


def parse_iso_date(value: str) -> date:
    match = _ISO_DATE_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid ISO date: {value}")
    return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def shift_iso_date(iso_date: str, delta_days: int) -> str:
    return (parse_iso_date(iso_date) + timedelta(days=delta_days)).isoformat()


def month_day_from_iso(iso_date: str) -> tuple[int, int]:
    # Birthdays keep a placeholder year, so the month/day pair is checked against a leap year.
    match = _ISO_DATE_RE.match(iso_date or "")
    if not match:
        raise ValueError(f"Invalid ISO date: {iso_date}")
    month = int(match.group(2))
    day = int(match.group(3))
    try:
        date(2000, month, day)
    except ValueError:
        raise ValueError(f"Invalid month/day in ISO date: {iso_date}") from None
    return month, day


def format_offset_minutes(offset_minutes: int) -> str:
    sign = "+" if offset_minutes >= 0 else "-"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def clamp_tz_offset(raw: object, *, limit_minutes: int = DEFAULT_TZ_OFFSET_LIMIT_MINUTES) -> int:
    """Normalize a client supplied offset; anything unusable becomes 0 (UTC)."""
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, str):
        trimmed = raw.strip()
        if not trimmed:
            return 0
        try:
            value = float(trimmed)
        except ValueError:
            return 0
    elif isinstance(raw, (int, float)):
        value = float(raw)
    else:
        return 0
    if not math.isfinite(value) or abs(value) > limit_minutes:
        return 0
    return int(value)
