from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, TypeVar

from daybook.core.logical_date import local_time, month_day_from_iso
from daybook.core.models import Birthday

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def birthday_text(name: str) -> str:
    return f"Йоу! У {name} сегодня День Рождения! Поздравь его! 🎉"


def today_month_day(now_utc: datetime, tz_offset_minutes: int) -> tuple[int, int]:
    local = local_time(now_utc, tz_offset_minutes)
    return local.month, local.day


def match_birthdays(
    rows: Iterable[tuple[Birthday, T]],
    month: int,
    day: int,
) -> list[tuple[Birthday, T]]:
    """Rows whose birthday falls on ``month``/``day``; malformed dates never match."""
    matches: list[tuple[Birthday, T]] = []
    for birthday, extra in rows:
        try:
            birthday_month, birthday_day = month_day_from_iso(birthday.date)
        except ValueError:
            LOGGER.warning("Skipping birthday with malformed date: id=%s date=%r", birthday.id, birthday.date)
            continue
        if (birthday_month, birthday_day) == (month, day):
            matches.append((birthday, extra))
    return matches
