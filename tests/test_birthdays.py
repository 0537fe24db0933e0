from __future__ import annotations

from datetime import datetime, timezone

from daybook.core.birthdays import birthday_text, match_birthdays, today_month_day
from daybook.core.models import Birthday


def _birthday(birthday_id: int, date: str) -> Birthday:
    return Birthday(id=birthday_id, user_id=1, name=f"friend-{birthday_id}", date=date)


def test_birthday_text() -> None:
    assert birthday_text("Петя") == "Йоу! У Петя сегодня День Рождения! Поздравь его! 🎉"


def test_today_month_day_uses_offset() -> None:
    now = datetime(2024, 3, 7, 22, 0, tzinfo=timezone.utc)

    assert today_month_day(now, 0) == (3, 7)
    assert today_month_day(now, 180) == (3, 8)


def test_match_birthdays_ignores_year_and_malformed_dates() -> None:
    rows = [
        (_birthday(1, "1990-03-08"), 100),
        (_birthday(2, "2001-03-08"), 200),
        (_birthday(3, "1990-03-09"), 100),
        (_birthday(4, "08.03.1990"), 100),
        (_birthday(5, "1990-13-08"), 100),
    ]

    matches = match_birthdays(rows, 3, 8)

    assert [(birthday.id, extra) for birthday, extra in matches] == [(1, 100), (2, 200)]
