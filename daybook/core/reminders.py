from __future__ import annotations

import logging
from typing import Protocol, Sequence

from daybook.core.models import User
from daybook.infra.messaging import Messenger, webapp_keyboard

LOGGER = logging.getLogger(__name__)

JOURNAL_BUTTON_LABEL = "Заполнить день"
MISSING_DAYS_BUTTON_LABEL = "Заполнить пропущенные дни"


class DayDataChecker(Protocol):
    async def has_day_data(self, user_id: int, date: str) -> bool:
        ...


def journal_reminder_text(date: str) -> str:
    return f"День подошел к концу ({date}). 🌙\nНе забудь записать итоги и отметить привычки!"


def missing_days_text(missing_days: Sequence[str]) -> str:
    days_list = "\n".join(f"• {day}" for day in missing_days)
    return (
        f"Бро, ты забыл заполнить данные за эти даты:\n\n{days_list}\n\n"
        "Заполни их, чтобы не терять прогресс! 📊"
    )


def yesterday_reminder_text(yesterday: str, has_data: bool) -> str:
    if has_data:
        return "День почти закончился. Запиши итоги и отметь привычки."
    return (
        f"Бро, ты забыл заполнить данные за вчера ({yesterday})! 📊\n\n"
        "Заполни пропущенные дни, чтобы не терять прогресс."
    )


async def send_journal_reminder(
    store: DayDataChecker,
    messenger: Messenger,
    user: User,
    date: str,
    webapp_url: str | None,
) -> bool:
    """End-of-day nudge; skipped (False) when the day already has any data."""
    if await store.has_day_data(user.id, date):
        LOGGER.debug("Journal reminder skipped, day has data: user_id=%s date=%s", user.id, date)
        return False
    return await messenger.send_message(
        user.telegram_id,
        journal_reminder_text(date),
        reply_markup=webapp_keyboard(JOURNAL_BUTTON_LABEL, webapp_url),
    )


async def send_missing_days_reminder(
    messenger: Messenger,
    user: User,
    missing_days: Sequence[str],
    webapp_url: str | None,
) -> bool:
    if not missing_days:
        return False
    return await messenger.send_message(
        user.telegram_id,
        missing_days_text(missing_days),
        reply_markup=webapp_keyboard(MISSING_DAYS_BUTTON_LABEL, webapp_url),
    )


async def send_yesterday_reminder(
    store: DayDataChecker,
    messenger: Messenger,
    user: User,
    yesterday: str,
    webapp_url: str | None,
) -> tuple[bool, bool]:
    """Daily nudge about ``yesterday``; the wording depends on whether it has data.

    Returns ``(delivered, had_data)``.
    """
    had_data = await store.has_day_data(user.id, yesterday)
    delivered = await messenger.send_message(
        user.telegram_id,
        yesterday_reminder_text(yesterday, had_data),
        reply_markup=webapp_keyboard(JOURNAL_BUTTON_LABEL, webapp_url),
    )
    return delivered, had_data
