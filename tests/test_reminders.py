from __future__ import annotations

import asyncio

from conftest import DummyMessenger
from daybook.core.models import DailyLogPatch, User
from daybook.core.reminders import (
    journal_reminder_text,
    missing_days_text,
    send_journal_reminder,
    send_missing_days_reminder,
    send_yesterday_reminder,
    yesterday_reminder_text,
)


def _user(store) -> User:
    return asyncio.run(store.ensure_user(321))


def test_missing_days_text_lists_days_in_order() -> None:
    text = missing_days_text(["2024-05-09", "2024-05-07"])

    assert text.startswith("Бро, ты забыл заполнить данные за эти даты:")
    assert "• 2024-05-09\n• 2024-05-07" in text
    assert text.endswith("Заполни их, чтобы не терять прогресс! 📊")


def test_journal_reminder_sent_for_empty_day(store) -> None:
    user = _user(store)
    messenger = DummyMessenger()

    sent = asyncio.run(send_journal_reminder(store, messenger, user, "2024-05-09", "https://example.org/app"))

    assert sent is True
    assert messenger.sent[0]["text"] == journal_reminder_text("2024-05-09")
    button = messenger.sent[0]["reply_markup"].inline_keyboard[0][0]
    assert button.text == "Заполнить день"
    assert button.web_app.url == "https://example.org/app"


def test_journal_reminder_skipped_when_day_has_data(store) -> None:
    user = _user(store)
    asyncio.run(store.upsert_daily_log(user.id, "2024-05-09", DailyLogPatch(rating_efficiency=3)))
    messenger = DummyMessenger()

    sent = asyncio.run(send_journal_reminder(store, messenger, user, "2024-05-09", None))

    assert sent is False
    assert messenger.sent == []


def test_journal_reminder_without_webapp_url_has_no_button(store) -> None:
    user = _user(store)
    messenger = DummyMessenger()

    asyncio.run(send_journal_reminder(store, messenger, user, "2024-05-09", None))

    assert messenger.sent[0]["reply_markup"] is None


def test_missing_days_reminder() -> None:
    user = User(id=1, telegram_id=10, first_name=None, tz_offset_minutes=0, digest_time=None)
    messenger = DummyMessenger()

    assert asyncio.run(send_missing_days_reminder(messenger, user, [], "https://example.org")) is False
    assert asyncio.run(send_missing_days_reminder(messenger, user, ["2024-05-09"], "https://example.org")) is True
    assert messenger.sent[0]["reply_markup"].inline_keyboard[0][0].text == "Заполнить пропущенные дни"


def test_yesterday_reminder_wording_depends_on_day_data(store) -> None:
    user = _user(store)
    asyncio.run(store.upsert_daily_log(user.id, "2024-05-08", DailyLogPatch(journal_text="ok")))
    messenger = DummyMessenger()

    empty = asyncio.run(send_yesterday_reminder(store, messenger, user, "2024-05-09", "https://example.org/app"))
    filled = asyncio.run(send_yesterday_reminder(store, messenger, user, "2024-05-08", None))

    assert empty == (True, False)
    assert filled == (True, True)
    assert messenger.sent[0]["text"] == (
        "Бро, ты забыл заполнить данные за вчера (2024-05-09)! 📊\n\n"
        "Заполни пропущенные дни, чтобы не терять прогресс."
    )
    assert messenger.sent[0]["reply_markup"].inline_keyboard[0][0].text == "Заполнить день"
    assert messenger.sent[1]["text"] == yesterday_reminder_text("2024-05-08", True)
    assert messenger.sent[1]["reply_markup"] is None
