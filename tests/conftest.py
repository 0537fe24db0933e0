import sys
from dataclasses import replace
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from daybook.infra.config import Settings, load_settings  # noqa: E402
from daybook.infra.storage import SQLiteStore  # noqa: E402


class DummyMessenger:
    """Мок Messenger: записывает отправки, умеет «падать» для выбранных chat_id."""

    def __init__(self, *, fail_for: set[int] | None = None, raise_for: set[int] | None = None) -> None:
        self.sent: list[dict] = []
        self.fail_for = fail_for or set()
        self.raise_for = raise_for or set()

    async def send_message(self, chat_id, text, *, parse_mode=None, reply_markup=None) -> bool:
        if chat_id in self.raise_for:
            raise RuntimeError(f"boom for {chat_id}")
        if chat_id in self.fail_for:
            return False
        self.sent.append(
            {"chat_id": chat_id, "text": text, "parse_mode": parse_mode, "reply_markup": reply_markup}
        )
        return True

    def texts_for(self, chat_id: int) -> list[str]:
        return [item["text"] for item in self.sent if item["chat_id"] == chat_id]


class DummyCalendar:
    """Мок календаря: отдаёт заранее заданные события и пишет запросы."""

    def __init__(self, events=None, *, error: Exception | None = None) -> None:
        self.events = list(events or [])
        self.error = error
        self.list_calls: list[tuple[str, str, str]] = []
        self.inserted: list[dict] = []
        self.patched: list[tuple[str, dict]] = []
        self.deleted: list[str] = []

    async def list_events(self, calendar_id, time_min_iso, time_max_iso, *, request_context=None):
        self.list_calls.append((calendar_id, time_min_iso, time_max_iso))
        if self.error is not None:
            raise self.error
        return list(self.events)

    async def get_event(self, calendar_id, event_id):
        for event in self.events:
            if event.id == event_id:
                return event
        raise LookupError(event_id)

    async def insert_event(self, calendar_id, body):
        from daybook.infra.google_calendar import CalendarEvent

        self.inserted.append(body)
        return CalendarEvent.from_api({"id": f"new-{len(self.inserted)}", **body})

    async def patch_event(self, calendar_id, event_id, body):
        from daybook.infra.google_calendar import CalendarEvent

        self.patched.append((event_id, body))
        current = next((event for event in self.events if event.id == event_id), None)
        payload = dict(current.raw) if current is not None else {"id": event_id}
        payload.update(body)
        return CalendarEvent.from_api(payload)

    async def delete_event(self, calendar_id, event_id):
        self.deleted.append(event_id)


def make_settings(tmp_path: Path, **overrides) -> Settings:
    settings = load_settings(
        {
            "BOT_DB_PATH": str(tmp_path / "daybook.db"),
            "CRON_SECRET": "s3cret",
            "WEBAPP_URL": "https://example.org/app",
        }
    )
    return replace(settings, **overrides) if overrides else settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def store(tmp_path):
    db = SQLiteStore(tmp_path / "daybook.db")
    yield db
    db.close()
