from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Protocol, Sequence

from daybook.core.logical_date import local_time, parse_iso_date
from daybook.infra.google_calendar import CalendarEvent
from daybook.infra.messaging import Messenger, callback_keyboard
from daybook.infra.request_context import RequestContext

LOGGER = logging.getLogger(__name__)

DONE_PREFIX = "✅"
OPEN_PREFIX = "⬜"
UNTITLED = "Без названия"
TOGGLE_EVENT_PREFIX = "toggle_event:"


class CalendarReader(Protocol):
    async def list_events(
        self,
        calendar_id: str,
        time_min_iso: str,
        time_max_iso: str,
        *,
        request_context: RequestContext | None = None,
    ) -> list[CalendarEvent]:
        ...


@dataclass(frozen=True)
class DigestMessage:
    text: str
    buttons: list[tuple[str, str]] = field(default_factory=list)
    parse_mode: str | None = None


def parse_event_datetime(value: str) -> datetime:
    """RFC 3339 timestamp from the calendar API, normalized to aware UTC."""
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def local_date_bounds(local_date: str, tz_offset_minutes: int) -> tuple[datetime, datetime]:
    """``[local 00:00, next local 00:00)`` of ``local_date``, in UTC."""
    local_midnight = datetime.combine(parse_iso_date(local_date), time.min)
    start = (local_midnight - timedelta(minutes=tz_offset_minutes)).replace(tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def local_day_bounds(now_utc: datetime, tz_offset_minutes: int) -> tuple[datetime, datetime]:
    return local_date_bounds(local_time(now_utc, tz_offset_minutes).date().isoformat(), tz_offset_minutes)


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def toggle_callback_data(event_id: str) -> str:
    return f"{TOGGLE_EVENT_PREFIX}{event_id}"


def button_text(
    event: CalendarEvent,
    tz_offset_minutes: int,
    *,
    button_limit: int = 40,
    truncate_to: int = 37,
) -> str:
    title = event.summary or UNTITLED
    text = title
    if not title.startswith(DONE_PREFIX):
        if event.start_datetime:
            start_local = local_time(parse_event_datetime(event.start_datetime), tz_offset_minutes)
            text = f"{start_local:%H:%M} {title}"
        text = f"{OPEN_PREFIX} {text}"
    if len(text) > button_limit:
        text = f"{text[:truncate_to]}..."
    return text


def build_digest(
    events: Sequence[CalendarEvent],
    local_date: str,
    tz_offset_minutes: int,
    *,
    button_limit: int = 40,
    truncate_to: int = 37,
) -> DigestMessage:
    if not events:
        return DigestMessage(text=f"📅 На сегодня ({local_date}) задач нет! Отдыхай.")

    timed = [event for event in events if event.start_datetime]
    all_day = [event for event in events if not event.start_datetime and event.start_date]
    timed.sort(key=lambda event: parse_event_datetime(event.start_datetime or ""))

    buttons: list[tuple[str, str]] = []
    for event in [*timed, *all_day]:
        if not event.id:
            continue
        label = button_text(event, tz_offset_minutes, button_limit=button_limit, truncate_to=truncate_to)
        buttons.append((label, toggle_callback_data(event.id)))

    year, month, day = local_date.split("-")
    text = (
        f"📅 *План на сегодня* ({day}.{month}.{year})\n"
        "👇 Нажимай на кнопки, чтобы отметить выполненным."
    )
    return DigestMessage(text=text, buttons=buttons, parse_mode="Markdown")


async def send_daily_digest(
    calendar: CalendarReader,
    messenger: Messenger,
    *,
    calendar_id: str,
    telegram_id: int,
    tz_offset_minutes: int,
    now_utc: datetime,
    button_limit: int = 40,
    truncate_to: int = 37,
    request_context: RequestContext | None = None,
) -> bool:
    local_date = local_time(now_utc, tz_offset_minutes).date().isoformat()
    start, end = local_day_bounds(now_utc, tz_offset_minutes)
    try:
        events = await calendar.list_events(
            calendar_id,
            iso_utc(start),
            iso_utc(end - timedelta(milliseconds=1)),
            request_context=request_context,
        )
        message = build_digest(
            events,
            local_date,
            tz_offset_minutes,
            button_limit=button_limit,
            truncate_to=truncate_to,
        )
    except Exception:
        LOGGER.exception("Failed to build daily digest: telegram_id=%s date=%s", telegram_id, local_date)
        return False
    reply_markup = callback_keyboard(message.buttons) if message.buttons else None
    return await messenger.send_message(
        telegram_id,
        message.text,
        parse_mode=message.parse_mode,
        reply_markup=reply_markup,
    )
