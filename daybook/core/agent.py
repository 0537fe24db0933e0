"""Calendar actions behind the natural-language intents of the bot.

Events are located by keywords from the classified description within one
local calendar day. Each action returns the reply text for the user.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Protocol

from daybook.core.digest import (
    DONE_PREFIX,
    UNTITLED,
    iso_utc,
    local_date_bounds,
    parse_event_datetime,
)
from daybook.core.digest_time import parse_hhmm
from daybook.core.logical_date import format_offset_minutes, local_time, parse_iso_date, shift_iso_date
from daybook.infra.google_calendar import CalendarEvent
from daybook.infra.llm.classifier import RescheduleDetails, ScheduleDetails

LOGGER = logging.getLogger(__name__)

DEFAULT_EVENT_DURATION = timedelta(hours=1)
_WORD_RE = re.compile(r"\w+", re.UNICODE)
_MIN_KEYWORD_LEN = 3


class CalendarAgentClient(Protocol):
    async def list_events(self, calendar_id: str, time_min_iso: str, time_max_iso: str) -> list[CalendarEvent]:
        ...

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> CalendarEvent:
        ...

    async def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> CalendarEvent:
        ...

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        ...


def _keywords(text: str) -> list[str]:
    return [word for word in _WORD_RE.findall(text.lower()) if len(word) >= _MIN_KEYWORD_LEN]


def match_events(events: list[CalendarEvent], description: str) -> list[CalendarEvent]:
    """Events whose title shares a keyword with ``description``, best match first."""
    wanted = _keywords(description)
    if not wanted:
        return []
    scored: list[tuple[int, int, CalendarEvent]] = []
    for index, event in enumerate(events):
        if not event.id:
            continue
        title = (event.summary or "").lower()
        score = sum(1 for word in wanted if word in title)
        if score:
            scored.append((-score, index, event))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [event for _, _, event in scored]


def _local_datetime_iso(date: str, hhmm: tuple[int, int], tz_offset_minutes: int) -> str:
    hour, minute = hhmm
    return f"{date}T{hour:02d}:{minute:02d}:00{format_offset_minutes(tz_offset_minutes)}"


def _describe_time(event: CalendarEvent, tz_offset_minutes: int) -> str:
    if event.start_datetime:
        return f"{local_time(parse_event_datetime(event.start_datetime), tz_offset_minutes):%H:%M}"
    return "весь день"


class CalendarAgent:
    def __init__(self, client: CalendarAgentClient, *, calendar_id: str) -> None:
        self._client = client
        self._calendar_id = calendar_id

    async def events_on(self, date: str, tz_offset_minutes: int) -> list[CalendarEvent]:
        start, end = local_date_bounds(date, tz_offset_minutes)
        return await self._client.list_events(
            self._calendar_id,
            iso_utc(start),
            iso_utc(end - timedelta(milliseconds=1)),
        )

    async def schedule(self, details: ScheduleDetails, *, today: str, tz_offset_minutes: int) -> str:
        title = details.description.strip() or UNTITLED
        date = details.date or today
        parse_iso_date(date)
        start = parse_hhmm(details.start_time)
        if start is None:
            body: dict[str, Any] = {
                "summary": title,
                "start": {"date": date},
                "end": {"date": shift_iso_date(date, 1)},
            }
            when = date
        else:
            end = parse_hhmm(details.end_time)
            start_iso = _local_datetime_iso(date, start, tz_offset_minutes)
            if end is None or end <= start:
                end_dt = datetime.fromisoformat(start_iso) + DEFAULT_EVENT_DURATION
                end_iso = end_dt.isoformat()
            else:
                end_iso = _local_datetime_iso(date, end, tz_offset_minutes)
            body = {"summary": title, "start": {"dateTime": start_iso}, "end": {"dateTime": end_iso}}
            when = f"{date} {start[0]:02d}:{start[1]:02d}"
        await self._client.insert_event(self._calendar_id, body)
        LOGGER.info("Calendar event created: date=%s timed=%s", date, start is not None)
        return f"📌 Добавил в календарь: {title} ({when})"

    async def list_day(self, date: str, *, tz_offset_minutes: int) -> str:
        events = [event for event in await self.events_on(date, tz_offset_minutes) if event.id]
        if not events:
            return f"📅 На {date} задач нет."
        lines = [f"📅 Задачи на {date}:"]
        for event in events:
            lines.append(f"• {_describe_time(event, tz_offset_minutes)} {event.summary or UNTITLED}")
        return "\n".join(lines)

    async def mark_done(self, details: ScheduleDetails, *, today: str, tz_offset_minutes: int) -> str:
        date = details.date or today
        candidates = [
            event
            for event in match_events(await self.events_on(date, tz_offset_minutes), details.description)
            if not (event.summary or "").startswith(DONE_PREFIX)
        ]
        if not candidates:
            return f"Не нашёл открытую задачу «{details.description}» на {date}."
        event = candidates[0]
        title = event.summary or UNTITLED
        await self._client.patch_event(self._calendar_id, event.id or "", {"summary": f"{DONE_PREFIX} {title}"})
        return f"✅ Отметил выполненным: {title}"

    async def delete(self, details: ScheduleDetails, *, today: str, tz_offset_minutes: int) -> str:
        date = details.date or today
        matches = match_events(await self.events_on(date, tz_offset_minutes), details.description)
        if not matches:
            return f"Не нашёл задачу «{details.description}» на {date}."
        for event in matches:
            await self._client.delete_event(self._calendar_id, event.id or "")
        titles = ", ".join(event.summary or UNTITLED for event in matches)
        return f"🗑 Удалил: {titles}"

    async def reschedule(self, details: RescheduleDetails, *, today: str, tz_offset_minutes: int) -> str:
        search_date = details.search_date or today
        target_date = details.target_date or search_date
        parse_iso_date(target_date)
        matches = match_events(await self.events_on(search_date, tz_offset_minutes), details.description)
        if not matches:
            return f"Не нашёл задачу «{details.description}» на {search_date}."
        event = matches[0]
        target_time = parse_hhmm(details.target_time)
        duration = DEFAULT_EVENT_DURATION
        if event.start_datetime:
            old_start = parse_event_datetime(event.start_datetime)
            end = event.raw.get("end")
            end_raw = end.get("dateTime") if isinstance(end, dict) else None
            if isinstance(end_raw, str):
                duration = parse_event_datetime(end_raw) - old_start
            if target_time is None:
                old_local = local_time(old_start, tz_offset_minutes)
                target_time = (old_local.hour, old_local.minute)
        if target_time is None:
            body: dict[str, Any] = {
                "start": {"date": target_date},
                "end": {"date": shift_iso_date(target_date, 1)},
            }
            when = target_date
        else:
            start_iso = _local_datetime_iso(target_date, target_time, tz_offset_minutes)
            end_iso = (datetime.fromisoformat(start_iso) + duration).isoformat()
            body = {"start": {"dateTime": start_iso}, "end": {"dateTime": end_iso}}
            when = f"{target_date} {target_time[0]:02d}:{target_time[1]:02d}"
        await self._client.patch_event(self._calendar_id, event.id or "", body)
        return f"🔁 Перенёс «{event.summary or UNTITLED}» на {when}"
