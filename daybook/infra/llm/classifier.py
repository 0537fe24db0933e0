"""Natural-language intent classifier for free-text bot messages."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from daybook.infra.llm.base import LLMAPIError, LLMClient

LOGGER = logging.getLogger(__name__)

INTENTS = (
    "schedule_event",
    "get_events",
    "delete_event",
    "reschedule_event",
    "mark_done",
    "journal",
    "other",
)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_PROMPT = """You are a personal assistant.
Classify the user message into one of these intents:
schedule_event (create a new event), get_events (list tasks), delete_event,
reschedule_event (move an existing task), mark_done (user finished a task),
journal (diary entry), other.

Current Date: {today} (YYYY-MM-DD).

User message: "{text}"

Return only JSON:
{{"intent": "...",
  "scheduleDetails": {{"date": "YYYY-MM-DD", "startTime": "HH:mm"|null, "endTime": "HH:mm"|null, "description": "..."}},
  "rescheduleDetails": {{"searchDate": "YYYY-MM-DD"|null, "targetDate": "YYYY-MM-DD", "targetTime": "HH:mm"|null, "description": "..."}}}}
scheduleDetails is used by schedule_event and mark_done, rescheduleDetails by reschedule_event.
"""


@dataclass(frozen=True)
class ScheduleDetails:
    date: str | None
    description: str
    start_time: str | None = None
    end_time: str | None = None


@dataclass(frozen=True)
class RescheduleDetails:
    target_date: str | None
    description: str
    search_date: str | None = None
    target_time: str | None = None


@dataclass(frozen=True)
class Classification:
    intent: str
    schedule_details: ScheduleDetails | None = None
    reschedule_details: RescheduleDetails | None = None


def strip_code_fences(content: str) -> str:
    return _FENCE_RE.sub("", content).strip()


def _opt_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_classification(content: str) -> Classification:
    cleaned = strip_code_fences(content or "")
    if not cleaned:
        return Classification(intent="journal")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise LLMAPIError(status_code=0, message=f"Classifier returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMAPIError(status_code=0, message="Classifier returned a non-object JSON value")

    intent = data.get("intent")
    if intent not in INTENTS:
        LOGGER.warning("Classifier returned unknown intent=%r, treating as other", intent)
        intent = "other"

    schedule = None
    raw_schedule = data.get("scheduleDetails")
    if isinstance(raw_schedule, dict):
        schedule = ScheduleDetails(
            date=_opt_str(raw_schedule, "date"),
            description=_opt_str(raw_schedule, "description") or "",
            start_time=_opt_str(raw_schedule, "startTime"),
            end_time=_opt_str(raw_schedule, "endTime"),
        )

    reschedule = None
    raw_reschedule = data.get("rescheduleDetails")
    if isinstance(raw_reschedule, dict):
        reschedule = RescheduleDetails(
            target_date=_opt_str(raw_reschedule, "targetDate"),
            description=_opt_str(raw_reschedule, "description") or "",
            search_date=_opt_str(raw_reschedule, "searchDate"),
            target_time=_opt_str(raw_reschedule, "targetTime"),
        )
    return Classification(intent=intent, schedule_details=schedule, reschedule_details=reschedule)


class IntentClassifier:
    def __init__(
        self,
        client: LLMClient,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> None:
        self._client = client
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def classify(self, text: str, today: str) -> Classification:
        prompt = _PROMPT.format(today=today, text=text.replace('"', "'"))
        response = await self._client.create_chat_completion(
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        content = str(response.get("content") or "").strip()
        result = parse_classification(content)
        LOGGER.info("Message classified: intent=%s", result.intent)
        return result
