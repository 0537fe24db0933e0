"""Google Calendar REST client.

Authenticates with a long-lived OAuth refresh token and keeps the short-lived
access token in memory. Only the fields the digest and the bot need are
mapped into ``CalendarEvent``; the raw payload is kept alongside.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote

import httpx

from daybook.infra.request_context import RequestContext
from daybook.infra.resilience import RetryPolicy, is_retryable_http_error, retry_async

LOGGER = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
_EXPIRY_MARGIN_SECONDS = 60.0


class CalendarAPIError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class GoogleCalendarConfig:
    client_id: str
    client_secret: str
    refresh_token: str


@dataclass(frozen=True)
class CalendarEvent:
    id: str | None
    summary: str | None
    start_datetime: str | None = None
    start_date: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_timed(self) -> bool:
        return self.start_datetime is not None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CalendarEvent":
        start = payload.get("start") if isinstance(payload.get("start"), dict) else {}
        return cls(
            id=payload.get("id") if isinstance(payload.get("id"), str) else None,
            summary=payload.get("summary") if isinstance(payload.get("summary"), str) else None,
            start_datetime=start.get("dateTime") if isinstance(start.get("dateTime"), str) else None,
            start_date=start.get("date") if isinstance(start.get("date"), str) else None,
            raw=payload,
        )


@dataclass
class _AccessToken:
    value: str
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - _EXPIRY_MARGIN_SECONDS <= now


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        config: GoogleCalendarConfig,
        timeout_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._timeout_seconds = timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._transport = transport
        self._time_fn = time_fn
        self._token: _AccessToken | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport)

    async def _access_token(self) -> str:
        now = self._time_fn()
        if self._token is not None and not self._token.is_expired(now):
            return self._token.value
        payload = {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "refresh_token": self._config.refresh_token,
            "grant_type": "refresh_token",
        }
        async with self._client() as client:
            response = await client.post(GOOGLE_TOKEN_URL, data=payload)
        if response.status_code // 100 != 2:
            raise CalendarAPIError(response.status_code, f"Google token refresh failed: {response.status_code}")
        data = response.json()
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise CalendarAPIError(response.status_code, "Google token refresh returned no access_token")
        expires_in = data.get("expires_in")
        expires_at = now + float(expires_in) if isinstance(expires_in, (int, float)) else None
        self._token = _AccessToken(value=access_token, expires_at=expires_at)
        return access_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        request_context: RequestContext | None = None,
    ) -> dict[str, Any] | None:
        async def _call() -> dict[str, Any] | None:
            token = await self._access_token()
            headers = {"Authorization": f"Bearer {token}"}
            async with self._client() as client:
                response = await client.request(
                    method,
                    f"{CALENDAR_API_BASE}{path}",
                    params=params,
                    json=json,
                    headers=headers,
                )
            if response.status_code == 401:
                self._token = None
            if response.status_code // 100 != 2:
                body = response.text
                trimmed = body[:300] + ("..." if len(body) > 300 else "")
                raise CalendarAPIError(
                    response.status_code,
                    f"Google Calendar API error {response.status_code}: {trimmed}",
                )
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        return await retry_async(
            _call,
            policy=self._retry_policy,
            timeout_seconds=self._timeout_seconds * 2,
            logger=LOGGER,
            request_context=request_context,
            component="calendar",
            name=f"{method} {path.split('/')[-1]}",
            is_retryable=is_retryable_http_error,
        )

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    async def list_events(
        self,
        calendar_id: str,
        time_min_iso: str,
        time_max_iso: str,
        *,
        request_context: RequestContext | None = None,
    ) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "timeMin": time_min_iso,
                "timeMax": time_max_iso,
                "singleEvents": "true",
                "orderBy": "startTime",
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self._request(
                "GET",
                self._events_path(calendar_id),
                params=params,
                request_context=request_context,
            ) or {}
            items = data.get("items") if isinstance(data.get("items"), list) else []
            events.extend(CalendarEvent.from_api(item) for item in items if isinstance(item, dict))
            next_token = data.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                return events
            page_token = next_token

    async def get_event(self, calendar_id: str, event_id: str) -> CalendarEvent:
        data = await self._request("GET", self._events_path(calendar_id, event_id)) or {}
        return CalendarEvent.from_api(data)

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> CalendarEvent:
        data = await self._request("POST", self._events_path(calendar_id), json=body) or {}
        return CalendarEvent.from_api(data)

    async def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> CalendarEvent:
        data = await self._request("PATCH", self._events_path(calendar_id, event_id), json=body) or {}
        return CalendarEvent.from_api(data)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._request("DELETE", self._events_path(calendar_id, event_id))
