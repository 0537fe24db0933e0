"""Scheduled jobs driven by an external hourly trigger.

Each tick loads the users once, works out every user's wall clock from the
stored offset and decides what to send. Users are processed in bounded
concurrent batches; a failure for one user is recorded in its result and
never stops the others. Only a failure to load the users aborts the tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from daybook.core.batching import Settled, dispatch_in_batches
from daybook.core.birthdays import birthday_text, match_birthdays, today_month_day
from daybook.core.digest import CalendarReader, send_daily_digest
from daybook.core.digest_time import DigestMatch, should_fire_digest
from daybook.core.logical_date import local_time, logical_date, shift_iso_date
from daybook.core.missing_days import find_missing_days
from daybook.core.models import Birthday, User
from daybook.core.reminders import send_journal_reminder, send_missing_days_reminder, send_yesterday_reminder
from daybook.infra.config import Settings
from daybook.infra.messaging import Messenger
from daybook.infra.request_context import RequestContext, elapsed_ms, log_error, log_event, start_cron_context
from daybook.infra.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)

STATE_NOOP = "no-op"
STATE_DIGEST = "digest-eligible"
STATE_MIDNIGHT = "midnight-eligible"
STATE_BOTH = "both"

DIGEST_SENT = "digest_sent"
DIGEST_SENT_HOUR_FALLBACK = "digest_sent_hour_fallback"
DIGEST_FAILED = "digest_failed"
REMINDER_SENT = "reminder_sent"
REMINDER_SKIPPED = "reminder_skipped"


@dataclass(frozen=True)
class TickPlan:
    state: str
    digest_match: DigestMatch
    reminder_date: str | None
    local_time: datetime

    @property
    def send_digest(self) -> bool:
        return self.state in (STATE_DIGEST, STATE_BOTH)

    @property
    def send_reminder(self) -> bool:
        return self.state in (STATE_MIDNIGHT, STATE_BOTH)


@dataclass(frozen=True)
class UserCronResult:
    user_id: int
    actions: list[str] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"userId": self.user_id, "actions": list(self.actions)}
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class RemindMissingSummary:
    sent: int
    failed: int
    total: int


@dataclass(frozen=True)
class YesterdayReminderSummary:
    sent: int
    failed: int
    missing_data: int


@dataclass(frozen=True)
class BirthdayDelivery:
    sent: bool
    name: str
    user_id: int
    error: str | None = None


@dataclass(frozen=True)
class BirthdaySummary:
    processed: int
    sent: int
    details: list[BirthdayDelivery] = field(default_factory=list)


def plan_tick(
    now_utc: datetime,
    tz_offset_minutes: int,
    digest_time: str | None,
    tolerance_minutes: int,
    *,
    default_digest_time: str = "09:00",
) -> TickPlan:
    """Decide what one hourly tick owes a single user.

    The journal reminder fires in the local midnight hour and covers the
    previous local calendar day. This is plain midnight, not the 04:00
    logical boundary.
    """
    local = local_time(now_utc, tz_offset_minutes)
    match = should_fire_digest(
        local.hour,
        local.minute,
        digest_time,
        tolerance_minutes,
        default=default_digest_time,
    )
    midnight = local.hour == 0
    if match.fire and midnight:
        state = STATE_BOTH
    elif match.fire:
        state = STATE_DIGEST
    elif midnight:
        state = STATE_MIDNIGHT
    else:
        state = STATE_NOOP
    reminder_date = (local.date() - timedelta(days=1)).isoformat() if midnight else None
    return TickPlan(state=state, digest_match=match, reminder_date=reminder_date, local_time=local)


def _now(now_utc: datetime | None) -> datetime:
    if now_utc is None:
        return datetime.now(timezone.utc)
    if now_utc.tzinfo is None:
        return now_utc.replace(tzinfo=timezone.utc)
    return now_utc


class CronOrchestrator:
    def __init__(
        self,
        *,
        store: SQLiteStore,
        messenger: Messenger,
        settings: Settings,
        calendar: CalendarReader | None = None,
    ) -> None:
        self._store = store
        self._messenger = messenger
        self._settings = settings
        self._calendar = calendar

    async def _load_users(self) -> list[User]:
        return await self._store.list_users(limit=self._settings.cron_users_batch_limit)

    async def _send_digest(self, user: User, now_utc: datetime, ctx: RequestContext) -> bool:
        if self._calendar is None:
            LOGGER.warning("Digest skipped: calendar is not configured user_id=%s", user.id)
            return False
        return await send_daily_digest(
            self._calendar,
            self._messenger,
            calendar_id=self._settings.google_calendar_id,
            telegram_id=user.telegram_id,
            tz_offset_minutes=user.tz_offset_minutes,
            now_utc=now_utc,
            button_limit=self._settings.telegram_button_text_limit,
            truncate_to=self._settings.telegram_button_text_truncate_to,
            request_context=ctx,
        )

    async def _process_user(self, user: User, now_utc: datetime, ctx: RequestContext) -> UserCronResult:
        plan = plan_tick(
            now_utc,
            user.tz_offset_minutes,
            user.digest_time,
            self._settings.cron_minute_tolerance,
            default_digest_time=self._settings.default_digest_time,
        )
        actions: list[str] = []
        if plan.send_digest:
            sent = await self._send_digest(user, now_utc, ctx)
            if not sent:
                actions.append(DIGEST_FAILED)
            elif plan.digest_match.matched_exactly:
                actions.append(DIGEST_SENT)
            else:
                actions.append(DIGEST_SENT_HOUR_FALLBACK)
        if plan.send_reminder and plan.reminder_date is not None:
            sent = await send_journal_reminder(
                self._store,
                self._messenger,
                user,
                plan.reminder_date,
                self._settings.webapp_url,
            )
            actions.append(REMINDER_SENT if sent else REMINDER_SKIPPED)
        return UserCronResult(user_id=user.id, actions=actions)

    async def run_hourly(self, now_utc: datetime | None = None) -> list[UserCronResult]:
        current = _now(now_utc)
        ctx = start_cron_context("hourly", now=current)
        users = await self._load_users()

        async def _run(user: User, _index: int) -> UserCronResult:
            return await self._process_user(user, current, ctx)

        settled = await dispatch_in_batches(users, self._settings.cron_process_batch_size, _run)
        results = [self._user_result(user, entry, ctx) for user, entry in zip(users, settled)]
        log_event(
            LOGGER,
            ctx,
            component="cron",
            event="hourly.done",
            duration_ms=elapsed_ms(ctx.start_time),
            users=len(users),
            failed=sum(1 for result in results if result.error is not None),
        )
        return results

    @staticmethod
    def _user_result(user: User, entry: Settled[UserCronResult], ctx: RequestContext) -> UserCronResult:
        if entry.ok and entry.value is not None:
            return entry.value
        error = entry.error or RuntimeError("unknown error")
        log_error(LOGGER, ctx, component="cron", where="hourly.user", exc=error, extra={"target_user": user.id})
        return UserCronResult(user_id=user.id, actions=[], error=str(error) or type(error).__name__)

    async def run_remind_missing(self, now_utc: datetime | None = None) -> RemindMissingSummary:
        current = _now(now_utc)
        ctx = start_cron_context("remind-missing", now=current)
        users = await self._load_users()
        lookback = self._settings.remind_missing_lookback_days

        async def _run(user: User, _index: int) -> bool:
            today = logical_date(current, user.tz_offset_minutes)
            missing = await find_missing_days(self._store, user.id, lookback, today)
            if not missing:
                return False
            sent = await send_missing_days_reminder(self._messenger, user, missing, self._settings.webapp_url)
            if not sent:
                raise RuntimeError(f"Missing-days reminder was not delivered to user_id={user.id}")
            return True

        settled = await dispatch_in_batches(users, self._settings.cron_process_batch_size, _run)
        for user, entry in zip(users, settled):
            if not entry.ok and entry.error is not None:
                log_error(
                    LOGGER,
                    ctx,
                    component="cron",
                    where="remind_missing.user",
                    exc=entry.error,
                    extra={"target_user": user.id},
                )
        summary = RemindMissingSummary(
            sent=sum(1 for entry in settled if entry.ok and entry.value),
            failed=sum(1 for entry in settled if not entry.ok),
            total=len(settled),
        )
        log_event(
            LOGGER,
            ctx,
            component="cron",
            event="remind_missing.done",
            duration_ms=elapsed_ms(ctx.start_time),
            sent=summary.sent,
            failed=summary.failed,
            total=summary.total,
        )
        return summary

    async def run_remind_yesterday(self, now_utc: datetime | None = None) -> YesterdayReminderSummary:
        """Daily reminder about the logical day before today, sent to every user."""
        current = _now(now_utc)
        ctx = start_cron_context("remind", now=current)
        users = await self._load_users()

        async def _run(user: User, _index: int) -> bool:
            yesterday = shift_iso_date(logical_date(current, user.tz_offset_minutes), -1)
            delivered, had_data = await send_yesterday_reminder(
                self._store,
                self._messenger,
                user,
                yesterday,
                self._settings.webapp_url,
            )
            if not delivered:
                raise RuntimeError(f"Yesterday reminder was not delivered to user_id={user.id}")
            return had_data

        settled = await dispatch_in_batches(users, self._settings.cron_process_batch_size, _run)
        for user, entry in zip(users, settled):
            if not entry.ok and entry.error is not None:
                log_error(
                    LOGGER,
                    ctx,
                    component="cron",
                    where="remind.user",
                    exc=entry.error,
                    extra={"target_user": user.id},
                )
        summary = YesterdayReminderSummary(
            sent=sum(1 for entry in settled if entry.ok),
            failed=sum(1 for entry in settled if not entry.ok),
            missing_data=sum(1 for entry in settled if entry.ok and not entry.value),
        )
        log_event(
            LOGGER,
            ctx,
            component="cron",
            event="remind.done",
            duration_ms=elapsed_ms(ctx.start_time),
            sent=summary.sent,
            failed=summary.failed,
            missing_data=summary.missing_data,
        )
        return summary

    async def run_check_birthdays(self, now_utc: datetime | None = None) -> BirthdaySummary:
        current = _now(now_utc)
        ctx = start_cron_context("check-birthdays", now=current)
        month, day = today_month_day(current, self._settings.calendar_default_offset_minutes)
        rows = await self._store.list_all_birthdays()
        matches = match_birthdays(rows, month, day)
        LOGGER.info("Checking birthdays for %02d-%02d: matches=%s", month, day, len(matches))

        async def _run(match: tuple[Birthday, int], _index: int) -> bool:
            birthday, telegram_id = match
            return await self._messenger.send_message(telegram_id, birthday_text(birthday.name))

        settled = await dispatch_in_batches(matches, self._settings.cron_process_batch_size, _run)
        details: list[BirthdayDelivery] = []
        for (birthday, _telegram_id), entry in zip(matches, settled):
            if entry.ok:
                details.append(BirthdayDelivery(sent=bool(entry.value), name=birthday.name, user_id=birthday.user_id))
            else:
                details.append(
                    BirthdayDelivery(sent=False, name=birthday.name, user_id=birthday.user_id, error=str(entry.error))
                )
        summary = BirthdaySummary(
            processed=len(matches),
            sent=sum(1 for item in details if item.sent),
            details=details,
        )
        log_event(
            LOGGER,
            ctx,
            component="cron",
            event="check_birthdays.done",
            duration_ms=elapsed_ms(ctx.start_time),
            processed=summary.processed,
            sent=summary.sent,
        )
        return summary
