from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import wraps

import httpx
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from daybook.core.agent import CalendarAgent
from daybook.core.digest import DONE_PREFIX, TOGGLE_EVENT_PREFIX, UNTITLED, button_text
from daybook.core.logical_date import logical_date
from daybook.core.models import DailyLogPatch, User
from daybook.infra.config import Settings
from daybook.infra.google_calendar import CalendarAPIError, GoogleCalendarClient
from daybook.infra.llm import Classification, IntentClassifier, LLMAPIError
from daybook.infra.messaging import webapp_keyboard
from daybook.infra.request_context import RequestContext, elapsed_ms, log_error, log_event, start_request
from daybook.infra.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)

START_TEXT = "Открой Mini App и отмечай привычки/оценки дня. Логический день длится до 04:00."
START_BUTTON_LABEL = "Открыть трекер"
JOURNAL_SAVED_TEXT = "Записал в дневник за этот логический день."
CALENDAR_DISABLED_TEXT = "Календарь не подключён."
CALENDAR_ERROR_TEXT = "Не получилось обратиться к календарю. Попробуй позже."
OTHER_INTENT_TEXT = "Не понял, что сделать. Напиши итоги дня или задачу для календаря."
SERVER_ERROR_TEXT = "Ошибка на сервере. Попробуй ещё раз."

CALENDAR_INTENTS = {"schedule_event", "get_events", "delete_event", "reschedule_event", "mark_done"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_store(context: ContextTypes.DEFAULT_TYPE) -> SQLiteStore:
    return context.application.bot_data["store"]


def _get_settings(context: ContextTypes.DEFAULT_TYPE) -> Settings:
    return context.application.bot_data["settings"]


def _get_calendar(context: ContextTypes.DEFAULT_TYPE) -> GoogleCalendarClient | None:
    return context.application.bot_data.get("calendar")


def _get_classifier(context: ContextTypes.DEFAULT_TYPE) -> IntentClassifier | None:
    return context.application.bot_data.get("classifier")


def _with_error_handling(
    handler: Callable[[Update, ContextTypes.DEFAULT_TYPE, RequestContext], Awaitable[None]],
) -> Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]:
    @wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        request_context = start_request(update)
        try:
            await handler(update, context, request_context)
        except Exception as exc:
            request_context.status = "error"
            log_error(LOGGER, request_context, component="bot", where=handler.__name__, exc=exc)
            await _handle_exception(update, context, exc)
        finally:
            log_event(
                LOGGER,
                request_context,
                component="bot",
                event=f"handler.{handler.__name__}",
                status=request_context.status,
                duration_ms=elapsed_ms(request_context.start_time),
            )

    return wrapper


async def _handle_exception(update: Update, context: ContextTypes.DEFAULT_TYPE, error: Exception) -> None:
    try:
        await context.application.process_error(update, error)
    except Exception:
        LOGGER.exception("Failed to forward exception to error handler")


async def _ensure_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> User | None:
    tg_user = update.effective_user
    if tg_user is None:
        return None
    return await _get_store(context).ensure_user(tg_user.id, first_name=tg_user.first_name)


@_with_error_handling
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE, request_context: RequestContext) -> None:
    if update.message is None or await _ensure_user(update, context) is None:
        return
    settings = _get_settings(context)
    await update.message.reply_text(
        START_TEXT,
        reply_markup=webapp_keyboard(START_BUTTON_LABEL, settings.webapp_url),
    )


async def _classify(
    context: ContextTypes.DEFAULT_TYPE,
    text: str,
    today: str,
    request_context: RequestContext,
) -> Classification:
    classifier = _get_classifier(context)
    if classifier is None:
        return Classification(intent="journal")
    try:
        return await classifier.classify(text, today)
    except (LLMAPIError, httpx.HTTPError, RuntimeError) as exc:
        # An unavailable classifier must not lose the user's entry.
        log_error(LOGGER, request_context, component="llm", where="classify", exc=exc)
        return Classification(intent="journal")


async def _run_calendar_intent(
    agent: CalendarAgent,
    classification: Classification,
    *,
    today: str,
    tz_offset_minutes: int,
) -> str:
    intent = classification.intent
    schedule = classification.schedule_details
    if intent == "get_events":
        date = schedule.date if schedule and schedule.date else today
        return await agent.list_day(date, tz_offset_minutes=tz_offset_minutes)
    if intent == "reschedule_event":
        if classification.reschedule_details is None:
            return OTHER_INTENT_TEXT
        return await agent.reschedule(
            classification.reschedule_details,
            today=today,
            tz_offset_minutes=tz_offset_minutes,
        )
    if schedule is None:
        return OTHER_INTENT_TEXT
    if intent == "schedule_event":
        return await agent.schedule(schedule, today=today, tz_offset_minutes=tz_offset_minutes)
    if intent == "mark_done":
        return await agent.mark_done(schedule, today=today, tz_offset_minutes=tz_offset_minutes)
    return await agent.delete(schedule, today=today, tz_offset_minutes=tz_offset_minutes)


@_with_error_handling
async def text_message(update: Update, context: ContextTypes.DEFAULT_TYPE, request_context: RequestContext) -> None:
    message = update.message
    if message is None or not message.text:
        return
    text = message.text.strip()
    if not text:
        return
    user = await _ensure_user(update, context)
    if user is None:
        return
    today = logical_date(_utcnow(), user.tz_offset_minutes)
    classification = await _classify(context, text, today, request_context)
    request_context.meta["intent"] = classification.intent

    if classification.intent == "journal":
        await _get_store(context).upsert_daily_log(user.id, today, DailyLogPatch(journal_text=text))
        await message.reply_text(JOURNAL_SAVED_TEXT)
        return
    if classification.intent not in CALENDAR_INTENTS:
        await message.reply_text(OTHER_INTENT_TEXT)
        return

    calendar = _get_calendar(context)
    if calendar is None:
        await message.reply_text(CALENDAR_DISABLED_TEXT)
        return
    agent = CalendarAgent(calendar, calendar_id=_get_settings(context).google_calendar_id)
    try:
        reply = await _run_calendar_intent(
            agent,
            classification,
            today=today,
            tz_offset_minutes=user.tz_offset_minutes,
        )
    except (CalendarAPIError, httpx.HTTPError) as exc:
        log_error(LOGGER, request_context, component="calendar", where=classification.intent, exc=exc)
        reply = CALENDAR_ERROR_TEXT
    await message.reply_text(reply)


def toggled_summary(summary: str | None) -> str:
    title = summary or UNTITLED
    if title.startswith(DONE_PREFIX):
        return title[len(DONE_PREFIX) :].lstrip() or UNTITLED
    return f"{DONE_PREFIX} {title}"


def _replace_button(markup: InlineKeyboardMarkup | None, data: str, text: str) -> InlineKeyboardMarkup | None:
    if markup is None:
        return None
    rows = []
    for row in markup.inline_keyboard:
        rows.append(
            [
                InlineKeyboardButton(text, callback_data=data) if button.callback_data == data else button
                for button in row
            ]
        )
    return InlineKeyboardMarkup(rows)


@_with_error_handling
async def toggle_event_callback(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    request_context: RequestContext,
) -> None:
    query = update.callback_query
    if query is None or not query.data or not query.data.startswith(TOGGLE_EVENT_PREFIX):
        return
    event_id = query.data[len(TOGGLE_EVENT_PREFIX) :]
    calendar = _get_calendar(context)
    if calendar is None or not event_id:
        await query.answer(CALENDAR_DISABLED_TEXT)
        return
    user = await _ensure_user(update, context)
    settings = _get_settings(context)
    try:
        event = await calendar.get_event(settings.google_calendar_id, event_id)
        updated = await calendar.patch_event(
            settings.google_calendar_id,
            event_id,
            {"summary": toggled_summary(event.summary)},
        )
    except (CalendarAPIError, httpx.HTTPError) as exc:
        log_error(LOGGER, request_context, component="calendar", where="toggle_event", exc=exc)
        await query.answer(CALENDAR_ERROR_TEXT)
        return
    done = (updated.summary or "").startswith(DONE_PREFIX)
    await query.answer("Готово ✅" if done else "Вернул в работу")
    label = button_text(
        updated,
        user.tz_offset_minutes if user else 0,
        button_limit=settings.telegram_button_text_limit,
        truncate_to=settings.telegram_button_text_truncate_to,
    )
    markup = _replace_button(query.message.reply_markup if query.message else None, query.data, label)
    if markup is None:
        return
    try:
        await query.edit_message_reply_markup(reply_markup=markup)
    except TelegramError as exc:
        LOGGER.warning("Failed to refresh digest keyboard: event_id=%s error=%s", event_id, exc)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    LOGGER.exception("Unhandled exception", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(SERVER_ERROR_TEXT)
        except TelegramError:
            LOGGER.warning("Failed to deliver error reply")
