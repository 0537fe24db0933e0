"""HTTP surface for the Mini App and the external cron trigger."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from daybook.core.cron import CronOrchestrator
from daybook.core.errors import NotFoundError, ValidationError
from daybook.core.logical_date import clamp_tz_offset, logical_date, parse_iso_date
from daybook.core.models import Birthday, DailyLog, Habit, User, YearGoal
from daybook.core.stats import HEATMAP_METRICS, build_heatmap, build_summary
from daybook.infra.bot_client import get_bot
from daybook.infra.config import Settings
from daybook.infra.cron_auth import UNAUTHORIZED_BODY, is_cron_authorized
from daybook.infra.google_calendar import GoogleCalendarClient, GoogleCalendarConfig
from daybook.infra.messaging import Messenger
from daybook.infra.storage import SQLiteStore
from daybook.web import schemas

LOGGER = logging.getLogger(__name__)

MIN_YEAR = 1970
MAX_YEAR = 2500


class AuthError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_calendar(settings: Settings) -> GoogleCalendarClient | None:
    if not settings.calendar_enabled:
        return None
    return GoogleCalendarClient(
        config=GoogleCalendarConfig(
            client_id=settings.google_client_id or "",
            client_secret=settings.google_client_secret or "",
            refresh_token=settings.google_refresh_token or "",
        ),
        timeout_seconds=settings.calendar_timeout_seconds,
    )


def build_orchestrator(settings: Settings, store: SQLiteStore) -> CronOrchestrator:
    return CronOrchestrator(
        store=store,
        messenger=Messenger(get_bot(settings.bot_token)),
        settings=settings,
        calendar=build_calendar(settings),
    )


def _parse_telegram_id(raw: str | None) -> int | None:
    if not raw or not raw.strip().isdigit():
        return None
    value = int(raw.strip())
    return value if value > 0 else None


def _year_of(date: str) -> int:
    year = parse_iso_date(date).year
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError("Invalid year")
    return year


def _habit_out(habit: Habit) -> schemas.HabitOut:
    return schemas.HabitOut(id=habit.id, title=habit.title, is_active=habit.is_active, position=habit.position)


def _goal_out(goal: YearGoal) -> schemas.GoalOut:
    return schemas.GoalOut(
        id=goal.id,
        year=goal.year,
        title=goal.title,
        is_active=goal.is_active,
        position=goal.position,
    )


def _birthday_out(birthday: Birthday) -> schemas.BirthdayOut:
    return schemas.BirthdayOut(id=birthday.id, name=birthday.name, date=birthday.date)


def _day_log_out(log: DailyLog | None) -> schemas.DayLogOut | None:
    if log is None:
        return None
    return schemas.DayLogOut(
        journal_text=log.journal_text,
        rating_efficiency=log.rating_efficiency,
        rating_social=log.rating_social,
    )


def create_app(
    settings: Settings,
    *,
    store: SQLiteStore | None = None,
    orchestrator: CronOrchestrator | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> FastAPI:
    app = FastAPI(title="daybook")
    app.state.settings = settings
    app.state.store = store or SQLiteStore(settings.db_path, default_digest_time=settings.default_digest_time)
    app.state.orchestrator = orchestrator

    def get_store() -> SQLiteStore:
        return app.state.store

    def get_orchestrator() -> CronOrchestrator:
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(settings, app.state.store)
        return app.state.orchestrator

    def tz_offset(request: Request) -> int | None:
        raw = request.query_params.get("tzOffsetMinutes")
        if raw is None:
            raw = request.headers.get("x-tz-offset-minutes")
        if raw is None:
            return None
        return clamp_tz_offset(raw, limit_minutes=settings.tz_offset_limit_minutes)

    async def current_user(request: Request) -> User:
        telegram_id = _parse_telegram_id(request.headers.get("x-telegram-id"))
        if telegram_id is None:
            raise AuthError("Missing X-Telegram-Id header")
        return await app.state.store.ensure_user(
            telegram_id,
            first_name=request.headers.get("x-telegram-first-name") or None,
            tz_offset_minutes=tz_offset(request),
        )

    def today_for(user: User) -> str:
        return logical_date(clock(), user.tz_offset_minutes)

    # error mapping

    @app.exception_handler(AuthError)
    async def _auth_error(_request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def _value_error(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
            for error in errors
        )
        return JSONResponse(status_code=400, content={"error": message or "Invalid request"})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        return "ok"

    # cron

    @app.api_route(
        "/api/cron/hourly",
        methods=["GET", "POST"],
        response_model=schemas.HourlyResponse,
        response_model_exclude_none=True,
    )
    async def cron_hourly(request: Request):
        if not is_cron_authorized(request.headers, settings.cron_secret):
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        try:
            results = await get_orchestrator().run_hourly(clock())
        except Exception as exc:
            LOGGER.exception("Hourly cron failed")
            return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})
        return schemas.HourlyResponse(
            summary=[
                schemas.UserCronResultOut(user_id=item.user_id, actions=item.actions, error=item.error)
                for item in results
            ]
        )

    @app.api_route("/api/cron/remind", methods=["GET", "POST"], response_model=schemas.RemindResponse)
    async def cron_remind(request: Request):
        if not is_cron_authorized(request.headers, settings.cron_secret):
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        try:
            summary = await get_orchestrator().run_remind_yesterday(clock())
        except Exception as exc:
            LOGGER.exception("Yesterday reminder cron failed")
            return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})
        return schemas.RemindResponse(sent=summary.sent, failed=summary.failed, missing_data=summary.missing_data)

    @app.api_route("/api/cron/remind-missing", methods=["GET", "POST"], response_model=schemas.RemindMissingResponse)
    async def cron_remind_missing(request: Request):
        if not is_cron_authorized(request.headers, settings.cron_secret):
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        try:
            summary = await get_orchestrator().run_remind_missing(clock())
        except Exception as exc:
            LOGGER.exception("Remind-missing cron failed")
            return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})
        return schemas.RemindMissingResponse(sent=summary.sent, failed=summary.failed, total=summary.total)

    @app.api_route(
        "/api/cron/check-birthdays",
        methods=["GET", "POST"],
        response_model=schemas.BirthdayCheckResponse,
        response_model_exclude_none=True,
    )
    async def cron_check_birthdays(request: Request):
        if not is_cron_authorized(request.headers, settings.cron_secret):
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        try:
            summary = await get_orchestrator().run_check_birthdays(clock())
        except Exception as exc:
            LOGGER.exception("Birthday cron failed")
            return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})
        return schemas.BirthdayCheckResponse(
            processed=summary.processed,
            sent=summary.sent,
            details=[
                schemas.BirthdayDeliveryOut(sent=item.sent, name=item.name, user_id=item.user_id, error=item.error)
                for item in summary.details
            ],
        )

    # user

    @app.get("/api/user/status", response_model=schemas.StatusResponse)
    async def user_status(
        date: str | None = Query(default=None, pattern=schemas.ISO_DATE_PATTERN),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        day = date or today_for(user)
        year = _year_of(day)
        habits = await store.list_habits(user.id)
        goals = await store.list_goals(user.id, year)
        return schemas.StatusResponse(
            first_name=user.first_name,
            date=day,
            digest_time=user.digest_time,
            tz_offset_minutes=user.tz_offset_minutes,
            year_goals=[schemas.GoalBrief(id=goal.id, title=goal.title, position=goal.position) for goal in goals],
            habits=[_habit_out(habit) for habit in habits],
            completed_habit_ids=await store.list_completed_habit_ids(user.id, day),
            day_log=_day_log_out(await store.get_daily_log(user.id, day)),
        )

    @app.post("/api/user/settings", response_model=schemas.SettingsResponse)
    async def user_settings(
        body: schemas.SettingsRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        await store.set_digest_time(user.id, body.digest_time)
        return schemas.SettingsResponse(digest_time=body.digest_time)

    # day

    @app.post("/api/day/rate", response_model=schemas.RateResponse)
    async def day_rate(
        body: schemas.RateRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        day = body.date or today_for(user)
        await store.upsert_daily_log(user.id, day, body.to_patch())
        return schemas.RateResponse(date=day)

    @app.get("/api/day/notes", response_model=schemas.NotesResponse)
    async def day_notes(
        cursor: str | None = Query(default=None, pattern=schemas.ISO_DATE_PATTERN),
        limit: int | None = Query(default=None, ge=1),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        if limit is not None and limit > settings.notes_max_page_size:
            raise ValidationError(f"limit must be at most {settings.notes_max_page_size}")
        page_size = limit or settings.notes_default_page_size
        rows = await store.list_notes(user.id, before_date=today_for(user), cursor=cursor, limit=page_size + 1)
        has_more = len(rows) > page_size
        items = [
            schemas.NoteOut(
                date=row.date,
                journal_text=row.journal_text or "",
                rating_efficiency=row.rating_efficiency,
                rating_social=row.rating_social,
            )
            for row in rows[:page_size]
        ]
        return schemas.NotesResponse(items=items, next_cursor=items[-1].date if has_more and items else None)

    # habits

    @app.get("/api/habits/list", response_model=schemas.HabitListResponse)
    async def habits_list(
        include_inactive: bool = Query(default=False, alias="includeInactive"),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        habits = await store.list_habits(user.id, include_inactive=include_inactive)
        return schemas.HabitListResponse(habits=[_habit_out(habit) for habit in habits])

    @app.post("/api/habits/create", response_model=schemas.HabitResponse)
    async def habits_create(
        body: schemas.HabitCreateRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        habit = await store.create_habit(user.id, body.title)
        return schemas.HabitResponse(habit=_habit_out(habit))

    @app.post("/api/habits/toggle", response_model=schemas.ToggleResponse)
    async def habits_toggle(
        body: schemas.ToggleRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        day = body.date or today_for(user)
        completed = await store.toggle_completion(user.id, body.habit_id, day)
        return schemas.ToggleResponse(completed=completed, date=day)

    @app.post("/api/habits/reorder", response_model=schemas.OkResponse)
    async def habits_reorder(
        body: schemas.ReorderRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        await store.reorder_habits(user.id, body.ordered_ids)
        return schemas.OkResponse()

    @app.patch("/api/habits/{habit_id}", response_model=schemas.HabitResponse)
    async def habits_patch(
        habit_id: int,
        body: schemas.HabitPatchRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        habit = await store.update_habit(user.id, habit_id, body.to_patch())
        return schemas.HabitResponse(habit=_habit_out(habit))

    # goals

    @app.get("/api/goals", response_model=schemas.GoalListResponse)
    async def goals_list(
        year: int | None = Query(default=None, ge=MIN_YEAR, le=MAX_YEAR),
        include_inactive: bool = Query(default=False, alias="includeInactive"),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        selected = year or _year_of(today_for(user))
        goals = await store.list_goals(user.id, selected, include_inactive=include_inactive)
        return schemas.GoalListResponse(year=selected, goals=[_goal_out(goal) for goal in goals])

    @app.post("/api/goals", response_model=schemas.GoalResponse)
    async def goals_create(
        body: schemas.GoalCreateRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        selected = body.year or _year_of(today_for(user))
        goal = await store.create_goal(user.id, selected, body.title)
        return schemas.GoalResponse(goal=_goal_out(goal))

    @app.patch("/api/goals/{goal_id}", response_model=schemas.GoalResponse)
    async def goals_patch(
        goal_id: int,
        body: schemas.GoalPatchRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        goal = await store.update_goal(user.id, goal_id, body.to_patch())
        return schemas.GoalResponse(goal=_goal_out(goal))

    @app.delete("/api/goals/{goal_id}", response_model=schemas.OkResponse)
    async def goals_delete(
        goal_id: int,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        await store.deactivate_goal(user.id, goal_id)
        return schemas.OkResponse()

    # birthdays

    @app.get("/api/birthdays", response_model=schemas.BirthdayListResponse)
    async def birthdays_list(user: User = Depends(current_user), store: SQLiteStore = Depends(get_store)):
        birthdays = await store.list_birthdays(user.id)
        return schemas.BirthdayListResponse(birthdays=[_birthday_out(item) for item in birthdays])

    @app.post("/api/birthdays", response_model=schemas.BirthdayResponse)
    async def birthdays_create(
        body: schemas.BirthdayRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        birthday = await store.create_birthday(user.id, body.name, body.date)
        return schemas.BirthdayResponse(birthday=_birthday_out(birthday))

    @app.put("/api/birthdays/{birthday_id}", response_model=schemas.BirthdayResponse)
    async def birthdays_update(
        birthday_id: int,
        body: schemas.BirthdayRequest,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        birthday = await store.update_birthday(user.id, birthday_id, name=body.name, date=body.date)
        return schemas.BirthdayResponse(birthday=_birthday_out(birthday))

    @app.delete("/api/birthdays/{birthday_id}", response_model=schemas.SuccessResponse)
    async def birthdays_delete(
        birthday_id: int,
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        await store.delete_birthday(user.id, birthday_id)
        return schemas.SuccessResponse()

    # stats

    @app.get("/api/stats/summary", response_model=schemas.SummaryResponse)
    async def stats_summary(
        from_date: str | None = Query(default=None, alias="fromDate", pattern=schemas.ISO_DATE_PATTERN),
        to_date: str | None = Query(default=None, alias="toDate", pattern=schemas.ISO_DATE_PATTERN),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        today = today_for(user)
        start = from_date or f"{_year_of(today)}-01-01"
        end = to_date or today
        logs = await store.list_daily_logs(user.id, start, end)
        habits = await store.list_habits(user.id)
        completions = await store.list_completions(user.id, start, end, habit_ids=[habit.id for habit in habits])
        summary = build_summary(start, end, logs, habits, completions)
        return schemas.SummaryResponse(
            from_date=summary.from_date,
            to_date=summary.to_date,
            avg_efficiency=summary.avg_efficiency,
            avg_social=summary.avg_social,
            avg_overall=summary.avg_overall,
            days_with_ratings=summary.days_with_ratings,
            days_with_any_completion=summary.days_with_any_completion,
            streaks=[
                schemas.StreakOut(
                    habit_id=item.habit_id,
                    title=item.title,
                    current_streak=item.current_streak,
                    best_streak=item.best_streak,
                    total_completions=item.total_completions,
                )
                for item in summary.streaks
            ],
        )

    @app.get("/api/stats/heatmap", response_model=schemas.HeatmapResponse, response_model_exclude_none=True)
    async def stats_heatmap(
        metric: str = Query(default="avg"),
        habit_id: int | None = Query(default=None, alias="habitId"),
        user: User = Depends(current_user),
        store: SQLiteStore = Depends(get_store),
    ):
        if metric not in HEATMAP_METRICS:
            raise ValidationError(f"Unknown metric: {metric}")
        year = _year_of(today_for(user))
        start, end = f"{year}-01-01", f"{year}-12-31"
        if metric == "habit":
            if habit_id is None:
                raise ValidationError("Missing habitId")
            completions = await store.list_completions(user.id, start, end, habit_ids=[habit_id])
            points = build_heatmap(metric, completions=completions)
        elif metric == "habits":
            habits = await store.list_habits(user.id)
            completions = await store.list_completions(user.id, start, end, habit_ids=[habit.id for habit in habits])
            points = build_heatmap(metric, completions=completions, active_habit_count=len(habits))
        else:
            points = build_heatmap(metric, logs=await store.list_daily_logs(user.id, start, end))
        return schemas.HeatmapResponse(
            year=year,
            from_date=start,
            to_date=end,
            metric=metric,
            habit_id=habit_id if metric == "habit" else None,
            points=[schemas.HeatmapPointOut(date=point.date, value=point.value) for point in points],
        )

    return app
