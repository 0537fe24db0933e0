from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from daybook.core.logical_date import month_day_from_iso, parse_iso_date
from daybook.core.models import UNSET, DailyLogPatch, GoalPatch, HabitPatch

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
DIGEST_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def _calendar_date(value: Optional[str]) -> Optional[str]:
    if value is not None:
        parse_iso_date(value)
    return value


def _not_null(value):
    # Omitted fields never reach this; only an explicit null does.
    if value is None:
        raise ValueError("must not be null")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    def _sent(self, name: str):
        # Omitted fields stay UNSET; an explicit null is passed through.
        return getattr(self, name) if name in self.model_fields_set else UNSET


# requests


class RateRequest(CamelModel):
    date: Optional[str] = Field(default=None, pattern=ISO_DATE_PATTERN)
    efficiency: Optional[int] = Field(default=None, ge=1, le=5)
    social: Optional[int] = Field(default=None, ge=1, le=5)
    journal_text: Optional[str] = Field(default=None, max_length=10_000)

    check_date = field_validator("date")(_calendar_date)

    def to_patch(self) -> DailyLogPatch:
        return DailyLogPatch(
            journal_text=self._sent("journal_text"),
            rating_efficiency=self._sent("efficiency"),
            rating_social=self._sent("social"),
        )


class HabitCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=80)


class HabitPatchRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=80)
    is_active: Optional[bool] = None
    position: Optional[int] = Field(default=None, ge=0)

    reject_null = field_validator("title", "is_active", "position")(_not_null)

    def to_patch(self) -> HabitPatch:
        return HabitPatch(title=self._sent("title"), is_active=self._sent("is_active"), position=self._sent("position"))


class ToggleRequest(CamelModel):
    habit_id: int
    date: Optional[str] = Field(default=None, pattern=ISO_DATE_PATTERN)

    check_date = field_validator("date")(_calendar_date)


class ReorderRequest(CamelModel):
    ordered_ids: List[int] = Field(min_length=1, max_length=200)


class GoalCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    year: Optional[int] = Field(default=None, ge=1970, le=2500)


class GoalPatchRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    is_active: Optional[bool] = None
    position: Optional[int] = Field(default=None, ge=0)

    reject_null = field_validator("title", "is_active", "position")(_not_null)

    def to_patch(self) -> GoalPatch:
        return GoalPatch(title=self._sent("title"), is_active=self._sent("is_active"), position=self._sent("position"))


class BirthdayRequest(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    date: str = Field(pattern=ISO_DATE_PATTERN)

    @field_validator("date")
    @classmethod
    def check_month_day(cls, value: str) -> str:
        month_day_from_iso(value)
        return value


class SettingsRequest(CamelModel):
    digest_time: str = Field(pattern=DIGEST_TIME_PATTERN)


# responses


class OkResponse(CamelModel):
    ok: bool = True


class SuccessResponse(CamelModel):
    success: bool = True


class RateResponse(CamelModel):
    ok: bool = True
    date: str


class DayLogOut(CamelModel):
    journal_text: Optional[str] = None
    rating_efficiency: Optional[int] = None
    rating_social: Optional[int] = None


class NoteOut(CamelModel):
    date: str
    journal_text: str
    rating_efficiency: Optional[int] = None
    rating_social: Optional[int] = None


class NotesResponse(CamelModel):
    items: List[NoteOut]
    next_cursor: Optional[str] = None


class HabitOut(CamelModel):
    id: int
    title: str
    is_active: bool
    position: int


class HabitListResponse(CamelModel):
    habits: List[HabitOut]


class HabitResponse(CamelModel):
    ok: bool = True
    habit: HabitOut


class ToggleResponse(CamelModel):
    ok: bool = True
    completed: bool
    date: str


class GoalOut(CamelModel):
    id: int
    year: int
    title: str
    is_active: bool
    position: int


class GoalBrief(CamelModel):
    id: int
    title: str
    position: int


class GoalListResponse(CamelModel):
    year: int
    goals: List[GoalOut]


class GoalResponse(CamelModel):
    ok: bool = True
    goal: GoalOut


class BirthdayOut(CamelModel):
    id: int
    name: str
    date: str


class BirthdayListResponse(CamelModel):
    birthdays: List[BirthdayOut]


class BirthdayResponse(CamelModel):
    birthday: BirthdayOut


class StatusResponse(CamelModel):
    first_name: Optional[str] = None
    date: str
    digest_time: Optional[str] = None
    tz_offset_minutes: int
    year_goals: List[GoalBrief]
    habits: List[HabitOut]
    completed_habit_ids: List[int]
    day_log: Optional[DayLogOut] = None


class SettingsResponse(CamelModel):
    success: bool = True
    digest_time: str


class StreakOut(CamelModel):
    habit_id: int
    title: str
    current_streak: int
    best_streak: int
    total_completions: int


class SummaryResponse(CamelModel):
    from_date: str
    to_date: str
    avg_efficiency: Optional[float] = None
    avg_social: Optional[float] = None
    avg_overall: Optional[float] = None
    days_with_ratings: int
    days_with_any_completion: int
    streaks: List[StreakOut]


class HeatmapPointOut(CamelModel):
    date: str
    value: int


class HeatmapResponse(CamelModel):
    year: int
    from_date: str
    to_date: str
    metric: str
    habit_id: Optional[int] = None
    points: List[HeatmapPointOut]


class UserCronResultOut(CamelModel):
    user_id: int
    actions: List[str]
    error: Optional[str] = None


class HourlyResponse(CamelModel):
    ok: bool = True
    summary: List[UserCronResultOut]


class RemindMissingResponse(CamelModel):
    ok: bool = True
    sent: int
    failed: int
    total: int


class RemindResponse(CamelModel):
    ok: bool = True
    sent: int
    failed: int
    missing_data: int


class BirthdayDeliveryOut(CamelModel):
    sent: bool
    name: str
    user_id: int
    error: Optional[str] = None


class BirthdayCheckResponse(CamelModel):
    ok: bool = True
    processed: int
    sent: int
    details: List[BirthdayDeliveryOut]
