from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from daybook.core.errors import ValidationError


class _Unset:
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Marks a patch field the caller did not send; distinct from an explicit None.
UNSET: Any = _Unset()


@dataclass(frozen=True)
class User:
    id: int
    telegram_id: int
    first_name: str | None
    tz_offset_minutes: int
    digest_time: str | None


@dataclass(frozen=True)
class DailyLog:
    user_id: int
    date: str
    journal_text: str | None = None
    rating_efficiency: int | None = None
    rating_social: int | None = None


@dataclass(frozen=True)
class Habit:
    id: int
    user_id: int
    title: str
    is_active: bool
    position: int


@dataclass(frozen=True)
class HabitCompletion:
    id: int
    user_id: int
    habit_id: int
    date: str


@dataclass(frozen=True)
class YearGoal:
    id: int
    user_id: int
    year: int
    title: str
    is_active: bool
    position: int


@dataclass(frozen=True)
class Birthday:
    id: int
    user_id: int
    name: str
    date: str


class _Patch:
    """Base for partial updates: only fields that are not UNSET are applied."""

    def changes(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self) if getattr(self, item.name) is not UNSET}

    def require_changes(self) -> dict[str, Any]:
        changes = self.changes()
        if not changes:
            raise ValidationError("No fields to update")
        return changes


@dataclass(frozen=True)
class DailyLogPatch(_Patch):
    journal_text: Any = UNSET
    rating_efficiency: Any = UNSET
    rating_social: Any = UNSET


@dataclass(frozen=True)
class HabitPatch(_Patch):
    title: Any = UNSET
    is_active: Any = UNSET
    position: Any = UNSET


@dataclass(frozen=True)
class GoalPatch(_Patch):
    title: Any = UNSET
    is_active: Any = UNSET
    position: Any = UNSET
