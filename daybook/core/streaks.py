"""Habit streaks on plain calendar dates.

Streaks ignore the 04:00 logical boundary: they compare ``YYYY-MM-DD`` strings
as consecutive calendar days.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable, Sequence

from daybook.core.logical_date import shift_iso_date


@dataclass(frozen=True)
class HabitStreak:
    habit_id: int
    title: str
    current_streak: int
    best_streak: int
    total_completions: int


def best_streak(dates_ascending: Sequence[str]) -> int:
    if not dates_ascending:
        return 0
    best = 1
    current = 1
    previous = dates_ascending[0]
    for value in dates_ascending[1:]:
        if value == previous:
            continue
        if value == shift_iso_date(previous, 1):
            current += 1
            best = max(best, current)
        else:
            current = 1
        previous = value
    return best


def current_streak(completions: Collection[str], anchor_date: str) -> int:
    count = 0
    cursor = anchor_date
    while cursor in completions:
        count += 1
        cursor = shift_iso_date(cursor, -1)
    return count


def habit_streaks(
    habits: Iterable[tuple[int, str]],
    completions: Iterable[tuple[int, str]],
    anchor_date: str,
) -> list[HabitStreak]:
    """Streaks per habit; ``completions`` are ``(habit_id, date)`` pairs."""
    by_habit: dict[int, set[str]] = {}
    for habit_id, day in completions:
        by_habit.setdefault(habit_id, set()).add(day)
    result: list[HabitStreak] = []
    for habit_id, title in habits:
        dates = by_habit.get(habit_id, set())
        result.append(
            HabitStreak(
                habit_id=habit_id,
                title=title,
                current_streak=current_streak(dates, anchor_date),
                best_streak=best_streak(sorted(dates)),
                total_completions=len(dates),
            )
        )
    return result
