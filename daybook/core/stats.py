from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from daybook.core.errors import ValidationError
from daybook.core.models import DailyLog, Habit, HabitCompletion
from daybook.core.streaks import HabitStreak, habit_streaks

HEATMAP_METRICS = ("avg", "efficiency", "social", "habits", "habit")
HEATMAP_MAX_VALUE = 5


@dataclass(frozen=True)
class StatsSummary:
    from_date: str
    to_date: str
    avg_efficiency: float | None
    avg_social: float | None
    avg_overall: float | None
    days_with_ratings: int
    days_with_any_completion: int
    streaks: list[HabitStreak] = field(default_factory=list)


@dataclass(frozen=True)
class HeatmapPoint:
    date: str
    value: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def _day_score(log: DailyLog) -> float | None:
    ratings = [value for value in (log.rating_efficiency, log.rating_social) if value is not None]
    return _mean(ratings)


def build_summary(
    from_date: str,
    to_date: str,
    logs: Sequence[DailyLog],
    habits: Sequence[Habit],
    completions: Iterable[HabitCompletion],
) -> StatsSummary:
    """Averages over ``logs`` plus habit streaks anchored at ``to_date``.

    ``avg_overall`` is the mean of per-day means, so a day with a single
    rating counts with that rating alone.
    """
    efficiency = [log.rating_efficiency for log in logs if log.rating_efficiency is not None]
    social = [log.rating_social for log in logs if log.rating_social is not None]
    day_scores = [score for score in (_day_score(log) for log in logs) if score is not None]

    habit_ids = {habit.id for habit in habits}
    pairs = [(item.habit_id, item.date) for item in completions if item.habit_id in habit_ids]

    return StatsSummary(
        from_date=from_date,
        to_date=to_date,
        avg_efficiency=_mean(efficiency),
        avg_social=_mean(social),
        avg_overall=_mean(day_scores),
        days_with_ratings=sum(1 for log in logs if log.rating_efficiency is not None or log.rating_social is not None),
        days_with_any_completion=len({day for _, day in pairs}),
        streaks=habit_streaks(((habit.id, habit.title) for habit in habits), pairs, to_date),
    )


def ratings_heatmap(logs: Sequence[DailyLog], metric: str) -> list[HeatmapPoint]:
    points: list[HeatmapPoint] = []
    for log in sorted(logs, key=lambda item: item.date):
        if metric == "efficiency":
            value = log.rating_efficiency or 0
        elif metric == "social":
            value = log.rating_social or 0
        else:
            score = _day_score(log)
            value = _round_half_up(score) if score is not None else 0
        points.append(HeatmapPoint(date=log.date, value=value))
    return points


def habits_heatmap(completions: Iterable[HabitCompletion], active_habit_count: int) -> list[HeatmapPoint]:
    """Share of active habits done per day, scaled to 1..5."""
    if active_habit_count <= 0:
        return []
    counts: dict[str, int] = {}
    for item in completions:
        counts[item.date] = counts.get(item.date, 0) + 1
    points: list[HeatmapPoint] = []
    for day in sorted(counts):
        ratio = min(1.0, max(0.0, counts[day] / active_habit_count))
        points.append(HeatmapPoint(date=day, value=max(1, _round_half_up(ratio * HEATMAP_MAX_VALUE))))
    return points


def single_habit_heatmap(completions: Iterable[HabitCompletion]) -> list[HeatmapPoint]:
    return [HeatmapPoint(date=day, value=HEATMAP_MAX_VALUE) for day in sorted({item.date for item in completions})]


def build_heatmap(
    metric: str,
    *,
    logs: Sequence[DailyLog] = (),
    completions: Iterable[HabitCompletion] = (),
    active_habit_count: int = 0,
) -> list[HeatmapPoint]:
    if metric not in HEATMAP_METRICS:
        raise ValidationError(f"Unknown metric: {metric}")
    if metric == "habits":
        return habits_heatmap(completions, active_habit_count)
    if metric == "habit":
        return single_habit_heatmap(completions)
    return ratings_heatmap(logs, metric)
