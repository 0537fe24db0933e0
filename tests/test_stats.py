from __future__ import annotations

import pytest

from daybook.core.models import DailyLog, Habit, HabitCompletion
from daybook.core.stats import build_heatmap, build_summary, habits_heatmap, ratings_heatmap


def _log(date: str, efficiency=None, social=None, text=None) -> DailyLog:
    return DailyLog(user_id=1, date=date, journal_text=text, rating_efficiency=efficiency, rating_social=social)


def _done(habit_id: int, date: str) -> HabitCompletion:
    return HabitCompletion(id=0, user_id=1, habit_id=habit_id, date=date)


HABITS = [
    Habit(id=1, user_id=1, title="Бег", is_active=True, position=0),
    Habit(id=2, user_id=1, title="Чтение", is_active=True, position=1),
]


def test_summary_averages_and_counts() -> None:
    logs = [
        _log("2024-05-01", efficiency=4, social=2),
        _log("2024-05-02", efficiency=5),
        _log("2024-05-03", text="только заметка"),
    ]
    completions = [_done(1, "2024-05-02"), _done(1, "2024-05-03"), _done(2, "2024-05-03"), _done(9, "2024-05-01")]

    summary = build_summary("2024-05-01", "2024-05-03", logs, HABITS, completions)

    assert summary.avg_efficiency == pytest.approx(4.5)
    assert summary.avg_social == pytest.approx(2.0)
    assert summary.avg_overall == pytest.approx(4.0)
    assert summary.days_with_ratings == 2
    assert summary.days_with_any_completion == 2
    assert [(item.habit_id, item.current_streak, item.best_streak) for item in summary.streaks] == [
        (1, 2, 2),
        (2, 1, 1),
    ]


def test_summary_without_data() -> None:
    summary = build_summary("2024-05-01", "2024-05-03", [], [], [])

    assert summary.avg_efficiency is None
    assert summary.avg_overall is None
    assert summary.days_with_ratings == 0
    assert summary.streaks == []


def test_ratings_heatmap_rounds_half_up() -> None:
    logs = [_log("2024-05-02", efficiency=4, social=3), _log("2024-05-01", efficiency=2), _log("2024-05-03")]

    assert [(point.date, point.value) for point in ratings_heatmap(logs, "avg")] == [
        ("2024-05-01", 2),
        ("2024-05-02", 4),
        ("2024-05-03", 0),
    ]
    assert [point.value for point in ratings_heatmap(logs, "social")] == [0, 3, 0]


def test_habits_heatmap_scales_share_to_five() -> None:
    completions = [_done(1, "2024-05-01"), _done(1, "2024-05-02"), _done(2, "2024-05-02"), _done(3, "2024-05-02")]

    points = habits_heatmap(completions, active_habit_count=4)

    assert [(point.date, point.value) for point in points] == [("2024-05-01", 1), ("2024-05-02", 4)]
    assert habits_heatmap(completions, active_habit_count=0) == []


def test_habits_heatmap_caps_at_five() -> None:
    completions = [_done(1, "2024-05-01"), _done(2, "2024-05-01")]

    assert habits_heatmap(completions, active_habit_count=1)[0].value == 5


def test_single_habit_heatmap_deduplicates_days() -> None:
    points = build_heatmap("habit", completions=[_done(1, "2024-05-02"), _done(1, "2024-05-02")])

    assert [(point.date, point.value) for point in points] == [("2024-05-02", 5)]


def test_build_heatmap_rejects_unknown_metric() -> None:
    with pytest.raises(ValueError):
        build_heatmap("mood")
