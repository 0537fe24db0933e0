from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import DummyCalendar, DummyMessenger
from daybook.core.cron import CronOrchestrator
from daybook.web.api import create_app

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
USER = {"X-Telegram-Id": "1001", "X-Telegram-First-Name": "Ann"}
CRON = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def messenger() -> DummyMessenger:
    return DummyMessenger()


@pytest.fixture
def client(settings, store, messenger) -> TestClient:
    orchestrator = CronOrchestrator(store=store, messenger=messenger, settings=settings, calendar=DummyCalendar([]))
    app = create_app(settings, store=store, orchestrator=orchestrator, clock=lambda: NOW)
    return TestClient(app)


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.text == "ok"


@pytest.mark.parametrize("headers", [{}, {"X-Telegram-Id": "abc"}, {"X-Telegram-Id": "0"}])
def test_user_endpoints_require_telegram_id(client, headers) -> None:
    response = client.get("/api/user/status", headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "Missing X-Telegram-Id header"}


def test_status_creates_user_and_reports_day(client) -> None:
    response = client.get("/api/user/status", headers={**USER, "X-Tz-Offset-Minutes": "180"})

    assert response.status_code == 200
    body = response.json()
    assert body["firstName"] == "Ann"
    assert body["date"] == "2024-05-10"
    assert body["digestTime"] == "09:00"
    assert body["tzOffsetMinutes"] == 180
    assert body["habits"] == []
    assert body["completedHabitIds"] == []
    assert body["dayLog"] is None


def test_status_keeps_stored_offset_when_not_sent(client) -> None:
    client.get("/api/user/status?tzOffsetMinutes=-300", headers=USER)

    body = client.get("/api/user/status", headers=USER).json()

    assert body["tzOffsetMinutes"] == -300
    assert body["date"] == "2024-05-10"


def test_rate_then_status_shows_day_log(client) -> None:
    rated = client.post("/api/day/rate", headers=USER, json={"efficiency": 4, "journalText": "  хороший день "})
    partial = client.post("/api/day/rate", headers=USER, json={"social": 2})

    assert rated.json() == {"ok": True, "date": "2024-05-10"}
    assert partial.status_code == 200
    day_log = client.get("/api/user/status", headers=USER).json()["dayLog"]
    assert day_log == {"journalText": "хороший день", "ratingEfficiency": 4, "ratingSocial": 2}


def test_rate_validation_errors_are_400(client) -> None:
    assert client.post("/api/day/rate", headers=USER, json={"efficiency": 6}).status_code == 400
    assert client.post("/api/day/rate", headers=USER, json={"date": "10.05.2024", "social": 3}).status_code == 400
    empty = client.post("/api/day/rate", headers=USER, json={})
    assert empty.status_code == 400
    assert "error" in empty.json()


def test_settings_digest_time(client) -> None:
    ok = client.post("/api/user/settings", headers=USER, json={"digestTime": "07:30"})
    bad = client.post("/api/user/settings", headers=USER, json={"digestTime": "7:30"})

    assert ok.json() == {"success": True, "digestTime": "07:30"}
    assert bad.status_code == 400
    assert client.get("/api/user/status", headers=USER).json()["digestTime"] == "07:30"


def test_habits_flow(client) -> None:
    first = client.post("/api/habits/create", headers=USER, json={"title": "Бег"}).json()["habit"]
    second = client.post("/api/habits/create", headers=USER, json={"title": "Чтение"}).json()["habit"]

    toggled = client.post("/api/habits/toggle", headers=USER, json={"habitId": first["id"]})
    assert toggled.json() == {"ok": True, "completed": True, "date": "2024-05-10"}
    assert client.get("/api/user/status", headers=USER).json()["completedHabitIds"] == [first["id"]]

    reordered = client.post("/api/habits/reorder", headers=USER, json={"orderedIds": [second["id"], first["id"]]})
    assert reordered.json() == {"ok": True}

    patched = client.patch(f"/api/habits/{second['id']}", headers=USER, json={"isActive": False})
    assert patched.json()["habit"]["isActive"] is False

    active = client.get("/api/habits/list", headers=USER).json()["habits"]
    everything = client.get("/api/habits/list?includeInactive=true", headers=USER).json()["habits"]
    assert [habit["title"] for habit in active] == ["Бег"]
    assert [habit["title"] for habit in everything] == ["Чтение", "Бег"]


def test_habit_of_another_user_is_not_found(client) -> None:
    habit = client.post("/api/habits/create", headers=USER, json={"title": "Бег"}).json()["habit"]

    response = client.post("/api/habits/toggle", headers={"X-Telegram-Id": "2002"}, json={"habitId": habit["id"]})

    assert response.status_code == 400
    assert response.json() == {"error": "Habit not found"}


@pytest.mark.parametrize("payload", [{"title": None}, {"isActive": None}, {"position": None}])
def test_habit_patch_rejects_explicit_null(client, payload) -> None:
    habit = client.post("/api/habits/create", headers=USER, json={"title": "Бег"}).json()["habit"]

    response = client.patch(f"/api/habits/{habit['id']}", headers=USER, json=payload)

    assert response.status_code == 400
    assert "must not be null" in response.json()["error"]
    assert client.get("/api/habits/list", headers=USER).json()["habits"][0]["title"] == "Бег"


@pytest.mark.parametrize("payload", [{"title": None}, {"isActive": None}, {"position": None}])
def test_goal_patch_rejects_explicit_null(client, payload) -> None:
    goal = client.post("/api/goals", headers=USER, json={"title": "Марафон"}).json()["goal"]

    response = client.patch(f"/api/goals/{goal['id']}", headers=USER, json=payload)

    assert response.status_code == 400
    assert "must not be null" in response.json()["error"]
    assert client.get("/api/goals", headers=USER).json()["goals"][0]["isActive"] is True


def test_impossible_calendar_dates_are_rejected(client) -> None:
    habit = client.post("/api/habits/create", headers=USER, json={"title": "Бег"}).json()["habit"]

    rate = client.post("/api/day/rate", headers=USER, json={"date": "2024-02-31", "social": 3})
    toggle = client.post("/api/habits/toggle", headers=USER, json={"habitId": habit["id"], "date": "2024-13-01"})
    birthday = client.post("/api/birthdays", headers=USER, json={"name": "Петя", "date": "1990-02-30"})
    leap_birthday = client.post("/api/birthdays", headers=USER, json={"name": "Маша", "date": "1996-02-29"})

    assert rate.status_code == 400
    assert toggle.status_code == 400
    assert birthday.status_code == 400
    assert "error" in birthday.json()
    assert leap_birthday.status_code == 200


def test_notes_pagination(client) -> None:
    for day in ("2024-05-06", "2024-05-07", "2024-05-08", "2024-05-09", "2024-05-10"):
        client.post("/api/day/rate", headers=USER, json={"date": day, "journalText": f"note {day}"})

    first_page = client.get("/api/day/notes?limit=2", headers=USER).json()
    second_page = client.get(f"/api/day/notes?limit=2&cursor={first_page['nextCursor']}", headers=USER).json()

    assert [item["date"] for item in first_page["items"]] == ["2024-05-09", "2024-05-08"]
    assert first_page["nextCursor"] == "2024-05-08"
    assert [item["date"] for item in second_page["items"]] == ["2024-05-07", "2024-05-06"]
    assert second_page["nextCursor"] is None


def test_notes_limit_above_maximum_is_rejected(client) -> None:
    assert client.get("/api/day/notes?limit=51", headers=USER).status_code == 400


def test_goals_flow(client) -> None:
    created = client.post("/api/goals", headers=USER, json={"title": "Пробежать марафон"}).json()["goal"]
    client.post("/api/goals", headers=USER, json={"title": "Следующий год", "year": 2025})

    assert created["year"] == 2024
    listed = client.get("/api/goals", headers=USER).json()
    assert listed["year"] == 2024
    assert [goal["title"] for goal in listed["goals"]] == ["Пробежать марафон"]

    client.patch(f"/api/goals/{created['id']}", headers=USER, json={"title": "Полумарафон"})
    assert client.get("/api/user/status", headers=USER).json()["yearGoals"][0]["title"] == "Полумарафон"

    assert client.delete(f"/api/goals/{created['id']}", headers=USER).json() == {"ok": True}
    assert client.get("/api/goals", headers=USER).json()["goals"] == []
    assert len(client.get("/api/goals?includeInactive=true", headers=USER).json()["goals"]) == 1


def test_birthdays_crud(client) -> None:
    created = client.post("/api/birthdays", headers=USER, json={"name": "Петя", "date": "1990-03-08"}).json()
    birthday_id = created["birthday"]["id"]

    updated = client.put(f"/api/birthdays/{birthday_id}", headers=USER, json={"name": "Пётр", "date": "1990-03-09"})
    assert updated.json()["birthday"] == {"id": birthday_id, "name": "Пётр", "date": "1990-03-09"}

    assert client.delete(f"/api/birthdays/{birthday_id}", headers=USER).json() == {"success": True}
    assert client.get("/api/birthdays", headers=USER).json() == {"birthdays": []}
    assert client.delete(f"/api/birthdays/{birthday_id}", headers=USER).status_code == 400


def test_stats_summary_and_heatmaps(client) -> None:
    habit = client.post("/api/habits/create", headers=USER, json={"title": "Бег"}).json()["habit"]
    client.post("/api/day/rate", headers=USER, json={"date": "2024-05-09", "efficiency": 5, "social": 4})
    client.post("/api/habits/toggle", headers=USER, json={"habitId": habit["id"], "date": "2024-05-09"})
    client.post("/api/habits/toggle", headers=USER, json={"habitId": habit["id"], "date": "2024-05-10"})

    summary = client.get("/api/stats/summary", headers=USER).json()
    assert summary["fromDate"] == "2024-01-01"
    assert summary["toDate"] == "2024-05-10"
    assert summary["avgOverall"] == pytest.approx(4.5)
    assert summary["streaks"][0]["currentStreak"] == 2

    average = client.get("/api/stats/heatmap?metric=avg", headers=USER).json()
    assert average["points"] == [{"date": "2024-05-09", "value": 5}]
    assert "habitId" not in average

    single = client.get(f"/api/stats/heatmap?metric=habit&habitId={habit['id']}", headers=USER).json()
    assert single["habitId"] == habit["id"]
    assert [point["value"] for point in single["points"]] == [5, 5]

    assert client.get("/api/stats/heatmap?metric=habit", headers=USER).status_code == 400
    assert client.get("/api/stats/heatmap?metric=mood", headers=USER).status_code == 400


def test_cron_requires_secret(client) -> None:
    for path in ("/api/cron/hourly", "/api/cron/remind", "/api/cron/remind-missing", "/api/cron/check-birthdays"):
        response = client.post(path)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}


def test_cron_hourly_summary(client, messenger) -> None:
    client.get("/api/user/status", headers=USER)
    client.post("/api/user/settings", headers=USER, json={"digestTime": "12:00"})

    response = client.get("/api/cron/hourly", headers=CRON)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["summary"][0]["actions"] == ["digest_sent"]
    assert "error" not in body["summary"][0]
    assert messenger.texts_for(1001)


def test_cron_remind_missing_with_legacy_header(client) -> None:
    client.get("/api/user/status", headers=USER)

    response = client.post("/api/cron/remind-missing", headers={"X-Cron-Secret": "s3cret"})

    assert response.json() == {"ok": True, "sent": 1, "failed": 0, "total": 1}


def test_cron_check_birthdays(client) -> None:
    client.post("/api/birthdays", headers=USER, json={"name": "Петя", "date": "1990-05-10"})

    response = client.post("/api/cron/check-birthdays", headers=CRON)

    body = response.json()
    assert body["processed"] == 1
    assert body["sent"] == 1
    assert body["details"][0]["name"] == "Петя"
    assert "error" not in body["details"][0]


def test_cron_failure_returns_500(settings, store) -> None:
    class FailingOrchestrator:
        async def run_hourly(self, now_utc=None):
            raise RuntimeError("database is locked")

    app = create_app(settings, store=store, orchestrator=FailingOrchestrator(), clock=lambda: NOW)

    response = TestClient(app).post("/api/cron/hourly", headers=CRON)

    assert response.status_code == 500
    assert response.json() == {"error": "database is locked"}


def test_cron_remind_reports_missing_data(client, messenger) -> None:
    client.get("/api/user/status", headers=USER)

    response = client.get("/api/cron/remind", headers=CRON)

    assert response.json() == {"ok": True, "sent": 1, "failed": 0, "missingData": 1}
    assert "(2024-05-09)" in messenger.texts_for(1001)[0]
