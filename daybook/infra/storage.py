from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Iterable, Sequence, TypeVar

from daybook.core.errors import NotFoundError, ValidationError
from daybook.core.models import (
    Birthday,
    DailyLog,
    DailyLogPatch,
    GoalPatch,
    Habit,
    HabitCompletion,
    HabitPatch,
    User,
    YearGoal,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        telegram_id INTEGER NOT NULL UNIQUE,
        first_name TEXT,
        tz_offset_minutes INTEGER NOT NULL DEFAULT 0,
        digest_time TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        date TEXT NOT NULL,
        journal_text TEXT,
        rating_efficiency INTEGER,
        rating_social INTEGER,
        UNIQUE (user_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS habits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        title TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        position INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS habit_completions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        habit_id INTEGER NOT NULL REFERENCES habits(id),
        date TEXT NOT NULL,
        UNIQUE (user_id, habit_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS year_goals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        year INTEGER NOT NULL,
        title TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        position INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS birthdays (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        name TEXT NOT NULL,
        date TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_completions_user_date ON habit_completions(user_id, date)",
)

_HABIT_COLUMNS = {"title": "title", "is_active": "is_active", "position": "position"}
_DAILY_LOG_COLUMNS = {
    "journal_text": "journal_text",
    "rating_efficiency": "rating_efficiency",
    "rating_social": "rating_social",
}


def _user_from_row(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        telegram_id=row["telegram_id"],
        first_name=row["first_name"],
        tz_offset_minutes=row["tz_offset_minutes"] or 0,
        digest_time=row["digest_time"],
    )


def _daily_log_from_row(row: sqlite3.Row) -> DailyLog:
    return DailyLog(
        user_id=row["user_id"],
        date=row["date"],
        journal_text=row["journal_text"],
        rating_efficiency=row["rating_efficiency"],
        rating_social=row["rating_social"],
    )


def _habit_from_row(row: sqlite3.Row) -> Habit:
    return Habit(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        is_active=bool(row["is_active"]),
        position=row["position"],
    )


def _goal_from_row(row: sqlite3.Row) -> YearGoal:
    return YearGoal(
        id=row["id"],
        user_id=row["user_id"],
        year=row["year"],
        title=row["title"],
        is_active=bool(row["is_active"]),
        position=row["position"],
    )


def _birthday_from_row(row: sqlite3.Row) -> Birthday:
    return Birthday(id=row["id"], user_id=row["user_id"], name=row["name"], date=row["date"])


def _db_value(value: object) -> object:
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteStore:
    """Keyed store for users and their day data.

    Every SQLite call runs in a worker thread through ``asyncio.to_thread``,
    so each store access is a real suspension point for the event loop.
    Statements share one connection and are serialized by a lock; writes
    commit as a single transaction.
    """

    def __init__(self, db_path: Path | str, *, default_digest_time: str = "09:00") -> None:
        self._db_path = db_path
        self._default_digest_time = default_digest_time
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            for statement in _SCHEMA:
                self._connection.execute(statement)
            self._connection.commit()

    def close(self) -> None:
        try:
            self._connection.close()
        except sqlite3.Error:
            LOGGER.exception("Failed to close database connection")

    def _fetchone_sync(self, sql: str, params: Sequence[object]) -> sqlite3.Row | None:
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    def _fetchall_sync(self, sql: str, params: Sequence[object]) -> list[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchall()

    def _write_sync(self, work: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock, self._connection:
            return work(self._connection)

    async def _fetchone(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Row | None:
        return await asyncio.to_thread(self._fetchone_sync, sql, params)

    async def _fetchall(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchall_sync, sql, params)

    async def _write(self, work: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._write_sync, work)

    async def _execute(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Cursor:
        return await self._write(lambda connection: connection.execute(sql, params))

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    async def get_user(self, telegram_id: int) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE telegram_id = ?", (telegram_id,))
        return _user_from_row(row) if row is not None else None

    async def get_user_by_id(self, user_id: int) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return _user_from_row(row) if row is not None else None

    async def ensure_user(
        self,
        telegram_id: int,
        *,
        first_name: str | None = None,
        tz_offset_minutes: int | None = None,
    ) -> User:
        """Create the user on first contact; update name/offset only when they change."""
        existing = await self.get_user(telegram_id)
        if existing is None:
            await self._execute(
                """
                INSERT INTO users (telegram_id, first_name, tz_offset_minutes, digest_time)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(telegram_id) DO NOTHING
                """,
                (telegram_id, first_name, tz_offset_minutes or 0, self._default_digest_time),
            )
            created = await self.get_user(telegram_id)
            if created is None:
                raise RuntimeError(f"Failed to create user telegram_id={telegram_id}")
            LOGGER.info("User created: user_id=%s telegram_id=%s", created.id, telegram_id)
            return created
        desired_name = first_name if first_name is not None else existing.first_name
        desired_tz = tz_offset_minutes if tz_offset_minutes is not None else existing.tz_offset_minutes
        if desired_name == existing.first_name and desired_tz == existing.tz_offset_minutes:
            return existing
        await self._execute(
            "UPDATE users SET first_name = ?, tz_offset_minutes = ? WHERE id = ?",
            (desired_name, desired_tz, existing.id),
        )
        return User(
            id=existing.id,
            telegram_id=existing.telegram_id,
            first_name=desired_name,
            tz_offset_minutes=desired_tz,
            digest_time=existing.digest_time,
        )

    async def list_users(self, limit: int) -> list[User]:
        rows = await self._fetchall("SELECT * FROM users ORDER BY id ASC LIMIT ?", (max(1, int(limit)),))
        return [_user_from_row(row) for row in rows]

    async def set_digest_time(self, user_id: int, digest_time: str) -> None:
        cursor = await self._execute(
            "UPDATE users SET digest_time = ? WHERE id = ?",
            (digest_time, user_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("User not found")

    # ------------------------------------------------------------------
    # daily logs
    # ------------------------------------------------------------------

    async def get_daily_log(self, user_id: int, date: str) -> DailyLog | None:
        row = await self._fetchone(
            "SELECT * FROM daily_logs WHERE user_id = ? AND date = ?",
            (user_id, date),
        )
        return _daily_log_from_row(row) if row is not None else None

    async def upsert_daily_log(self, user_id: int, date: str, patch: DailyLogPatch) -> DailyLog:
        changes = patch.require_changes()
        columns = [_DAILY_LOG_COLUMNS[name] for name in changes]
        values = [_db_value(changes[name]) for name in changes]
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{column}=excluded.{column}" for column in columns)
        await self._execute(
            f"""
            INSERT INTO daily_logs (user_id, date, {", ".join(columns)})
            VALUES (?, ?, {placeholders})
            ON CONFLICT(user_id, date) DO UPDATE SET {updates}
            """,
            (user_id, date, *values),
        )
        stored = await self.get_daily_log(user_id, date)
        if stored is None:
            raise RuntimeError("Daily log upsert did not persist")
        return stored

    async def list_daily_logs(self, user_id: int, from_date: str, to_date: str) -> list[DailyLog]:
        rows = await self._fetchall(
            """
            SELECT * FROM daily_logs
            WHERE user_id = ? AND date >= ? AND date <= ?
            ORDER BY date ASC
            """,
            (user_id, from_date, to_date),
        )
        return [_daily_log_from_row(row) for row in rows]

    async def list_notes(
        self,
        user_id: int,
        *,
        before_date: str,
        cursor: str | None,
        limit: int,
    ) -> list[DailyLog]:
        """Journal entries strictly before ``before_date`` (and ``cursor``), newest first."""
        upper = min(before_date, cursor) if cursor else before_date
        rows = await self._fetchall(
            """
            SELECT * FROM daily_logs
            WHERE user_id = ? AND date < ? AND journal_text IS NOT NULL AND TRIM(journal_text) != ''
            ORDER BY date DESC
            LIMIT ?
            """,
            (user_id, upper, limit),
        )
        return [_daily_log_from_row(row) for row in rows]

    async def list_daily_log_dates(self, user_id: int, from_date: str, to_date: str) -> list[str]:
        rows = await self._fetchall(
            "SELECT date FROM daily_logs WHERE user_id = ? AND date >= ? AND date <= ? ORDER BY date",
            (user_id, from_date, to_date),
        )
        return [row["date"] for row in rows]

    # ------------------------------------------------------------------
    # completions
    # ------------------------------------------------------------------

    async def list_completion_dates(self, user_id: int, from_date: str, to_date: str) -> list[str]:
        rows = await self._fetchall(
            """
            SELECT DISTINCT date FROM habit_completions
            WHERE user_id = ? AND date >= ? AND date <= ?
            ORDER BY date
            """,
            (user_id, from_date, to_date),
        )
        return [row["date"] for row in rows]

    async def list_completions(
        self,
        user_id: int,
        from_date: str,
        to_date: str,
        *,
        habit_ids: Iterable[int] | None = None,
    ) -> list[HabitCompletion]:
        sql = "SELECT * FROM habit_completions WHERE user_id = ? AND date >= ? AND date <= ?"
        params: list[object] = [user_id, from_date, to_date]
        if habit_ids is not None:
            ids = list(habit_ids)
            if not ids:
                return []
            sql += f" AND habit_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        rows = await self._fetchall(sql + " ORDER BY date", params)
        return [
            HabitCompletion(id=row["id"], user_id=row["user_id"], habit_id=row["habit_id"], date=row["date"])
            for row in rows
        ]

    async def list_completed_habit_ids(self, user_id: int, date: str) -> list[int]:
        rows = await self._fetchall(
            "SELECT habit_id FROM habit_completions WHERE user_id = ? AND date = ? ORDER BY habit_id",
            (user_id, date),
        )
        return [row["habit_id"] for row in rows]

    async def has_day_data(self, user_id: int, date: str) -> bool:
        if await self.get_daily_log(user_id, date) is not None:
            return True
        row = await self._fetchone(
            "SELECT 1 FROM habit_completions WHERE user_id = ? AND date = ? LIMIT 1",
            (user_id, date),
        )
        return row is not None

    async def toggle_completion(self, user_id: int, habit_id: int, date: str) -> bool:
        """Delete the completion if present, insert it otherwise; returns the new state."""
        await self.get_habit(user_id, habit_id)

        def _toggle(connection: sqlite3.Connection) -> bool:
            deleted = connection.execute(
                "DELETE FROM habit_completions WHERE user_id = ? AND habit_id = ? AND date = ?",
                (user_id, habit_id, date),
            ).rowcount
            if deleted:
                return False
            connection.execute(
                "INSERT INTO habit_completions (user_id, habit_id, date) VALUES (?, ?, ?)",
                (user_id, habit_id, date),
            )
            return True

        return await self._write(_toggle)

    # ------------------------------------------------------------------
    # habits
    # ------------------------------------------------------------------

    async def get_habit(self, user_id: int, habit_id: int) -> Habit:
        row = await self._fetchone("SELECT * FROM habits WHERE id = ? AND user_id = ?", (habit_id, user_id))
        if row is None:
            raise NotFoundError("Habit not found")
        return _habit_from_row(row)

    async def list_habits(self, user_id: int, *, include_inactive: bool = False) -> list[Habit]:
        sql = "SELECT * FROM habits WHERE user_id = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        rows = await self._fetchall(sql + " ORDER BY position ASC, id ASC", (user_id,))
        return [_habit_from_row(row) for row in rows]

    async def create_habit(self, user_id: int, title: str) -> Habit:
        def _insert(connection: sqlite3.Connection) -> Habit:
            row = connection.execute(
                "SELECT MAX(position) AS max_position FROM habits WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            max_position = row["max_position"] if row is not None else None
            position = (max_position if max_position is not None else -1) + 1
            cursor = connection.execute(
                "INSERT INTO habits (user_id, title, is_active, position) VALUES (?, ?, 1, ?)",
                (user_id, title, position),
            )
            return Habit(id=cursor.lastrowid, user_id=user_id, title=title, is_active=True, position=position)

        return await self._write(_insert)

    async def update_habit(self, user_id: int, habit_id: int, patch: HabitPatch) -> Habit:
        changes = patch.require_changes()
        await self.get_habit(user_id, habit_id)
        assignments = ", ".join(f"{_HABIT_COLUMNS[name]} = ?" for name in changes)
        await self._execute(
            f"UPDATE habits SET {assignments} WHERE id = ? AND user_id = ?",
            (*(_db_value(value) for value in changes.values()), habit_id, user_id),
        )
        return await self.get_habit(user_id, habit_id)

    async def reorder_habits(self, user_id: int, ordered_ids: Sequence[int]) -> None:
        if not ordered_ids:
            raise ValidationError("orderedIds must not be empty")
        placeholders = ", ".join("?" for _ in ordered_ids)
        rows = await self._fetchall(
            f"SELECT id FROM habits WHERE user_id = ? AND id IN ({placeholders})",
            (user_id, *ordered_ids),
        )
        owned = {row["id"] for row in rows}
        if any(habit_id not in owned for habit_id in ordered_ids):
            raise NotFoundError("Habit not found")
        positions = [(position, habit_id, user_id) for position, habit_id in enumerate(ordered_ids)]
        await self._write(
            lambda connection: connection.executemany(
                "UPDATE habits SET position = ? WHERE id = ? AND user_id = ?",
                positions,
            )
        )

    # ------------------------------------------------------------------
    # year goals
    # ------------------------------------------------------------------

    async def get_goal(self, user_id: int, goal_id: int) -> YearGoal:
        row = await self._fetchone("SELECT * FROM year_goals WHERE id = ? AND user_id = ?", (goal_id, user_id))
        if row is None:
            raise NotFoundError("Goal not found")
        return _goal_from_row(row)

    async def list_goals(self, user_id: int, year: int, *, include_inactive: bool = False) -> list[YearGoal]:
        sql = "SELECT * FROM year_goals WHERE user_id = ? AND year = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        rows = await self._fetchall(sql + " ORDER BY position ASC, id ASC", (user_id, year))
        return [_goal_from_row(row) for row in rows]

    async def create_goal(self, user_id: int, year: int, title: str) -> YearGoal:
        def _insert(connection: sqlite3.Connection) -> YearGoal:
            row = connection.execute(
                "SELECT MAX(position) AS max_position FROM year_goals WHERE user_id = ? AND year = ?",
                (user_id, year),
            ).fetchone()
            max_position = row["max_position"] if row is not None else None
            position = (max_position if max_position is not None else -1) + 1
            cursor = connection.execute(
                "INSERT INTO year_goals (user_id, year, title, is_active, position) VALUES (?, ?, ?, 1, ?)",
                (user_id, year, title, position),
            )
            return YearGoal(
                id=cursor.lastrowid, user_id=user_id, year=year, title=title, is_active=True, position=position
            )

        return await self._write(_insert)

    async def update_goal(self, user_id: int, goal_id: int, patch: GoalPatch) -> YearGoal:
        changes = patch.require_changes()
        await self.get_goal(user_id, goal_id)
        assignments = ", ".join(f"{name} = ?" for name in changes)
        await self._execute(
            f"UPDATE year_goals SET {assignments} WHERE id = ? AND user_id = ?",
            (*(_db_value(value) for value in changes.values()), goal_id, user_id),
        )
        return await self.get_goal(user_id, goal_id)

    async def deactivate_goal(self, user_id: int, goal_id: int) -> None:
        await self.update_goal(user_id, goal_id, GoalPatch(is_active=False))

    # ------------------------------------------------------------------
    # birthdays
    # ------------------------------------------------------------------

    async def list_birthdays(self, user_id: int) -> list[Birthday]:
        rows = await self._fetchall(
            "SELECT * FROM birthdays WHERE user_id = ? ORDER BY date ASC, id ASC",
            (user_id,),
        )
        return [_birthday_from_row(row) for row in rows]

    async def list_all_birthdays(self) -> list[tuple[Birthday, int]]:
        """Every birthday joined with its owner's telegram id."""
        rows = await self._fetchall(
            """
            SELECT b.*, u.telegram_id AS telegram_id
            FROM birthdays b JOIN users u ON u.id = b.user_id
            ORDER BY b.id ASC
            """
        )
        return [(_birthday_from_row(row), row["telegram_id"]) for row in rows]

    async def get_birthday(self, user_id: int, birthday_id: int) -> Birthday:
        row = await self._fetchone("SELECT * FROM birthdays WHERE id = ? AND user_id = ?", (birthday_id, user_id))
        if row is None:
            raise NotFoundError("Birthday not found")
        return _birthday_from_row(row)

    async def create_birthday(self, user_id: int, name: str, date: str) -> Birthday:
        cursor = await self._execute(
            "INSERT INTO birthdays (user_id, name, date) VALUES (?, ?, ?)",
            (user_id, name, date),
        )
        return Birthday(id=cursor.lastrowid, user_id=user_id, name=name, date=date)

    async def update_birthday(self, user_id: int, birthday_id: int, *, name: str, date: str) -> Birthday:
        await self.get_birthday(user_id, birthday_id)
        await self._execute(
            "UPDATE birthdays SET name = ?, date = ? WHERE id = ? AND user_id = ?",
            (name, date, birthday_id, user_id),
        )
        return Birthday(id=birthday_id, user_id=user_id, name=name, date=date)

    async def delete_birthday(self, user_id: int, birthday_id: int) -> None:
        await self.get_birthday(user_id, birthday_id)
        await self._execute(
            "DELETE FROM birthdays WHERE id = ? AND user_id = ?",
            (birthday_id, user_id),
        )
