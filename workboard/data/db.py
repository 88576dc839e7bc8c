"""
Workboard Core — SQLite storage.

One class per table family, each implementing a repository port. Blocking
sqlite3 calls run through asyncio.to_thread with one connection per call,
so concurrent requests never share a connection.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from workboard.data.models import (
    Achievement,
    Category,
    PermissionOverride,
    Priority,
    Recurrence,
    RewardTier,
    Role,
    Task,
    TaskStatus,
    User,
)
from workboard.ports.repositories import DuplicateKeyError, RepositoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _SQLiteStore:
    """Connection handling shared by the table classes below."""

    def __init__(self, db_path: str | None = None, busy_timeout: float | None = None) -> None:
        if db_path is None or busy_timeout is None:
            from workboard.config import settings
            db_path = db_path or settings.DATABASE_PATH
            if busy_timeout is None:
                busy_timeout = settings.DATABASE_BUSY_TIMEOUT_SECONDS

        self._db_path = db_path
        self._busy_timeout = busy_timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking DB function off the event loop, mapping errors.

        A running sqlite3 call cannot be interrupted. When the caller is
        cancelled (a timeout included) the worker thread is awaited before the
        cancellation propagates, so no write commits after its caller gave up.
        """
        future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            await asyncio.wait([future])
            if not future.cancelled() and future.exception() is not None:
                logger.debug("Abandoned storage call failed: %s", future.exception())
            raise
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc


class TaskDB(_SQLiteStore):
    """SQLite-backed storage for tasks, templates and recurring instances."""

    _EDITABLE_COLUMNS = {
        "title", "description", "assignee", "due_date", "points",
        "priority", "category", "recurrence", "next_occurrence_date",
        "occurrence_day",
    }

    def _init_db(self) -> None:
        """Create the tasks table and its indexes if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                    TEXT    PRIMARY KEY,
                    title                 TEXT    NOT NULL,
                    description           TEXT    NOT NULL DEFAULT '',
                    assignee              TEXT    NOT NULL,
                    assigned_by           TEXT,
                    due_date              TEXT    NOT NULL,
                    status                TEXT    NOT NULL DEFAULT 'pending',
                    priority              TEXT    NOT NULL DEFAULT 'medium',
                    category              TEXT    NOT NULL DEFAULT 'custom',
                    recurrence            TEXT    NOT NULL DEFAULT 'once',
                    points                INTEGER NOT NULL,
                    created_at            TEXT    NOT NULL,
                    started_at            TEXT,
                    completed_at          TEXT,
                    is_recurring_instance INTEGER NOT NULL DEFAULT 0,
                    parent_task_id        TEXT,
                    next_occurrence_date  TEXT,
                    occurrence_day        TEXT,
                    transition_id         TEXT,
                    updated_at            TEXT
                )
            """)
            # One instance per template per calendar day
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_instance_day
                ON tasks (parent_task_id, occurrence_day)
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks (assignee)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            assignee=row["assignee"],
            assigned_by=row["assigned_by"],
            due_date=_from_db_time(row["due_date"]),
            status=TaskStatus(row["status"]),
            priority=Priority(row["priority"]),
            category=Category(row["category"]),
            recurrence=Recurrence(row["recurrence"]),
            points=row["points"],
            created_at=_from_db_time(row["created_at"]),
            started_at=_from_db_time(row["started_at"]),
            completed_at=_from_db_time(row["completed_at"]),
            is_recurring_instance=bool(row["is_recurring_instance"]),
            parent_task_id=row["parent_task_id"],
            next_occurrence_date=_from_db_time(row["next_occurrence_date"]),
        )

    async def add_task(self, task: Task, occurrence_day: str | None = None) -> Task:
        """Insert a task. Assigns an id when the task has none.

        occurrence_day is only given for recurring instances; a second
        instance of the same template on the same day raises
        DuplicateKeyError.
        """
        stored = replace(task, id=task.id or uuid.uuid4().hex)

        def _insert() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tasks
                        (id, title, description, assignee, assigned_by, due_date,
                         status, priority, category, recurrence, points,
                         created_at, started_at, completed_at,
                         is_recurring_instance, parent_task_id,
                         next_occurrence_date, occurrence_day, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id, stored.title, stored.description,
                        stored.assignee, stored.assigned_by,
                        _to_db_time(stored.due_date), stored.status.value,
                        stored.priority.value, stored.category.value,
                        stored.recurrence.value, stored.points,
                        _to_db_time(stored.created_at) or _now_iso(),
                        _to_db_time(stored.started_at),
                        _to_db_time(stored.completed_at),
                        int(stored.is_recurring_instance), stored.parent_task_id,
                        _to_db_time(stored.next_occurrence_date),
                        occurrence_day, _now_iso(),
                    ),
                )

        await self._run(_insert)
        logger.info("Task added: %s '%s' for %s", stored.id, stored.title, stored.assignee)
        return stored

    async def get_task(self, task_id: str) -> Task | None:
        """Fetch a single task by ID."""

        def _get() -> Task | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE id = ?", (task_id,)
                ).fetchone()
            return self._row_to_task(row) if row is not None else None

        return await self._run(_get)

    async def list_tasks(self, assignee_ids: list[str] | None = None) -> list[Task]:
        """List tasks, newest first, optionally limited to some assignees."""
        if assignee_ids is not None and not assignee_ids:
            return []

        query = "SELECT * FROM tasks"
        params: list = []
        if assignee_ids is not None:
            placeholders = ", ".join("?" for _ in assignee_ids)
            query += f" WHERE assignee IN ({placeholders})"
            params.extend(assignee_ids)
        query += " ORDER BY created_at DESC"

        def _list() -> list[Task]:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
            return [self._row_to_task(r) for r in rows]

        return await self._run(_list)

    async def list_instances(self, parent_task_id: str) -> list[Task]:
        """Return every instance spawned from a template, by due date."""

        def _list() -> list[Task]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE parent_task_id = ? ORDER BY due_date",
                    (parent_task_id,),
                ).fetchall()
            return [self._row_to_task(r) for r in rows]

        return await self._run(_list)

    async def list_templates(self) -> list[Task]:
        """Return all recurring templates."""

        def _list() -> list[Task]:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM tasks
                    WHERE recurrence != 'once' AND is_recurring_instance = 0
                    ORDER BY due_date
                    """
                ).fetchall()
            return [self._row_to_task(r) for r in rows]

        return await self._run(_list)

    async def update_fields(self, task_id: str, fields: dict[str, Any]) -> Task | None:
        """Update editable columns. Never touches status or its timestamps."""
        unknown = set(fields) - self._EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not editable: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for key, value in fields.items():
            if isinstance(value, datetime) or key in ("due_date", "next_occurrence_date"):
                values[key] = _to_db_time(value)
            elif hasattr(value, "value"):
                values[key] = value.value
            else:
                values[key] = value
        values["updated_at"] = _now_iso()

        assignments = ", ".join(f"{key} = ?" for key in values)

        def _update() -> Task | None:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*values.values(), task_id),
                )
                if cursor.rowcount == 0:
                    return None
                row = conn.execute(
                    "SELECT * FROM tasks WHERE id = ?", (task_id,)
                ).fetchone()
            return self._row_to_task(row)

        task = await self._run(_update)
        if task is not None:
            logger.info("Task %s updated: %s", task_id, ", ".join(sorted(fields)))
        return task

    async def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        transition_id: str | None = None,
    ) -> bool:
        """Move a task to new_status only if it is still in `expected`.

        Both timestamp columns are written as given. Returns False when the
        stored status no longer matches (another writer got there first).
        A row already stamped with `transition_id` matches again, so retrying
        a write that committed without being acknowledged returns True.
        """

        def _transition() -> bool:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE tasks
                    SET status = ?, started_at = ?, completed_at = ?,
                        transition_id = ?, updated_at = ?
                    WHERE id = ?
                      AND (status = ? OR (? IS NOT NULL AND transition_id = ?))
                    """,
                    (
                        new_status.value, _to_db_time(started_at),
                        _to_db_time(completed_at), transition_id, _now_iso(),
                        task_id, expected.value, transition_id, transition_id,
                    ),
                )
            return cursor.rowcount > 0

        moved = await self._run(_transition)
        if moved:
            logger.info("Task %s: %s -> %s", task_id, expected.value, new_status.value)
        return moved

    async def has_transition(self, task_id: str, transition_id: str) -> bool:
        """True when the task's last stored transition carries `transition_id`."""

        def _get() -> bool:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM tasks WHERE id = ? AND transition_id = ?",
                    (task_id, transition_id),
                ).fetchone()
            return row is not None

        return await self._run(_get)

    async def delete_tasks(self, task_ids: list[str]) -> int:
        """Permanently delete tasks by ID. Returns the number removed."""
        if not task_ids:
            return 0
        placeholders = ", ".join("?" for _ in task_ids)

        def _delete() -> int:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"DELETE FROM tasks WHERE id IN ({placeholders})", task_ids,
                )
            return cursor.rowcount

        deleted = await self._run(_delete)
        logger.info("Deleted %d task(s)", deleted)
        return deleted


class UserDB(_SQLiteStore):
    """SQLite-backed storage for users and their permission overrides."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id           TEXT    PRIMARY KEY,
                    name         TEXT    NOT NULL,
                    email        TEXT    NOT NULL,
                    role         TEXT    NOT NULL DEFAULT 'employee',
                    title        TEXT,
                    avatar       TEXT,
                    is_approved  INTEGER NOT NULL DEFAULT 1,
                    created_at   TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_permissions (
                    user_id        TEXT    NOT NULL,
                    target_user_id TEXT    NOT NULL,
                    can_view       INTEGER NOT NULL DEFAULT 0,
                    can_edit       INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, target_user_id)
                )
            """)
        logger.debug("Users tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row, permissions: list[PermissionOverride]) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=Role(row["role"]),
            title=row["title"],
            avatar=row["avatar"],
            is_approved=bool(row["is_approved"]),
            permissions=permissions,
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_override(row: sqlite3.Row) -> PermissionOverride:
        return PermissionOverride(
            target_user_id=row["target_user_id"],
            can_view=bool(row["can_view"]),
            can_edit=bool(row["can_edit"]),
        )

    async def add_user(self, user: User) -> User:
        """Register a user (registration itself happens outside the core)."""
        stored = replace(
            user,
            id=user.id or uuid.uuid4().hex,
            created_at=user.created_at or _now_iso(),
        )

        def _insert() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users
                        (id, name, email, role, title, avatar, is_approved, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id, stored.name, stored.email, stored.role.value,
                        stored.title, stored.avatar, int(stored.is_approved),
                        stored.created_at,
                    ),
                )
                for perm in stored.permissions:
                    conn.execute(
                        """
                        INSERT INTO user_permissions
                            (user_id, target_user_id, can_view, can_edit)
                        VALUES (?, ?, ?, ?)
                        """,
                        (stored.id, perm.target_user_id, int(perm.can_view), int(perm.can_edit)),
                    )

        await self._run(_insert)
        logger.info("User registered: %s '%s' (%s)", stored.id, stored.name, stored.role.value)
        return stored

    async def get_user(self, user_id: str) -> User | None:
        """Fetch a user with their overrides."""

        def _get() -> User | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM users WHERE id = ?", (user_id,)
                ).fetchone()
                if row is None:
                    return None
                perms = conn.execute(
                    "SELECT * FROM user_permissions WHERE user_id = ? ORDER BY target_user_id",
                    (user_id,),
                ).fetchall()
            return self._row_to_user(row, [self._row_to_override(p) for p in perms])

        return await self._run(_get)

    async def list_users(self) -> list[User]:
        """Return all users with their overrides."""

        def _list() -> list[User]:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
                perm_rows = conn.execute(
                    "SELECT * FROM user_permissions ORDER BY target_user_id"
                ).fetchall()
            by_user: dict[str, list[PermissionOverride]] = {}
            for p in perm_rows:
                by_user.setdefault(p["user_id"], []).append(self._row_to_override(p))
            return [self._row_to_user(r, by_user.get(r["id"], [])) for r in rows]

        return await self._run(_list)

    async def set_role(self, user_id: str, role: Role) -> None:
        def _update() -> None:
            with self._connect() as conn:
                conn.execute("UPDATE users SET role = ? WHERE id = ?", (role.value, user_id))

        await self._run(_update)
        logger.info("User %s role set to %s", user_id, role.value)

    async def set_title(self, user_id: str, title: str | None) -> None:
        def _update() -> None:
            with self._connect() as conn:
                conn.execute("UPDATE users SET title = ? WHERE id = ?", (title, user_id))

        await self._run(_update)
        logger.info("User %s title set to %r", user_id, title)

    async def upsert_permission(self, user_id: str, override: PermissionOverride) -> None:
        """Insert or replace the override user_id holds over its target."""

        def _upsert() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_permissions (user_id, target_user_id, can_view, can_edit)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (user_id, target_user_id)
                    DO UPDATE SET can_view = excluded.can_view, can_edit = excluded.can_edit
                    """,
                    (user_id, override.target_user_id, int(override.can_view), int(override.can_edit)),
                )

        await self._run(_upsert)
        logger.info(
            "Override %s -> %s: view=%s edit=%s",
            user_id, override.target_user_id, override.can_view, override.can_edit,
        )


class PointsLedgerDB(_SQLiteStore):
    """SQLite-backed monthly points ledger."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_points (
                    user_id  TEXT    NOT NULL,
                    month    INTEGER NOT NULL,
                    year     INTEGER NOT NULL,
                    points   INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, month, year)
                )
            """)
            # One row per credited task; makes a credit safe to repeat
            conn.execute("""
                CREATE TABLE IF NOT EXISTS point_credits (
                    credit_id  TEXT    PRIMARY KEY,
                    user_id    TEXT    NOT NULL,
                    month      INTEGER NOT NULL,
                    year       INTEGER NOT NULL,
                    points     INTEGER NOT NULL
                )
            """)
        logger.debug("Points ledger initialized at %s", self._db_path)

    async def add_points(
        self, user_id: str, month: int, year: int, delta: int, credit_id: str | None = None,
    ) -> int:
        """Atomically add `delta` to the entry, creating it if absent.

        With a credit_id the increment is recorded under that key in the same
        transaction; a repeated credit_id leaves the entry unchanged and
        returns its current total.
        """

        def _upsert() -> int:
            with self._connect() as conn:
                if credit_id is not None:
                    cursor = conn.execute(
                        """
                        INSERT INTO point_credits (credit_id, user_id, month, year, points)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT (credit_id) DO NOTHING
                        """,
                        (credit_id, user_id, month, year, delta),
                    )
                    if cursor.rowcount == 0:
                        row = conn.execute(
                            "SELECT points FROM user_points WHERE user_id = ? AND month = ? AND year = ?",
                            (user_id, month, year),
                        ).fetchone()
                        return row["points"] if row is not None else 0
                rows = conn.execute(
                    """
                    INSERT INTO user_points (user_id, month, year, points)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (user_id, month, year)
                    DO UPDATE SET points = user_points.points + excluded.points
                    RETURNING points
                    """,
                    (user_id, month, year, delta),
                ).fetchall()
            return rows[0]["points"]

        total = await self._run(_upsert)
        logger.debug("Ledger %s %02d/%d %+d -> %d", user_id, month, year, delta, total)
        return total

    async def remove_credit(self, credit_id: str) -> int | None:
        """Take back the points recorded under credit_id.

        Returns the entry's new total, or None when nothing was credited
        under that key.
        """

        def _remove() -> int | None:
            with self._connect() as conn:
                credits = conn.execute(
                    """
                    DELETE FROM point_credits WHERE credit_id = ?
                    RETURNING user_id, month, year, points
                    """,
                    (credit_id,),
                ).fetchall()
                if not credits:
                    return None
                credit = credits[0]
                rows = conn.execute(
                    """
                    UPDATE user_points SET points = points - ?
                    WHERE user_id = ? AND month = ? AND year = ?
                    RETURNING points
                    """,
                    (credit["points"], credit["user_id"], credit["month"], credit["year"]),
                ).fetchall()
            return rows[0]["points"] if rows else 0

        total = await self._run(_remove)
        if total is not None:
            logger.info("Credit %s removed from the ledger (total %d)", credit_id, total)
        return total

    async def get_points(self, user_id: str, month: int, year: int) -> int:
        def _get() -> int:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT points FROM user_points WHERE user_id = ? AND month = ? AND year = ?",
                    (user_id, month, year),
                ).fetchone()
            return row["points"] if row is not None else 0

        return await self._run(_get)


class RewardSettingsDB(_SQLiteStore):
    """SQLite-backed reward tiers, achievements and key/value app settings."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reward_tiers (
                    id          TEXT    PRIMARY KEY,
                    name        TEXT    NOT NULL,
                    points      INTEGER NOT NULL,
                    reward      TEXT    NOT NULL,
                    description TEXT    NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS app_settings (
                    setting_key   TEXT PRIMARY KEY,
                    setting_value TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS achievements (
                    id              TEXT    PRIMARY KEY,
                    title           TEXT    NOT NULL,
                    description     TEXT    NOT NULL DEFAULT '',
                    icon            TEXT    NOT NULL DEFAULT '',
                    reward          TEXT,
                    points_required INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_achievements (
                    user_id        TEXT NOT NULL,
                    achievement_id TEXT NOT NULL,
                    unlocked_at    TEXT NOT NULL,
                    PRIMARY KEY (user_id, achievement_id)
                )
            """)
        logger.debug("Reward settings initialized at %s", self._db_path)

    @staticmethod
    def _row_to_tier(row: sqlite3.Row) -> RewardTier:
        return RewardTier(
            id=row["id"],
            name=row["name"],
            points=row["points"],
            reward=row["reward"],
            description=row["description"],
        )

    async def load_reward_tiers(self) -> list[RewardTier]:
        """Return all tiers ascending by threshold."""

        def _load() -> list[RewardTier]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM reward_tiers ORDER BY points"
                ).fetchall()
            return [self._row_to_tier(r) for r in rows]

        return await self._run(_load)

    async def replace_reward_tiers(self, tiers: list[RewardTier]) -> list[RewardTier]:
        """Delete every tier and insert `tiers` in one transaction."""
        stored = sorted(
            (replace(t, id=t.id or uuid.uuid4().hex) for t in tiers),
            key=lambda t: t.points,
        )

        def _replace() -> None:
            with self._connect() as conn:
                conn.execute("DELETE FROM reward_tiers")
                conn.executemany(
                    """
                    INSERT INTO reward_tiers (id, name, points, reward, description)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [(t.id, t.name, t.points, t.reward, t.description) for t in stored],
                )

        await self._run(_replace)
        logger.info("Reward tiers replaced (%d tiers)", len(stored))
        return stored

    async def get_setting(self, key: str) -> str | None:
        def _get() -> str | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT setting_value FROM app_settings WHERE setting_key = ?", (key,)
                ).fetchone()
            return row["setting_value"] if row is not None else None

        return await self._run(_get)

    async def upsert_setting(self, key: str, value: str) -> None:
        def _upsert() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_settings (setting_key, setting_value) VALUES (?, ?)
                    ON CONFLICT (setting_key) DO UPDATE SET setting_value = excluded.setting_value
                    """,
                    (key, value),
                )

        await self._run(_upsert)
        logger.info("Setting %s = %s", key, value)

    @staticmethod
    def _row_to_achievement(row: sqlite3.Row) -> Achievement:
        return Achievement(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            icon=row["icon"],
            reward=row["reward"],
            points_required=row["points_required"],
        )

    async def load_achievements(self) -> list[Achievement]:
        """Return all achievements ascending by points required."""

        def _load() -> list[Achievement]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM achievements ORDER BY points_required, title"
                ).fetchall()
            return [self._row_to_achievement(r) for r in rows]

        return await self._run(_load)

    async def replace_achievements(self, achievements: list[Achievement]) -> list[Achievement]:
        """Replace every achievement in one transaction.

        Unlocks survive for achievements whose id is kept and are dropped
        for the ones that disappear.
        """
        stored = sorted(
            (replace(a, id=a.id or uuid.uuid4().hex) for a in achievements),
            key=lambda a: (a.points_required, a.title),
        )
        kept_ids = [a.id for a in stored]

        def _replace() -> None:
            with self._connect() as conn:
                conn.execute("DELETE FROM achievements")
                conn.executemany(
                    """
                    INSERT INTO achievements (id, title, description, icon, reward, points_required)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (a.id, a.title, a.description, a.icon, a.reward, a.points_required)
                        for a in stored
                    ],
                )
                placeholders = ", ".join("?" for _ in kept_ids)
                conn.execute(
                    "DELETE FROM user_achievements"
                    + (f" WHERE achievement_id NOT IN ({placeholders})" if kept_ids else ""),
                    kept_ids,
                )

        await self._run(_replace)
        logger.info("Achievements replaced (%d achievements)", len(stored))
        return stored

    async def list_unlocked_achievements(self, user_id: str) -> dict[str, datetime]:
        """Map achievement id -> unlock time for one user."""

        def _list() -> dict[str, datetime]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT achievement_id, unlocked_at FROM user_achievements WHERE user_id = ?",
                    (user_id,),
                ).fetchall()
            return {r["achievement_id"]: _from_db_time(r["unlocked_at"]) for r in rows}

        return await self._run(_list)

    async def unlock_achievement(self, user_id: str, achievement_id: str, at: datetime) -> bool:
        """Record an unlock. Returns False when the user already had it."""

        def _insert() -> bool:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO user_achievements (user_id, achievement_id, unlocked_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (user_id, achievement_id) DO NOTHING
                    """,
                    (user_id, achievement_id, _to_db_time(at)),
                )
            return cursor.rowcount > 0

        unlocked = await self._run(_insert)
        if unlocked:
            logger.info("User %s unlocked achievement %s", user_id, achievement_id)
        return unlocked
