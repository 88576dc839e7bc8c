"""Shared test fixtures and configuration.

Sets up environment variables before any workboard import so the settings
singleton loads predictable values, and provides temp-file SQLite stores,
a controllable clock and seeded users.
"""

import os
import tempfile

# Patch env vars BEFORE any workboard imports
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "workboard-tests.db"))
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("TASK_LOOKAHEAD_MINUTES", "0")
os.environ.setdefault("PERSISTENCE_RETRY_BASE_DELAY", "0")
os.environ.setdefault("NOTIFIER_PROVIDER", "log")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from workboard.core.compensation import RetryPolicy
from workboard.core.events import EventBus
from workboard.core.points import PointsEngine
from workboard.core.task_service import TaskService
from workboard.core.user_service import UserService
from workboard.data.db import PointsLedgerDB, RewardSettingsDB, TaskDB, UserDB
from workboard.data.models import Role, User

# Monday 2024-01-08, 09:00 UTC
NOW = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_workboard.db")


@pytest.fixture
def task_db(tmp_db_path):
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def user_db(tmp_db_path):
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def ledger_db(tmp_db_path):
    return PointsLedgerDB(db_path=tmp_db_path)


@pytest.fixture
def rewards_db(tmp_db_path):
    return RewardSettingsDB(db_path=tmp_db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_retry():
    """Three attempts, no backoff sleep."""
    return RetryPolicy(attempts=3, base_delay=0, max_delay=0, timeout=5)


@pytest.fixture
def events():
    return EventBus()


@pytest_asyncio.fixture
async def users(user_db):
    """Seed one user per role plus a second employee, keyed by id."""
    seeded = [
        User(id="admin", name="Ada Admin", email="admin@example.com", role=Role.ADMIN),
        User(id="mgr", name="Max Manager", email="mgr@example.com", role=Role.MANAGER),
        User(id="lead", name="Lee Lead", email="lead@example.com", role=Role.TEAM_LEAD),
        User(id="alice", name="Alice", email="alice@example.com"),
        User(id="bob", name="Bob", email="bob@example.com"),
    ]
    for user in seeded:
        await user_db.add_user(user)
    return {u.id: u for u in seeded}


@pytest.fixture
def points_engine(ledger_db, rewards_db, clock):
    return PointsEngine(ledger_db, rewards_db, tz=timezone.utc, clock=clock, default_target=500)


@pytest.fixture
def task_service(task_db, user_db, points_engine, events, clock, fast_retry):
    return TaskService(
        task_db,
        user_db,
        points_engine,
        events=events,
        clock=clock,
        retry=fast_retry,
        lookahead=timedelta(0),
        tz=timezone.utc,
    )


@pytest.fixture
def user_service(user_db, events, fast_retry):
    return UserService(user_db, events=events, retry=fast_retry)


def _make_draft(**overrides):
    """A valid task draft for alice, due at NOW."""
    draft = {
        "title": "Weekly report",
        "assignee": "alice",
        "due_date": NOW,
        "points": 50,
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def make_draft():
    return _make_draft


@pytest.fixture
def now():
    return NOW
