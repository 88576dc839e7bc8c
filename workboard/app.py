"""
Workboard Core — Application wiring.

Builds the repositories, engines and services from settings and connects
the notification dispatcher to the event bus. Callers (HTTP handlers, bots,
jobs) hold one `Services` bundle and call into it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from workboard.config import settings
from workboard.core.compensation import RetryPolicy
from workboard.core.events import EventBus
from workboard.core.maintenance import MaintenanceReport, run_maintenance
from workboard.core.notifications import NotificationDispatcher
from workboard.core.points import PointsEngine
from workboard.core.task_service import TaskService
from workboard.core.user_service import UserService
from workboard.data.db import PointsLedgerDB, RewardSettingsDB, TaskDB, UserDB
from workboard.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class Services:
    task_db: TaskDB
    user_db: UserDB
    ledger_db: PointsLedgerDB
    rewards_db: RewardSettingsDB
    events: EventBus
    points: PointsEngine
    tasks: TaskService
    users: UserService


def build_services(
    db_path: str | None = None,
    notifier: NotificationPort | None = None,
) -> Services:
    """Wire every component against one SQLite database file."""
    db_path = db_path or settings.DATABASE_PATH
    if notifier is None:
        from workboard.adapters.notifier_factory import create_notifier

        notifier = create_notifier()

    task_db = TaskDB(db_path)
    user_db = UserDB(db_path)
    ledger_db = PointsLedgerDB(db_path)
    rewards_db = RewardSettingsDB(db_path)

    events = EventBus()
    events.subscribe(NotificationDispatcher(notifier, tz=settings.tz))

    retry = RetryPolicy.from_settings()
    points = PointsEngine(ledger_db, rewards_db)
    tasks = TaskService(task_db, user_db, points, events=events, retry=retry)
    users = UserService(user_db, events=events, retry=retry)

    logger.info("Services ready (db=%s, notifier=%s)", db_path, type(notifier).__name__)
    return Services(task_db, user_db, ledger_db, rewards_db, events, points, tasks, users)


async def startup(services: Services) -> MaintenanceReport:
    """Run the maintenance pass and flush the notifications it produced."""
    report = await run_maintenance(services.tasks, services.rewards_db)
    await services.events.drain()
    return report
