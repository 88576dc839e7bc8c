"""Task availability rules — pure business logic.

A task can only be started or completed once its due date is close
enough: actionable means `now >= due_date - lookahead`. The day-level
classification (available / upcoming / overdue) is what dashboards show.
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from enum import Enum

from workboard.data.models import Task, TaskStatus


class Availability(str, Enum):
    AVAILABLE = "available"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"


def is_actionable(task: Task, now: datetime, lookahead: timedelta = timedelta(0)) -> bool:
    return now >= task.due_date - lookahead


def availability_status(task: Task, now: datetime, tz: tzinfo) -> Availability:
    """Classify a task by comparing calendar days in `tz`."""
    if task.status == TaskStatus.COMPLETED:
        return Availability.AVAILABLE

    due_day = task.due_date.astimezone(tz).date()
    today = now.astimezone(tz).date()
    if due_day < today:
        return Availability.OVERDUE
    if due_day > today:
        return Availability.UPCOMING
    return Availability.AVAILABLE


def is_overdue(task: Task, now: datetime, tz: tzinfo) -> bool:
    return availability_status(task, now, tz) == Availability.OVERDUE


def days_until_due(task: Task, now: datetime, tz: tzinfo) -> int:
    """Whole calendar days from today to the due day; negative when late."""
    due_day = task.due_date.astimezone(tz).date()
    return (due_day - now.astimezone(tz).date()).days
