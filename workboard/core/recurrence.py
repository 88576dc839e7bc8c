"""Recurring task generator — pure business logic.

Computes the next occurrence of a recurring task and builds the instance
that represents it. No I/O: this module only transforms data; the
lifecycle controller decides whether an instance is actually stored.

Monthly recurrence keeps the day of month and clamps it to the last day
of shorter months (Jan 31 -> Feb 29 in a leap year). Because each step
starts from the previous due date, a clamped series stays on the clamped
day afterwards (Feb 29 -> Mar 29).
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import replace
from datetime import datetime, timedelta

from workboard.data.models import Recurrence, Task, TaskStatus

logger = logging.getLogger(__name__)

# Upper bound on catch-up steps when walking a stale template forward.
_MAX_CATCH_UP_STEPS = 10_000


def add_months(moment: datetime, months: int) -> datetime:
    """Shift `moment` by whole calendar months, clamping the day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def next_occurrence(due_date: datetime, recurrence: Recurrence) -> datetime:
    """Return the due date of the occurrence after `due_date`.

    One-time tasks have no next occurrence; `due_date` is returned unchanged.
    """
    if recurrence == Recurrence.DAILY:
        return due_date + timedelta(days=1)
    if recurrence == Recurrence.WEEKLY:
        return due_date + timedelta(days=7)
    if recurrence == Recurrence.MONTHLY:
        return add_months(due_date, 1)
    return due_date


def first_occurrence_on_or_after(
    start: datetime, recurrence: Recurrence, moment: datetime,
) -> datetime:
    """Walk occurrences forward from `start` until one is not before `moment`."""
    if recurrence == Recurrence.ONCE:
        return start
    due = start
    for _ in range(_MAX_CATCH_UP_STEPS):
        if due >= moment:
            return due
        due = next_occurrence(due, recurrence)
    raise ValueError(f"Occurrence of {start.isoformat()} too far behind {moment.isoformat()}")


def root_template_id(task: Task) -> str:
    """Id of the template a task belongs to (itself for templates)."""
    return task.parent_task_id or task.id


def spawn_instance(template: Task, due_date: datetime | None = None) -> Task:
    """Build the next pending instance of a recurring task.

    `template` may be the root template or one of its instances; the new
    instance always points at the root. The returned task has no id and
    no created_at yet; persistence assigns those.
    """
    if template.recurrence == Recurrence.ONCE:
        raise ValueError(f"Task {template.id} does not recur")

    if due_date is None:
        due_date = next_occurrence(template.due_date, template.recurrence)

    return Task(
        id="",
        title=template.title,
        description=template.description,
        assignee=template.assignee,
        assigned_by=template.assigned_by,
        due_date=due_date,
        status=TaskStatus.PENDING,
        priority=template.priority,
        category=template.category,
        recurrence=template.recurrence,
        points=template.points,
        is_recurring_instance=True,
        parent_task_id=root_template_id(template),
        next_occurrence_date=next_occurrence(due_date, template.recurrence),
    )


def with_lineage_fields(task: Task) -> Task:
    """Return `task` with next_occurrence_date consistent with its recurrence."""
    if task.recurrence == Recurrence.ONCE:
        return replace(task, next_occurrence_date=None)
    return replace(task, next_occurrence_date=next_occurrence(task.due_date, task.recurrence))
