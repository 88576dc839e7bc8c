"""Tests for workboard.core.recurrence — next occurrence and instance spawning."""

import pytest
from datetime import datetime, timedelta, timezone

from workboard.core.recurrence import (
    add_months,
    first_occurrence_on_or_after,
    next_occurrence,
    root_template_id,
    spawn_instance,
    with_lineage_fields,
)
from workboard.data.models import Category, Priority, Recurrence, Task, TaskStatus

UTC = timezone.utc


def _at(*args):
    return datetime(*args, tzinfo=UTC)


def _template(**overrides):
    fields = dict(
        id="tpl",
        title="Weekly report",
        description="Send to finance",
        assignee="alice",
        assigned_by="admin",
        due_date=_at(2024, 1, 8, 14, 0),
        points=75,
        priority=Priority.HIGH,
        category=Category.DAILY,
        recurrence=Recurrence.WEEKLY,
        status=TaskStatus.COMPLETED,
    )
    fields.update(overrides)
    return Task(**fields)


class TestNextOccurrence:
    def test_daily(self):
        assert next_occurrence(_at(2024, 1, 8, 9, 0), Recurrence.DAILY) == _at(2024, 1, 9, 9, 0)

    def test_daily_round_trip(self):
        d = _at(2024, 2, 28, 23, 30)
        twice = next_occurrence(next_occurrence(d, Recurrence.DAILY), Recurrence.DAILY)
        assert twice == d + timedelta(days=2)

    def test_weekly(self):
        assert next_occurrence(_at(2024, 1, 8, 14, 0), Recurrence.WEEKLY) == _at(2024, 1, 15, 14, 0)

    def test_monthly_keeps_day(self):
        assert next_occurrence(_at(2024, 1, 15, 8, 0), Recurrence.MONTHLY) == _at(2024, 2, 15, 8, 0)

    @pytest.mark.parametrize("due, expected", [
        (_at(2024, 1, 31), _at(2024, 2, 29)),
        (_at(2023, 1, 31), _at(2023, 2, 28)),
        (_at(2024, 3, 31), _at(2024, 4, 30)),
        (_at(2024, 12, 31), _at(2025, 1, 31)),
    ])
    def test_monthly_clamps_to_month_end(self, due, expected):
        assert next_occurrence(due, Recurrence.MONTHLY) == expected

    def test_monthly_stays_on_clamped_day(self):
        feb = next_occurrence(_at(2024, 1, 31), Recurrence.MONTHLY)
        assert next_occurrence(feb, Recurrence.MONTHLY) == _at(2024, 3, 29)

    def test_once_is_identity(self):
        d = _at(2024, 1, 8)
        assert next_occurrence(d, Recurrence.ONCE) == d


class TestAddMonths:
    def test_crosses_year(self):
        assert add_months(_at(2024, 11, 30), 3) == _at(2025, 2, 28)

    def test_keeps_tzinfo(self):
        assert add_months(_at(2024, 1, 1, 12, 0), 1).tzinfo is UTC


class TestFirstOccurrenceOnOrAfter:
    def test_already_current(self):
        start = _at(2024, 1, 10)
        assert first_occurrence_on_or_after(start, Recurrence.DAILY, _at(2024, 1, 8)) == start

    def test_walks_forward(self):
        result = first_occurrence_on_or_after(
            _at(2024, 1, 1, 9, 0), Recurrence.WEEKLY, _at(2024, 1, 10),
        )
        assert result == _at(2024, 1, 15, 9, 0)

    def test_once_returns_start(self):
        start = _at(2020, 1, 1)
        assert first_occurrence_on_or_after(start, Recurrence.ONCE, _at(2024, 1, 1)) == start


class TestSpawnInstance:
    def test_copies_template_fields(self):
        instance = spawn_instance(_template())

        assert instance.id == ""
        assert instance.title == "Weekly report"
        assert instance.description == "Send to finance"
        assert instance.assignee == "alice"
        assert instance.assigned_by == "admin"
        assert instance.priority == Priority.HIGH
        assert instance.category == Category.DAILY
        assert instance.recurrence == Recurrence.WEEKLY
        assert instance.points == 75

    def test_lineage(self):
        instance = spawn_instance(_template())

        assert instance.status == TaskStatus.PENDING
        assert instance.is_recurring_instance is True
        assert instance.parent_task_id == "tpl"
        assert instance.due_date == _at(2024, 1, 15, 14, 0)
        assert instance.next_occurrence_date == _at(2024, 1, 22, 14, 0)
        assert instance.started_at is None
        assert instance.completed_at is None

    def test_from_instance_points_at_root(self):
        first = _template(id="inst-1", is_recurring_instance=True, parent_task_id="tpl")
        assert spawn_instance(first).parent_task_id == "tpl"

    def test_explicit_due_date(self):
        instance = spawn_instance(_template(), due_date=_at(2024, 2, 5, 14, 0))
        assert instance.due_date == _at(2024, 2, 5, 14, 0)
        assert instance.next_occurrence_date == _at(2024, 2, 12, 14, 0)

    def test_once_rejected(self):
        with pytest.raises(ValueError):
            spawn_instance(_template(recurrence=Recurrence.ONCE))


class TestLineageHelpers:
    def test_root_template_id(self):
        assert root_template_id(_template()) == "tpl"
        assert root_template_id(_template(id="x", parent_task_id="tpl")) == "tpl"

    def test_once_clears_next_occurrence(self):
        task = _template(recurrence=Recurrence.ONCE, next_occurrence_date=_at(2024, 1, 9))
        assert with_lineage_fields(task).next_occurrence_date is None

    def test_recurring_sets_next_occurrence(self):
        assert with_lineage_fields(_template()).next_occurrence_date == _at(2024, 1, 15, 14, 0)
