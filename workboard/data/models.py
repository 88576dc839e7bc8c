"""
Workboard Core — Data Models.

Plain dataclasses for the entities the core reasons about. Persistence
assigns ids; everything else is filled in by the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    EMPLOYEE = "employee"
    TEAM_LEAD = "team_lead"
    MANAGER = "manager"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {
    Role.EMPLOYEE: 0,
    Role.TEAM_LEAD: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Recurrence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(str, Enum):
    DAILY = "daily"
    CUSTOM = "custom"


@dataclass
class PermissionOverride:
    """An explicit grant from one user over another.

    can_edit implies can_view; see authorization.set_override.
    """

    target_user_id: str
    can_view: bool = False
    can_edit: bool = False


@dataclass
class User:
    """A dashboard user. Identity and session live outside the core."""

    id: str
    name: str
    email: str
    role: Role = Role.EMPLOYEE
    title: str | None = None
    avatar: str | None = None
    is_approved: bool = True
    permissions: list[PermissionOverride] = field(default_factory=list)
    created_at: str = ""

    def override_for(self, target_user_id: str) -> PermissionOverride | None:
        for perm in self.permissions:
            if perm.target_user_id == target_user_id:
                return perm
        return None


@dataclass
class Task:
    """A unit of assigned work.

    A recurring template has recurrence != ONCE and is_recurring_instance
    False; instances point at their root template through parent_task_id.
    """

    id: str
    title: str
    assignee: str
    due_date: datetime
    points: int
    description: str = ""
    assigned_by: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    category: Category = Category.CUSTOM
    recurrence: Recurrence = Recurrence.ONCE
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    is_recurring_instance: bool = False
    parent_task_id: str | None = None
    next_occurrence_date: datetime | None = None

    @property
    def is_template(self) -> bool:
        return self.recurrence != Recurrence.ONCE and not self.is_recurring_instance

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != Recurrence.ONCE


@dataclass
class MonthlyPointsLedgerEntry:
    user_id: str
    month: int             # 1-12
    year: int
    points: int = 0


@dataclass
class RewardTier:
    """A monthly points threshold and the reward it unlocks."""

    name: str
    points: int
    reward: str
    description: str = ""
    id: str = ""


@dataclass
class PointsStats:
    earned: int
    target: int
    percent_complete: int


@dataclass
class Achievement:
    """A badge a user unlocks once their monthly total reaches points_required.

    Unlocks are permanent; the next month starts from zero points but keeps
    every badge already earned.
    """

    title: str
    points_required: int
    description: str = ""
    icon: str = "🏆"
    reward: str | None = None
    id: str = ""


@dataclass
class AchievementProgress:
    achievement: Achievement
    unlocked: bool
    progress: int                  # 0-100, toward points_required
    unlocked_at: datetime | None = None
