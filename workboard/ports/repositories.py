"""Repository ports — abstract persistence interfaces.

Core services depend on these protocols, never on a specific store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from workboard.data.models import (
    Achievement,
    PermissionOverride,
    RewardTier,
    Role,
    Task,
    TaskStatus,
    User,
)


class RepositoryError(Exception):
    """Raised when any persistence operation fails."""


class DuplicateKeyError(RepositoryError):
    """Raised when a write collides with an existing unique key."""


class TaskRepository(Protocol):
    """Task storage used by the lifecycle controller."""

    async def add_task(self, task: Task, occurrence_day: str | None = None) -> Task: ...

    async def get_task(self, task_id: str) -> Task | None: ...

    async def list_tasks(self, assignee_ids: list[str] | None = None) -> list[Task]: ...

    async def list_instances(self, parent_task_id: str) -> list[Task]: ...

    async def list_templates(self) -> list[Task]: ...

    async def update_fields(self, task_id: str, fields: dict[str, Any]) -> Task | None: ...

    async def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        transition_id: str | None = None,
    ) -> bool: ...

    async def has_transition(self, task_id: str, transition_id: str) -> bool: ...

    async def delete_tasks(self, task_ids: list[str]) -> int: ...


class UserRepository(Protocol):
    async def get_user(self, user_id: str) -> User | None: ...

    async def list_users(self) -> list[User]: ...

    async def set_role(self, user_id: str, role: Role) -> None: ...

    async def set_title(self, user_id: str, title: str | None) -> None: ...

    async def upsert_permission(self, user_id: str, override: PermissionOverride) -> None: ...


class PointsLedgerRepository(Protocol):
    """Per-user monthly points.

    add_points must be an atomic increment, and a repeated credit_id must not
    add twice.
    """

    async def add_points(
        self, user_id: str, month: int, year: int, delta: int, credit_id: str | None = None,
    ) -> int: ...

    async def remove_credit(self, credit_id: str) -> int | None: ...

    async def get_points(self, user_id: str, month: int, year: int) -> int: ...


class RewardSettingsRepository(Protocol):
    async def load_reward_tiers(self) -> list[RewardTier]: ...

    async def replace_reward_tiers(self, tiers: list[RewardTier]) -> list[RewardTier]: ...

    async def get_setting(self, key: str) -> str | None: ...

    async def upsert_setting(self, key: str, value: str) -> None: ...

    async def load_achievements(self) -> list[Achievement]: ...

    async def replace_achievements(self, achievements: list[Achievement]) -> list[Achievement]: ...

    async def list_unlocked_achievements(self, user_id: str) -> dict[str, datetime]: ...

    async def unlock_achievement(self, user_id: str, achievement_id: str, at: datetime) -> bool: ...
