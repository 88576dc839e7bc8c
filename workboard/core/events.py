"""
Workboard Core — Domain events.

Services publish what happened; subscribers (notifiers, caches, push
channels) decide what to do with it. Publishing is fire-and-forget: a
failing subscriber is logged and never affects the mutation that
produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from workboard.data.models import Achievement, Role, Task

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    actor_id: str


@dataclass
class TaskCreated(DomainEvent):
    task: Task


@dataclass
class TaskUpdated(DomainEvent):
    task: Task
    changed_fields: list[str] = field(default_factory=list)


@dataclass
class TaskStarted(DomainEvent):
    task: Task


@dataclass
class TaskCompleted(DomainEvent):
    task: Task
    points_awarded: int
    monthly_total: int
    milestones: list[int] = field(default_factory=list)   # % of target newly crossed
    achievements: list[Achievement] = field(default_factory=list)   # newly unlocked
    next_instance: Task | None = None


@dataclass
class TaskDeleted(DomainEvent):
    task_id: str
    deleted_ids: list[str] = field(default_factory=list)


@dataclass
class RoleChanged(DomainEvent):
    user_id: str
    old_role: Role
    new_role: Role


@dataclass
class PermissionsChanged(DomainEvent):
    user_id: str
    target_user_id: str
    can_view: bool
    can_edit: bool


Subscriber = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """In-process publisher with fire-and-forget delivery."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: DomainEvent) -> None:
        """Schedule delivery of `event` to every subscriber and return."""
        for subscriber in self._subscribers:
            task = asyncio.create_task(self._deliver(subscriber, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    @staticmethod
    async def _deliver(subscriber: Subscriber, event: DomainEvent) -> None:
        try:
            await subscriber(event)
        except Exception:
            logger.exception(
                "Subscriber %r failed on %s", subscriber, type(event).__name__,
            )
