"""
Workboard Core — Task Lifecycle Controller.

Owns the task state machine (pending -> in_progress -> completed) and every
mutation of a task. Each operation:

1. authorizes the acting user through the authorization module,
2. validates the transition and the availability window,
3. persists with retry and timeout, rolling back local state on failure,
4. credits points and spawns the next recurrence on completion,
5. publishes a domain event.

The service is stateless apart from its injected collaborators; the
acting user is supplied by the caller and its role claim is trusted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Awaitable, Callable, TypeVar

from workboard.core import authorization as authz
from workboard.core.authorization import Permission
from workboard.core.availability import is_actionable
from workboard.core.compensation import RetryPolicy, call_with_retry, with_compensation
from workboard.core.errors import (
    ConflictError,
    NotActionableError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from workboard.core.events import (
    EventBus,
    TaskCompleted,
    TaskCreated,
    TaskDeleted,
    TaskStarted,
    TaskUpdated,
)
from workboard.core.points import PointsEngine, crossed_milestones
from workboard.core.recurrence import (
    first_occurrence_on_or_after,
    next_occurrence,
    spawn_instance,
    with_lineage_fields,
)
from workboard.data.models import Achievement, Recurrence, Role, Task, TaskStatus, User
from workboard.data.schemas import TaskDraft, TaskPatch, parse_input
from workboard.ports.repositories import (
    DuplicateKeyError,
    RepositoryError,
    TaskRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_ACTOR = "system"


class TaskService:
    """Task lifecycle controller. See module docstring."""

    def __init__(
        self,
        tasks: TaskRepository,
        users: UserRepository,
        points: PointsEngine,
        events: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        retry: RetryPolicy | None = None,
        lookahead: timedelta | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        if lookahead is None or tz is None:
            from workboard.config import settings
            if lookahead is None:
                lookahead = timedelta(minutes=settings.TASK_LOOKAHEAD_MINUTES)
            if tz is None:
                tz = settings.tz

        self._tasks = tasks
        self._users = users
        self._points = points
        self._events = events or EventBus()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._retry = retry or RetryPolicy.from_settings()
        self._lookahead = lookahead
        self._tz = tz

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    async def _persist(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        try:
            return await call_with_retry(operation, self._retry, description)
        except DuplicateKeyError as exc:
            raise ConflictError(f"Could not {description}: the record already exists.") from exc

    async def _load_task(self, task_id: str) -> Task:
        task = await self._persist(lambda: self._tasks.get_task(task_id), "load the task")
        if task is None:
            raise NotFoundError(f"Task {task_id} was not found.")
        return task

    async def _load_user(self, user_id: str) -> User | None:
        return await self._persist(lambda: self._users.get_user(user_id), "load the user")

    async def _assignee_of(self, task: Task) -> User:
        assignee = await self._load_user(task.assignee)
        if assignee is None:
            # Orphaned task (user removed outside the core)
            raise NotFoundError(f"Assignee {task.assignee} of task {task.id} was not found.")
        return assignee

    def _occurrence_day(self, due_date: datetime) -> str:
        return due_date.astimezone(self._tz).date().isoformat()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, task_id: str, acting_user: User) -> Task:
        """Fetch a task the acting user is allowed to see."""
        task = await self._load_task(task_id)
        if acting_user.role != Role.ADMIN:
            authz.require_view(acting_user, await self._assignee_of(task), "view tasks")
        return task

    async def list_visible(self, acting_user: User) -> list[Task]:
        """All tasks assigned to users the acting user can see."""
        if acting_user.role == Role.ADMIN:
            return await self._persist(lambda: self._tasks.list_tasks(), "load tasks")

        users = await self._persist(self._users.list_users, "load users")
        visible_ids = [u.id for u in authz.accessible_users(acting_user, users)]
        return await self._persist(lambda: self._tasks.list_tasks(visible_ids), "load tasks")

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create(self, draft: TaskDraft | dict[str, Any], acting_user: User) -> Task:
        """Create a pending task for `draft.assignee`."""
        data = parse_input(TaskDraft, draft)

        authz.require_permission(acting_user, Permission.CREATE_TASKS, "create tasks")
        if data.assignee != acting_user.id:
            authz.require_permission(acting_user, Permission.ASSIGN_TASKS, "assign tasks to others")

        assignee = await self._load_user(data.assignee)
        if assignee is None:
            raise ValidationError(f"Unknown assignee '{data.assignee}'")
        authz.require_edit(acting_user, assignee, "create tasks")

        task = with_lineage_fields(Task(
            id="",
            title=data.title,
            description=data.description,
            assignee=assignee.id,
            assigned_by=acting_user.id,
            due_date=data.due_date,
            status=TaskStatus.PENDING,
            priority=data.priority,
            category=data.category,
            recurrence=data.recurrence,
            points=data.points,
            created_at=self._now(),
        ))
        stored = await self._persist(lambda: self._tasks.add_task(task), "save the task")

        logger.info(
            "Task %s '%s' created by %s for %s (%s, %d pts)",
            stored.id, stored.title, acting_user.id, assignee.id,
            stored.recurrence.value, stored.points,
        )
        self._events.publish(TaskCreated(actor_id=acting_user.id, task=stored))
        return stored

    async def update(
        self, task_id: str, patch: TaskPatch | dict[str, Any], acting_user: User,
    ) -> Task:
        """Merge editable fields into a task. Status never changes here."""
        if isinstance(patch, dict) and "status" in patch:
            raise ValidationError("Status can only change by starting or completing the task.")
        changes = parse_input(TaskPatch, patch).model_dump(exclude_none=True)
        if not changes:
            raise ValidationError("Nothing to update.")

        task = await self._load_task(task_id)
        authz.require_edit(acting_user, await self._assignee_of(task), "edit tasks")

        new_assignee_id = changes.get("assignee")
        if new_assignee_id is not None and new_assignee_id != task.assignee:
            authz.require_permission(acting_user, Permission.ASSIGN_TASKS, "reassign tasks")
            new_assignee = await self._load_user(new_assignee_id)
            if new_assignee is None:
                raise ValidationError(f"Unknown assignee '{new_assignee_id}'")
            authz.require_edit(acting_user, new_assignee, "assign tasks")

        if task.is_recurring_instance and changes.get("recurrence") == Recurrence.ONCE:
            raise ValidationError("A recurring instance cannot become a one-time task.")

        merged = with_lineage_fields(replace(task, **changes))
        fields = dict(changes)
        fields["next_occurrence_date"] = merged.next_occurrence_date
        if merged.is_recurring_instance and "due_date" in changes:
            # The one-instance-per-day key follows the new due date
            fields["occurrence_day"] = self._occurrence_day(merged.due_date)

        updated = await self._persist(
            lambda: self._tasks.update_fields(task.id, fields), "update the task",
        )
        if updated is None:
            raise NotFoundError(f"Task {task_id} was not found.")

        logger.info("Task %s updated by %s: %s", task_id, acting_user.id, sorted(changes))
        self._events.publish(TaskUpdated(
            actor_id=acting_user.id, task=updated, changed_fields=sorted(changes),
        ))
        return updated

    async def delete(self, task_id: str, acting_user: User) -> list[str]:
        """Delete a task; deleting a template also deletes its instances.

        Points already credited for completed tasks are kept.
        """
        authz.require_admin(acting_user, "delete tasks")
        task = await self._load_task(task_id)

        ids = [task.id]
        if not task.is_recurring_instance:
            instances = await self._persist(
                lambda: self._tasks.list_instances(task.id), "load recurring instances",
            )
            ids.extend(i.id for i in instances)

        await self._persist(lambda: self._tasks.delete_tasks(ids), "delete the task")

        logger.info("Task %s deleted by %s (%d row(s))", task_id, acting_user.id, len(ids))
        self._events.publish(TaskDeleted(actor_id=acting_user.id, task_id=task_id, deleted_ids=ids))
        return ids

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_transition(self, task: Task, expected: TaskStatus, verb: str, now: datetime) -> None:
        if task.status != expected:
            raise NotActionableError(
                f"Task '{task.title}' cannot be {verb}: it is {task.status.value.replace('_', ' ')}."
            )
        if not is_actionable(task, now, self._lookahead):
            opens = task.due_date - self._lookahead
            raise NotActionableError(
                f"Task '{task.title}' is not available yet. It opens at {opens.isoformat()}."
            )

    def _conflict(self, task: Task) -> ConflictError:
        logger.warning("Task %s changed concurrently", task.id)
        return ConflictError(
            f"Task '{task.title}' was changed by someone else. Reload and try again."
        )

    async def _move(
        self,
        task: Task,
        expected: TaskStatus,
        new_status: TaskStatus,
        started_at: datetime | None,
        completed_at: datetime | None,
        description: str,
    ) -> None:
        """Persist a status-conditioned transition, raising ConflictError on a lost race.

        Every call stamps its write with a fresh id. A write that committed
        although its attempt reported a failure is recognised by that id
        rather than being retried as someone else's change.
        """
        transition_id = uuid.uuid4().hex
        try:
            moved = await self._persist(
                lambda: self._tasks.transition(
                    task.id, expected, new_status,
                    started_at=started_at, completed_at=completed_at,
                    transition_id=transition_id,
                ),
                description,
            )
        except PersistenceError:
            if await self._transition_landed(task.id, transition_id):
                logger.warning("Task %s reached %s despite the storage errors", task.id, new_status.value)
                return
            raise
        if not moved and not await self._transition_landed(task.id, transition_id):
            raise self._conflict(task)

    async def _transition_landed(self, task_id: str, transition_id: str) -> bool:
        try:
            return await self._persist(
                lambda: self._tasks.has_transition(task_id, transition_id),
                "check the task status",
            )
        except PersistenceError:
            return False

    async def start(self, task_id: str, acting_user: User) -> Task:
        """pending -> in_progress, by the assignee, once the task is available."""
        task = await self._load_task(task_id)
        authz.require_self(acting_user, task.assignee, "start this task")
        now = self._now()
        self._check_transition(task, TaskStatus.PENDING, "started", now)

        previous = (task.status, task.started_at)

        def apply() -> None:
            task.status = TaskStatus.IN_PROGRESS
            task.started_at = now

        def compensate() -> None:
            task.status, task.started_at = previous

        async def persist() -> None:
            await self._move(
                task, TaskStatus.PENDING, TaskStatus.IN_PROGRESS,
                started_at=now, completed_at=None, description="start the task",
            )

        await with_compensation(apply, compensate, persist)

        logger.info("Task %s started by %s", task.id, acting_user.id)
        self._events.publish(TaskStarted(actor_id=acting_user.id, task=task))
        return task

    async def complete(self, task_id: str, acting_user: User) -> Task:
        """in_progress -> completed; credits points and schedules the next occurrence."""
        task = await self._load_task(task_id)
        authz.require_self(acting_user, task.assignee, "complete this task")
        now = self._now()
        self._check_transition(task, TaskStatus.IN_PROGRESS, "completed", now)

        previous = (task.status, task.completed_at)
        started_at = task.started_at

        def apply() -> None:
            task.status = TaskStatus.COMPLETED
            task.completed_at = now

        def compensate() -> None:
            task.status, task.completed_at = previous

        async def persist() -> int:
            await self._move(
                task, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED,
                started_at=started_at, completed_at=now, description="complete the task",
            )
            try:
                return await call_with_retry(
                    lambda: self._points.credit(task.assignee, task.points, now, task_id=task.id),
                    self._retry,
                    "credit the task points",
                )
            except BaseException:
                await self._undo_completion(task, started_at)
                raise

        total = await with_compensation(apply, compensate, persist)
        logger.info(
            "Task %s completed by %s: +%d pts (month total %d)",
            task.id, acting_user.id, task.points, total,
        )

        milestones = await self._milestones(total - task.points, total)
        achievements = await self._unlock_achievements(task.assignee, now)

        next_instance = None
        if task.is_recurring:
            try:
                next_instance = await self.spawn_next_instance(task)
            except (PersistenceError, ConflictError) as exc:
                # The completion stands; the maintenance run backfills the gap
                logger.error("Could not schedule next occurrence of %s: %s", task.id, exc.message)

        self._events.publish(TaskCompleted(
            actor_id=acting_user.id,
            task=task,
            points_awarded=task.points,
            monthly_total=total,
            milestones=milestones,
            achievements=achievements,
            next_instance=next_instance,
        ))
        return task

    async def _undo_completion(self, task: Task, started_at: datetime | None) -> None:
        """Put a completed task back in progress after the credit failed.

        A credit attempt that timed out may still have been stored, so it is
        revoked first. If the revoke itself fails the credit stays recorded
        under the task id and a later completion of the same task will not
        add it again.
        """
        try:
            await call_with_retry(
                lambda: self._points.revoke(task.id), self._retry, "revoke the task points",
            )
        except PersistenceError:
            logger.error("Could not revoke the points of task %s; a retry will not add them twice", task.id)

        try:
            await self._move(
                task, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS,
                started_at=started_at, completed_at=None,
                description="roll back the completion",
            )
        except (PersistenceError, ConflictError):
            logger.error("Task %s left completed without its points credit", task.id)
            raise
        logger.warning("Completion of task %s rolled back", task.id)

    async def _milestones(self, before: int, after: int) -> list[int]:
        try:
            target = await self._points.monthly_target()
        except RepositoryError as exc:
            logger.warning("Monthly target unavailable, skipping milestones: %s", exc)
            return []
        return crossed_milestones(before, after, target)

    async def _unlock_achievements(self, user_id: str, now: datetime) -> list[Achievement]:
        try:
            return await self._points.unlock_achievements(user_id, now)
        except RepositoryError as exc:
            # Evaluated again on the next completion
            logger.warning("Could not evaluate achievements for %s: %s", user_id, exc)
            return []

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    async def spawn_next_instance(self, task: Task) -> Task | None:
        """Store the occurrence after `task`, unless it already exists."""
        if not task.is_recurring:
            return None
        return await self._store_instance(spawn_instance(task))

    async def _store_instance(self, instance: Task) -> Task | None:
        root_id = instance.parent_task_id
        day = self._occurrence_day(instance.due_date)

        existing = await self._persist(
            lambda: self._tasks.list_instances(root_id), "load recurring instances",
        )
        if any(self._occurrence_day(i.due_date) == day for i in existing):
            logger.info("Occurrence of %s on %s already exists, not spawning", root_id, day)
            return None

        instance = replace(instance, created_at=self._now())
        try:
            stored = await call_with_retry(
                lambda: self._tasks.add_task(instance, occurrence_day=day),
                self._retry,
                "save the next occurrence",
            )
        except DuplicateKeyError:
            # A concurrent completion stored it between the check and the insert
            logger.info("Occurrence of %s on %s stored concurrently", root_id, day)
            return None

        logger.info("Spawned %s for template %s due %s", stored.id, root_id, day)
        self._events.publish(TaskCreated(actor_id=SYSTEM_ACTOR, task=stored))
        return stored

    async def generate_missing_instances(self, now: datetime | None = None) -> list[Task]:
        """Give every template without an open occurrence its next one.

        An occurrence is open while it is not completed. The new instance is
        the first occurrence after the latest known one that falls on today
        or later. Safe to run repeatedly.
        """
        now = now or self._now()
        today_start = datetime.combine(now.astimezone(self._tz).date(), time.min, tzinfo=self._tz)

        templates = await self._persist(self._tasks.list_templates, "load recurring templates")
        created: list[Task] = []

        for template in templates:
            instances = await self._persist(
                lambda: self._tasks.list_instances(template.id), "load recurring instances",
            )
            occurrences = [template, *instances]
            if any(o.status != TaskStatus.COMPLETED for o in occurrences):
                continue

            latest = max(o.due_date for o in occurrences)
            due = first_occurrence_on_or_after(
                next_occurrence(latest, template.recurrence), template.recurrence, today_start,
            )
            stored = await self._store_instance(spawn_instance(template, due_date=due))
            if stored is not None:
                created.append(stored)

        if created:
            logger.info("Backfilled %d recurring instance(s)", len(created))
        return created


