"""
Workboard Core — Notification dispatch.

Turns domain events into short human-readable messages and hands them to a
NotificationPort. Subscribed to the EventBus, so delivery failures are
logged by the bus and never reach the service that published the event.
"""

from __future__ import annotations

import logging
from datetime import tzinfo
from typing import TYPE_CHECKING

from workboard.core.events import (
    DomainEvent,
    PermissionsChanged,
    RoleChanged,
    TaskCompleted,
    TaskCreated,
    TaskDeleted,
)

if TYPE_CHECKING:
    from workboard.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

MILESTONE_MESSAGES = {
    50: "You've reached 50% of your monthly points goal!",
    80: "You're at 80% of your monthly points goal! Almost there!",
    100: "Congratulations! You've reached 100% of your monthly points goal!",
}


class NotificationDispatcher:
    """EventBus subscriber that notifies the users an event concerns."""

    def __init__(self, notifier: NotificationPort, tz: tzinfo | None = None) -> None:
        if tz is None:
            from workboard.config import settings
            tz = settings.tz
        self._notifier = notifier
        self._tz = tz

    async def __call__(self, event: DomainEvent) -> None:
        for recipient, text in self.messages_for(event):
            await self._notifier.send_message(recipient, text)
            logger.debug("Notified %s about %s", recipient, type(event).__name__)

    def messages_for(self, event: DomainEvent) -> list[tuple[str, str]]:
        """(recipient_id, text) pairs for `event`; empty when nobody cares."""
        if isinstance(event, TaskCreated):
            task = event.task
            if event.actor_id == task.assignee:
                return []
            due = task.due_date.astimezone(self._tz).strftime("%a %d %b %Y, %H:%M")
            if task.is_recurring_instance:
                text = f"🔁 Next '{task.title}' is due {due} ({task.points} pts)."
            else:
                text = f"📋 New task: '{task.title}', due {due} ({task.points} pts)."
            return [(task.assignee, text)]

        if isinstance(event, TaskCompleted):
            task = event.task
            messages = [(
                task.assignee,
                f"✅ Task completed! +{event.points_awarded} pts, "
                f"{event.monthly_total} this month.",
            )]
            messages += [
                (task.assignee, MILESTONE_MESSAGES[m])
                for m in event.milestones
                if m in MILESTONE_MESSAGES
            ]
            messages += [
                (task.assignee, f"Achievement unlocked: {a.title}! 🎉")
                for a in event.achievements
            ]
            if task.assigned_by and task.assigned_by != task.assignee:
                messages.append(
                    (task.assigned_by, f"'{task.title}' was completed.")
                )
            return messages

        if isinstance(event, RoleChanged):
            return [(
                event.user_id,
                f"Your role is now {event.new_role.value.replace('_', ' ')}.",
            )]

        if isinstance(event, PermissionsChanged) and event.actor_id != event.user_id:
            access = "edit" if event.can_edit else "view" if event.can_view else "no"
            return [(
                event.user_id,
                f"You now have {access} access to user {event.target_user_id}.",
            )]

        if isinstance(event, TaskDeleted):
            logger.debug("Task %s deleted, nothing to notify", event.task_id)

        return []
