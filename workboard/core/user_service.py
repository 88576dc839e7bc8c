"""User administration: roles, titles and permission overrides."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from workboard.core import authorization as authz
from workboard.core.authorization import Permission
from workboard.core.compensation import RetryPolicy, call_with_retry
from workboard.core.errors import NotFoundError, ValidationError
from workboard.core.events import EventBus, PermissionsChanged, RoleChanged
from workboard.data.models import Role, User
from workboard.ports.repositories import UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UserService:
    def __init__(
        self,
        users: UserRepository,
        events: EventBus | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._users = users
        self._events = events or EventBus()
        self._retry = retry or RetryPolicy.from_settings()

    async def _persist(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await call_with_retry(operation, self._retry, description)

    async def _load(self, user_id: str) -> User:
        user = await self._persist(lambda: self._users.get_user(user_id), "load the user")
        if user is None:
            raise NotFoundError(f"User {user_id} was not found.")
        return user

    async def update_role(self, acting_user: User, user_id: str, role: Role | str) -> User:
        """Change a user's role. Needs manage_users and edit rights over them."""
        try:
            new_role = Role(role)
        except ValueError:
            raise ValidationError(f"Unknown role '{role}'") from None

        authz.require_permission(acting_user, Permission.MANAGE_USERS, "change roles")
        target = await self._load(user_id)
        authz.require_edit(acting_user, target, "change the role")

        old_role = target.role
        if old_role == new_role:
            return target

        await self._persist(lambda: self._users.set_role(user_id, new_role), "save the role")
        target.role = new_role

        logger.info("Role of %s changed %s -> %s by %s", user_id, old_role.value, new_role.value, acting_user.id)
        self._events.publish(RoleChanged(
            actor_id=acting_user.id, user_id=user_id, old_role=old_role, new_role=new_role,
        ))
        return target

    async def update_title(self, acting_user: User, user_id: str, title: str | None) -> User:
        """Set the cosmetic title. A blank title clears it."""
        target = await self._load(user_id)
        authz.require_edit(acting_user, target, "change the title")

        cleaned = (title or "").strip() or None
        await self._persist(lambda: self._users.set_title(user_id, cleaned), "save the title")
        target.title = cleaned
        return target

    async def update_permissions(
        self,
        acting_user: User,
        user_id: str,
        target_user_id: str,
        can_view: bool | None = None,
        can_edit: bool | None = None,
    ) -> User:
        """Grant or revoke the override `user_id` holds over `target_user_id`.

        Allowed for user managers and for the owner of the override set.
        """
        if acting_user.id != user_id:
            authz.require_permission(acting_user, Permission.MANAGE_USERS, "change permissions")

        owner = await self._load(user_id)
        await self._load(target_user_id)

        updated = authz.set_override(owner, target_user_id, can_view=can_view, can_edit=can_edit)
        override = updated.override_for(target_user_id)
        await self._persist(
            lambda: self._users.upsert_permission(user_id, override), "save the permissions",
        )

        logger.info(
            "Override %s -> %s set by %s (view=%s, edit=%s)",
            user_id, target_user_id, acting_user.id, override.can_view, override.can_edit,
        )
        self._events.publish(PermissionsChanged(
            actor_id=acting_user.id,
            user_id=user_id,
            target_user_id=target_user_id,
            can_view=override.can_view,
            can_edit=override.can_edit,
        ))
        return updated

    async def accessible_users(self, acting_user: User) -> list[User]:
        users = await self._persist(self._users.list_users, "load users")
        return authz.accessible_users(acting_user, users)
