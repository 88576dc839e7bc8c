"""
Workboard Core — Authorization Model.

Pure predicates over the role hierarchy plus per-pair overrides. Every
service asks this module; no other module compares roles.

Hierarchy: admin > manager > team_lead > employee. Managers implicitly see
and edit team leads and employees; team leads see and edit employees.
Anything else needs an explicit override.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Iterable

from workboard.core.errors import AuthorizationError, ValidationError
from workboard.data.models import PermissionOverride, Role, User

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    VIEW_TASKS = "view_tasks"
    CREATE_TASKS = "create_tasks"
    EDIT_TASKS = "edit_tasks"
    ASSIGN_TASKS = "assign_tasks"
    VIEW_REPORTS = "view_reports"
    MANAGE_USERS = "manage_users"


_TEAM_LEAD_PERMISSIONS = frozenset({
    Permission.VIEW_TASKS,
    Permission.CREATE_TASKS,
    Permission.EDIT_TASKS,
    Permission.ASSIGN_TASKS,
})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.EMPLOYEE: frozenset({Permission.VIEW_TASKS}),
    Role.TEAM_LEAD: _TEAM_LEAD_PERMISSIONS,
    Role.MANAGER: _TEAM_LEAD_PERMISSIONS | {Permission.VIEW_REPORTS},
    Role.ADMIN: _TEAM_LEAD_PERMISSIONS | {Permission.VIEW_REPORTS, Permission.MANAGE_USERS},
}


def has_permission(user: User, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS[user.role]


def _outranks(actor: User, target: User) -> bool:
    """Implicit hierarchy grant: managers and team leads over lower roles."""
    if actor.role not in (Role.MANAGER, Role.TEAM_LEAD):
        return False
    return actor.role.rank > target.role.rank


def can_view(actor: User, target: User) -> bool:
    if actor.id == target.id:
        return True
    if actor.role == Role.ADMIN:
        return True
    if _outranks(actor, target):
        return True
    override = actor.override_for(target.id)
    return override is not None and override.can_view


def can_edit(actor: User, target: User) -> bool:
    if actor.role == Role.ADMIN:
        # Admins edit non-admins and themselves, never other admins
        return target.role != Role.ADMIN or actor.id == target.id
    if _outranks(actor, target):
        return True
    override = actor.override_for(target.id)
    return override is not None and override.can_edit


def accessible_users(actor: User, users: Iterable[User]) -> list[User]:
    """Users whose tasks `actor` may see, `actor` first.

    Unapproved accounts are hidden from everyone but themselves.
    """
    others = [u for u in users if u.id != actor.id and u.is_approved]
    if actor.role == Role.ADMIN:
        return [actor] + others
    return [actor] + [u for u in others if can_view(actor, u)]


def normalize_override(
    current: PermissionOverride | None,
    target_id: str,
    can_view: bool | None = None,
    can_edit: bool | None = None,
) -> PermissionOverride:
    """Merge a requested change into an override, keeping edit => view.

    Setting can_edit=True forces can_view=True; setting can_view=False
    forces can_edit=False. Asking for both at once is a contradiction.
    """
    if can_view is False and can_edit is True:
        raise ValidationError("An override cannot grant edit without view")

    view = current.can_view if current is not None else False
    edit = current.can_edit if current is not None else False

    if can_view is not None:
        view = can_view
        if not view:
            edit = False
    if can_edit is not None:
        edit = can_edit
        if edit:
            view = True

    return PermissionOverride(target_user_id=target_id, can_view=view, can_edit=edit)


def set_override(
    user: User,
    target_id: str,
    can_view: bool | None = None,
    can_edit: bool | None = None,
) -> User:
    """Return a copy of `user` with its override over `target_id` applied."""
    if target_id == user.id:
        raise ValidationError("Users cannot hold overrides over themselves")

    override = normalize_override(user.override_for(target_id), target_id, can_view, can_edit)
    permissions = [p for p in user.permissions if p.target_user_id != target_id]
    permissions.append(override)
    return replace(user, permissions=permissions)


# ---------------------------------------------------------------------------
# Guards used by the services
# ---------------------------------------------------------------------------


def require_permission(actor: User, permission: Permission, action: str) -> None:
    if not has_permission(actor, permission):
        logger.warning("Denied %s to %s (%s lacks %s)", action, actor.id, actor.role.value, permission.value)
        raise AuthorizationError(f"You are not allowed to {action}.")


def require_admin(actor: User, action: str) -> None:
    if actor.role != Role.ADMIN:
        logger.warning("Denied %s to %s (role %s)", action, actor.id, actor.role.value)
        raise AuthorizationError(f"Only administrators can {action}.")


def require_view(actor: User, target: User, action: str) -> None:
    if not can_view(actor, target):
        logger.warning("Denied %s to %s over %s (no view)", action, actor.id, target.id)
        raise AuthorizationError(f"You are not allowed to {action} for {target.name}.")


def require_edit(actor: User, target: User, action: str) -> None:
    if not can_edit(actor, target):
        logger.warning("Denied %s to %s over %s (no edit)", action, actor.id, target.id)
        raise AuthorizationError(f"You are not allowed to {action} for {target.name}.")


def require_self(actor: User, user_id: str, action: str) -> None:
    if actor.id != user_id:
        logger.warning("Denied %s to %s (not the assignee %s)", action, actor.id, user_id)
        raise AuthorizationError(f"Only the assignee can {action}.")
