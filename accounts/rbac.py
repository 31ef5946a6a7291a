# accounts/rbac.py
"""
Role-based access decisions.

A single decision function covers both role hierarchies: the user's global
role and, where a project is involved, the role held in that project (``None``
when the user is not a member). Nothing here touches the database; callers
resolve the roles and pass them in.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from django.db import models

from tracker.exceptions import ErrorCodes, InvalidAssignee, PermissionDenied, SelfActionForbidden


class GlobalRole(models.TextChoices):
    ADMIN = 'ADMIN', 'Admin'
    MEMBER = 'MEMBER', 'Member'
    VIEWER = 'VIEWER', 'Viewer'


class ProjectRole(models.TextChoices):
    MEMBER = 'MEMBER', 'Member'
    VIEWER = 'VIEWER', 'Viewer'


class Action(str, Enum):
    READ = 'read'                        # project, tasks, history, analytics
    WRITE_TASK = 'write_task'            # create/update/delete task, change status
    ASSIGN_TASK = 'assign_task'
    MANAGE_PROJECT = 'manage_project'    # create/update/delete project
    MANAGE_MEMBERS = 'manage_members'
    MANAGE_USERS = 'manage_users'
    UPDATE_USER_ROLE = 'update_user_role'
    DELETE_USER = 'delete_user'


ADMIN_ONLY_ACTIONS = frozenset({
    Action.MANAGE_PROJECT,
    Action.MANAGE_MEMBERS,
    Action.MANAGE_USERS,
    Action.UPDATE_USER_ROLE,
    Action.DELETE_USER,
})

SELF_PROTECTED_ACTIONS = frozenset({Action.UPDATE_USER_ROLE, Action.DELETE_USER})


class Reason:
    ADMIN_REQUIRED = 'admin_required'
    NOT_A_MEMBER = 'not_a_member'
    READ_ONLY = 'read_only'
    SELF_ROLE_CHANGE = 'self_role_change'
    SELF_DELETE = 'self_delete'
    ASSIGNEE_NOT_FOUND = InvalidAssignee.NOT_FOUND
    ASSIGNEE_NOT_IN_PROJECT = InvalidAssignee.NOT_IN_PROJECT
    ASSIGNEE_IS_VIEWER = InvalidAssignee.IS_VIEWER


ASSIGNEE_REASONS = frozenset({
    Reason.ASSIGNEE_NOT_FOUND,
    Reason.ASSIGNEE_NOT_IN_PROJECT,
    Reason.ASSIGNEE_IS_VIEWER,
})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class Assignee:
    """
    The user a task is being assigned to, as seen from one project.

    ``global_role`` is ``None`` when no such user exists.
    """
    user_id: Any
    global_role: Optional[str]
    project_role: Optional[str] = None


def assignee_decision(assignee: Optional[Assignee]) -> Decision:
    """Only global admins and project members may hold a task."""
    if assignee is None or assignee.global_role is None:
        return deny(Reason.ASSIGNEE_NOT_FOUND)
    if assignee.global_role == GlobalRole.ADMIN:
        return ALLOW
    if assignee.project_role is None:
        return deny(Reason.ASSIGNEE_NOT_IN_PROJECT)
    if assignee.project_role == ProjectRole.VIEWER:
        return deny(Reason.ASSIGNEE_IS_VIEWER)
    return ALLOW


def decide(
    global_role: str,
    project_role: Optional[str],
    action: Action,
    *,
    actor_id: Any = None,
    target_id: Any = None,
    assignee: Optional[Assignee] = None,
) -> Decision:
    """
    Decide whether a user may perform ``action``.

    Evaluation order matters:

    1. Self-protection: nobody changes their own global role or deletes
       their own account, admins included.
    2. Admin precedence: a global ADMIN has full access to every project
       without a membership row (assignment still checks the assignee).
    3. Admin-only actions are denied to everyone else.
    4. Everything left needs project membership; VIEWER is read-only.
    """
    if action in SELF_PROTECTED_ACTIONS and actor_id is not None and str(actor_id) == str(target_id):
        return deny(Reason.SELF_DELETE if action == Action.DELETE_USER else Reason.SELF_ROLE_CHANGE)

    if global_role == GlobalRole.ADMIN:
        if action == Action.ASSIGN_TASK:
            return assignee_decision(assignee)
        return ALLOW

    if action in ADMIN_ONLY_ACTIONS:
        return deny(Reason.ADMIN_REQUIRED)

    if project_role is None:
        return deny(Reason.NOT_A_MEMBER)

    if action == Action.READ:
        return ALLOW

    if project_role != ProjectRole.MEMBER:
        return deny(Reason.READ_ONLY)

    if action == Action.ASSIGN_TASK:
        return assignee_decision(assignee)

    return ALLOW


_SELF_ACTION_CODES = {
    Reason.SELF_ROLE_CHANGE: (ErrorCodes.SELF_ROLE_CHANGE, 'You cannot change your own role.'),
    Reason.SELF_DELETE: (ErrorCodes.SELF_DELETE, 'You cannot delete your own account.'),
}

_DENIAL_CODES = {
    Reason.ADMIN_REQUIRED: (ErrorCodes.ADMIN_REQUIRED, 'This action requires the ADMIN role.'),
    Reason.NOT_A_MEMBER: (ErrorCodes.PROJECT_ACCESS_DENIED, 'You do not have access to this project.'),
    Reason.READ_ONLY: (
        ErrorCodes.WRITE_ACCESS_REQUIRED,
        'You do not have write access to this project. Viewers have read-only access.',
    ),
}


def enforce(decision: Decision, **metadata) -> None:
    """Raise the typed error matching a denied decision; do nothing otherwise."""
    if decision:
        return
    if decision.reason in ASSIGNEE_REASONS:
        raise InvalidAssignee(decision.reason, metadata=metadata)
    if decision.reason in _SELF_ACTION_CODES:
        error_code, message = _SELF_ACTION_CODES[decision.reason]
        raise SelfActionForbidden(detail=message, error_code=error_code, metadata=metadata)
    error_code, message = _DENIAL_CODES.get(
        decision.reason, (ErrorCodes.INSUFFICIENT_PERMISSIONS, None)
    )
    raise PermissionDenied(detail=message, error_code=error_code, metadata=metadata)
