# accounts/permissions.py
"""
DRF permission classes that feed request context into ``rbac.decide``.

Views declare the action each HTTP method performs:

    project_actions = {'GET': Action.READ, 'POST': Action.WRITE_TASK}
    global_actions = {'POST': Action.MANAGE_PROJECT}

Denials are raised as typed errors so the client sees the precise reason.
"""
from rest_framework import permissions

from projects.models import ProjectMember

from .rbac import decide, enforce


class ProjectActionPermission(permissions.BasePermission):
    """
    Checks the caller's role in the project the request targets.

    The view supplies ``get_project_id()``; for task routes that resolves the
    task's project first. Global admins never need a membership lookup.
    """

    def has_permission(self, request, view):
        action = getattr(view, 'project_actions', {}).get(request.method)
        if action is None:
            return True

        user = request.user
        project_id = view.get_project_id()
        project_role = None
        if not user.is_admin:
            project_role = ProjectMember.objects.role_of(project_id, user.id)

        enforce(decide(user.role, project_role, action), project_id=project_id, user_id=user.id)
        return True


class GlobalActionPermission(permissions.BasePermission):
    """Checks actions that depend on the global role alone (project and user administration)."""

    def has_permission(self, request, view):
        action = getattr(view, 'global_actions', {}).get(request.method)
        if action is None:
            return True
        enforce(decide(request.user.role, None, action), user_id=request.user.id)
        return True
