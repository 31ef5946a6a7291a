# tasks/services.py
import logging

from django.contrib.auth import get_user_model
from django.db import DEFAULT_DB_ALIAS
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from accounts.rbac import Assignee, assignee_decision, enforce
from activity import audit
from activity.diff import compute_diff, diff_details, snapshot
from activity.models import AuditLog
from projects.models import Project, ProjectMember
from tracker.exceptions import ErrorCodes, NotFound
from tracker.pagination import paginate

from .filters import TaskFilter
from .models import Task

logger = logging.getLogger(__name__)

User = get_user_model()

# Fields a client may change through update()
UPDATABLE_FIELDS = ('title', 'description', 'status', 'priority', 'assignee_id', 'due_date')

# completed_at is derived from status but stored, so it is diffed too
AUDITED_FIELDS = UPDATABLE_FIELDS + ('completed_at',)

CREATE_FIELDS = ('title', 'description', 'priority', 'due_date', 'project_id', 'assignee_id')

DELETE_SNAPSHOT_FIELDS = ('title', 'description', 'status', 'priority', 'due_date', 'project_id', 'assignee_id')


class TaskService:
    """Task CRUD with assignee validation and an audit entry per committed change."""

    def get_by_project(self, project_id, page=1, page_size=None, filters=None):
        queryset = Task.objects.filter(project_id=project_id).select_related('assignee', 'reporter')
        filterset = TaskFilter(filters or {}, queryset=queryset)
        if not filterset.is_valid():
            raise ValidationError(filterset.errors)
        return paginate(filterset.qs.board_order(), page=page, page_size=page_size)

    def get_by_id(self, task_id):
        task = Task.objects.select_related('assignee', 'reporter').filter(pk=task_id).first()
        if task is None:
            raise NotFound('Task not found.', ErrorCodes.TASK_NOT_FOUND, {'task_id': task_id})
        return task

    def validate_assignee(self, project_id, assignee_id, using=DEFAULT_DB_ALIAS):
        """
        Raise ``InvalidAssignee`` unless the user may hold tasks in the project.

        ``None`` means unassigned and is always accepted.
        """
        if assignee_id is None:
            return
        global_role = User.objects.using(using).filter(pk=assignee_id).values_list('role', flat=True).first()
        project_role = ProjectMember.objects.using(using).role_of(project_id, assignee_id)
        decision = assignee_decision(Assignee(assignee_id, global_role, project_role))
        if not decision:
            logger.warning(f"Rejected assignee {assignee_id} for project {project_id}: {decision.reason}")
        enforce(decision, assignee_id=assignee_id, project_id=project_id)

    def create(self, data, actor_id, using=DEFAULT_DB_ALIAS):
        project_id = data['project_id']
        if not Project.objects.using(using).filter(pk=project_id).exists():
            raise NotFound('Project not found.', ErrorCodes.PROJECT_NOT_FOUND, {'project_id': project_id})

        self.validate_assignee(project_id, data.get('assignee_id'), using)

        values = {name: data.get(name) for name in CREATE_FIELDS}
        with audit.atomic_write(using):
            task = Task.objects.using(using).create(reporter_id=actor_id, **values)
            audit.record(using, AuditLog.EntityType.TASK, task.id, AuditLog.Action.CREATE, actor_id, values)
        logger.info(f"Task {task.id} created in project {project_id} by {actor_id}")
        return task

    def update(self, task_id, patch, actor_id, using=DEFAULT_DB_ALIAS):
        changes = {name: patch[name] for name in UPDATABLE_FIELDS if name in patch}

        with audit.atomic_write(using):
            task = Task.objects.using(using).select_for_update().filter(pk=task_id).first()
            if task is None:
                raise NotFound('Task not found.', ErrorCodes.TASK_NOT_FOUND, {'task_id': task_id})

            if 'assignee_id' in changes:
                self.validate_assignee(task.project_id, changes['assignee_id'], using)

            new_status = changes.get('status', task.status)
            if new_status == Task.Status.DONE and task.status != Task.Status.DONE:
                changes['completed_at'] = timezone.now()
            elif new_status != Task.Status.DONE and task.status == Task.Status.DONE:
                changes['completed_at'] = None

            diff = compute_diff(snapshot(task, AUDITED_FIELDS), changes, AUDITED_FIELDS)
            if not diff:
                return task

            for field, change in diff.items():
                setattr(task, field, change.new)
            task.save(using=using, update_fields=[*diff, 'updated_at'])
            audit.record(
                using, AuditLog.EntityType.TASK, task.id, AuditLog.Action.UPDATE, actor_id, diff_details(diff),
            )
        logger.info(f"Task {task.id} updated by {actor_id}: {', '.join(diff)}")
        return task

    def delete(self, task_id, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            task = Task.objects.using(using).select_for_update().filter(pk=task_id).first()
            if task is None:
                raise NotFound('Task not found.', ErrorCodes.TASK_NOT_FOUND, {'task_id': task_id})
            details = snapshot(task, DELETE_SNAPSHOT_FIELDS)
            task.delete()
            audit.record(using, AuditLog.EntityType.TASK, task_id, AuditLog.Action.DELETE, actor_id, details)
        logger.info(f"Task {task_id} deleted by {actor_id}")

    def get_history(self, task_id, page=1, page_size=None):
        return audit.history(AuditLog.EntityType.TASK, task_id, page=page, page_size=page_size)


task_service = TaskService()
