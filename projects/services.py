# projects/services.py
"""
Project business logic.

Every write runs inside ``atomic_write`` together with exactly one audit entry
(none for a no-op). Member changes are recorded as UPDATE events on the
project itself.
"""
import logging

from django.contrib.auth import get_user_model
from django.db import DEFAULT_DB_ALIAS, IntegrityError, transaction

from activity import audit
from activity.diff import compute_diff, diff_details, snapshot
from activity.models import AuditLog
from tracker.exceptions import AlreadyExists, ErrorCodes, NotFound
from tracker.pagination import paginate

from .models import Project, ProjectMember

logger = logging.getLogger(__name__)

User = get_user_model()

PROJECT_FIELDS = ('name', 'description')


def _member_snapshot(member):
    return {
        'user_id': member.user_id,
        'user_name': member.user.name,
        'user_email': member.user.email,
        'project_role': member.project_role,
    }


class ProjectService:
    def get_all(self, user_id, is_admin, page=1, page_size=None):
        queryset = (
            Project.objects
            .accessible_by(user_id, is_admin)
            .with_details()
            .order_by('-created_at', '-id')
        )
        return paginate(queryset, page=page, page_size=page_size)

    def get_by_id(self, project_id):
        project = Project.objects.with_details().filter(pk=project_id).first()
        if project is None:
            raise NotFound('Project not found.', ErrorCodes.PROJECT_NOT_FOUND, {'project_id': project_id})
        return project

    def create(self, name, description, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            project = Project.objects.using(using).create(name=name, description=description)
            audit.record(
                using, AuditLog.EntityType.PROJECT, project.id, AuditLog.Action.CREATE, actor_id,
                {'name': name, 'description': description},
            )
        logger.info(f"Project {project.id} created by {actor_id}")
        return project

    def update(self, project_id, patch, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            project = self._locked(project_id, using)
            diff = compute_diff(snapshot(project, PROJECT_FIELDS), patch, PROJECT_FIELDS)
            if not diff:
                return project

            for field, change in diff.items():
                setattr(project, field, change.new)
            project.save(using=using, update_fields=[*diff, 'updated_at'])
            audit.record(
                using, AuditLog.EntityType.PROJECT, project.id, AuditLog.Action.UPDATE, actor_id,
                diff_details(diff),
            )
        logger.info(f"Project {project.id} updated by {actor_id}: {', '.join(diff)}")
        return project

    def delete(self, project_id, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            project = self._locked(project_id, using)
            details = snapshot(project, PROJECT_FIELDS)
            project.delete()
            audit.record(
                using, AuditLog.EntityType.PROJECT, project_id, AuditLog.Action.DELETE, actor_id, details,
            )
        logger.info(f"Project {project_id} deleted by {actor_id}")

    # Members

    def add_member(self, project_id, user_id, project_role, actor_id, using=DEFAULT_DB_ALIAS):
        if not Project.objects.using(using).filter(pk=project_id).exists():
            raise NotFound('Project not found.', ErrorCodes.PROJECT_NOT_FOUND, {'project_id': project_id})

        user = User.objects.using(using).filter(pk=user_id).first()
        if user is None:
            raise NotFound('User not found.', ErrorCodes.USER_NOT_FOUND, {'user_id': user_id})

        existing_role = ProjectMember.objects.using(using).role_of(project_id, user_id)
        if existing_role is not None:
            logger.warning(f"User {user_id} is already a member of project {project_id}")
            raise AlreadyExists(
                'User is already a member of this project.',
                ErrorCodes.MEMBER_ALREADY_EXISTS,
                {'user_id': user_id, 'project_id': project_id, 'existing_role': existing_role},
            )

        with audit.atomic_write(using):
            try:
                # Savepoint so a concurrent insert of the same pair surfaces as a conflict
                with transaction.atomic(using=using):
                    member = ProjectMember.objects.using(using).create(
                        project_id=project_id, user=user, project_role=project_role,
                    )
            except IntegrityError:
                raise AlreadyExists(
                    'User is already a member of this project.',
                    ErrorCodes.MEMBER_ALREADY_EXISTS,
                    {'user_id': user_id, 'project_id': project_id},
                )
            audit.record(
                using, AuditLog.EntityType.PROJECT, project_id, AuditLog.Action.UPDATE, actor_id,
                {'member_added': _member_snapshot(member)},
            )
        logger.info(f"User {user_id} added to project {project_id} as {project_role} by {actor_id}")
        return member

    def update_member_role(self, project_id, member_id, project_role, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            member = self._member(project_id, member_id, using)
            old_role = member.project_role
            if old_role == project_role:
                return member

            member.project_role = project_role
            member.save(using=using, update_fields=['project_role'])
            audit.record(
                using, AuditLog.EntityType.PROJECT, project_id, AuditLog.Action.UPDATE, actor_id,
                {
                    'member_role_changed': {
                        'user_id': member.user_id,
                        'user_name': member.user.name,
                        'project_role': {'old': old_role, 'new': project_role},
                    },
                },
            )
        logger.info(f"Member {member_id} of project {project_id} changed {old_role} -> {project_role} by {actor_id}")
        return member

    def remove_member(self, project_id, member_id, actor_id, using=DEFAULT_DB_ALIAS):
        with audit.atomic_write(using):
            member = self._member(project_id, member_id, using)
            details = {'member_removed': _member_snapshot(member)}
            member.delete()
            audit.record(
                using, AuditLog.EntityType.PROJECT, project_id, AuditLog.Action.UPDATE, actor_id, details,
            )
        logger.info(f"Member {member_id} removed from project {project_id} by {actor_id}")

    def get_history(self, project_id, page=1, page_size=None):
        return audit.history(AuditLog.EntityType.PROJECT, project_id, page=page, page_size=page_size)

    # Helpers

    def _locked(self, project_id, using):
        project = Project.objects.using(using).select_for_update().filter(pk=project_id).first()
        if project is None:
            raise NotFound('Project not found.', ErrorCodes.PROJECT_NOT_FOUND, {'project_id': project_id})
        return project

    def _member(self, project_id, member_id, using):
        member = (
            ProjectMember.objects.using(using)
            .select_related('user')
            .filter(pk=member_id)
            .first()
        )
        if member is None or str(member.project_id) != str(project_id):
            raise NotFound(
                'Member not found in this project.',
                ErrorCodes.MEMBER_NOT_FOUND,
                {'project_id': project_id, 'member_id': member_id},
            )
        return member


project_service = ProjectService()
