# projects/models.py
import uuid

from django.conf import settings
from django.core.validators import MinLengthValidator
from django.db import models
from django.db.models import Count

from accounts.rbac import ProjectRole


class ProjectQuerySet(models.QuerySet):
    def accessible_by(self, user_id, is_admin):
        """Every project for an admin, otherwise only projects with a membership row for the user."""
        if is_admin:
            return self.all()
        return self.filter(members__user_id=user_id).distinct()

    def with_details(self):
        return self.annotate(task_count=Count('tasks', distinct=True)).prefetch_related('members__user')


class Project(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, validators=[MinLengthValidator(3)])
    description = models.CharField(max_length=500, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ProjectQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.name


class ProjectMemberQuerySet(models.QuerySet):
    def role_of(self, project_id, user_id):
        """The user's role in the project, or None when they are not a member."""
        return (
            self.filter(project_id=project_id, user_id=user_id)
            .values_list('project_role', flat=True)
            .first()
        )


class ProjectMember(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='members')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='project_memberships',
    )
    project_role = models.CharField(max_length=10, choices=ProjectRole.choices, default=ProjectRole.MEMBER)
    joined_at = models.DateTimeField(auto_now_add=True)

    objects = ProjectMemberQuerySet.as_manager()

    class Meta:
        ordering = ['joined_at']
        constraints = [
            models.UniqueConstraint(fields=['project', 'user'], name='unique_project_member'),
        ]

    def __str__(self):
        return f"{self.user.email} in {self.project} ({self.project_role})"
