# tasks/models.py
import uuid

from django.conf import settings
from django.core.validators import MinLengthValidator
from django.db import models
from django.db.models import Case, IntegerField, Value, When

from projects.models import Project


class TaskQuerySet(models.QuerySet):
    def board_order(self):
        """TODO first, then IN_PROGRESS, then DONE; newest first within a status."""
        status_rank = Case(
            When(status=Task.Status.TODO, then=Value(0)),
            When(status=Task.Status.IN_PROGRESS, then=Value(1)),
            When(status=Task.Status.DONE, then=Value(2)),
            output_field=IntegerField(),
        )
        return self.annotate(status_rank=status_rank).order_by('status_rank', '-created_at', '-id')

    def overdue(self, now):
        return self.exclude(status=Task.Status.DONE).filter(due_date__lt=now)

    def completed(self):
        return self.filter(status=Task.Status.DONE, completed_at__isnull=False)


class Task(models.Model):
    class Status(models.TextChoices):
        TODO = 'TODO', 'To do'
        IN_PROGRESS = 'IN_PROGRESS', 'In progress'
        DONE = 'DONE', 'Done'

    class Priority(models.TextChoices):
        LOW = 'Low', 'Low'
        MEDIUM = 'Medium', 'Medium'
        HIGH = 'High', 'High'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200, validators=[MinLengthValidator(3)])
    description = models.TextField(max_length=2000, blank=True, null=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.TODO)
    priority = models.CharField(max_length=10, choices=Priority.choices, blank=True, null=True)
    due_date = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='tasks')
    assignee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_tasks',
    )
    reporter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='reported_tasks',
    )

    objects = TaskQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['project', 'status'], name='task_project_status_idx'),
            models.Index(fields=['project', 'due_date'], name='task_project_due_idx'),
        ]

    def __str__(self):
        return self.title
