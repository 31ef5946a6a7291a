# activity/models.py
from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from django.db import models


class AuditLogImmutableError(Exception):
    """Raised on any attempt to change or remove a written audit row."""


class AuditLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AuditLogImmutableError('Audit log entries cannot be updated.')

    def delete(self):
        raise AuditLogImmutableError('Audit log entries cannot be deleted.')

    def for_entity(self, entity_type, entity_id):
        return self.filter(entity_type=entity_type, entity_id=entity_id)


class AuditLog(models.Model):
    class EntityType(models.TextChoices):
        PROJECT = 'Project', 'Project'
        TASK = 'Task', 'Task'

    class Action(models.TextChoices):
        CREATE = 'CREATE', 'Created'
        UPDATE = 'UPDATE', 'Updated'
        DELETE = 'DELETE', 'Deleted'

    id = models.BigAutoField(primary_key=True)
    entity_type = models.CharField(max_length=20, choices=EntityType.choices)
    # No foreign key: the trail outlives the entity it describes
    entity_id = models.UUIDField()
    action = models.CharField(max_length=10, choices=Action.choices)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='audit_logs',
    )
    timestamp = models.DateTimeField(auto_now_add=True)
    details = models.JSONField(blank=True, null=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        ordering = ['-timestamp', '-id']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', '-timestamp'], name='audit_entity_ts_idx'),
            models.Index(fields=['actor', '-timestamp'], name='audit_actor_ts_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditLogImmutableError('Audit log entries cannot be updated.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AuditLogImmutableError('Audit log entries cannot be deleted.')

    @property
    def safe_actor(self):
        """The acting user, or None if that account has since been deleted"""
        try:
            return self.actor
        except ObjectDoesNotExist:
            return None

    def __str__(self):
        return f"{self.actor_id} {self.action} {self.entity_type}:{self.entity_id} at {self.timestamp}"
