# tasks/serializers.py
from rest_framework import serializers

from accounts.serializers import UserSummarySerializer

from .analytics import COMPLETION_BUCKETS
from .models import Task


class TaskSerializer(serializers.ModelSerializer):
    assignee = UserSummarySerializer(read_only=True)
    reporter = UserSummarySerializer(read_only=True)

    class Meta:
        model = Task
        fields = [
            'id', 'title', 'description', 'status', 'priority', 'due_date', 'completed_at',
            'project_id', 'assignee_id', 'assignee', 'reporter_id', 'reporter',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TaskWriteSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=3, max_length=200)
    description = serializers.CharField(max_length=2000, required=False, allow_null=True, allow_blank=True)
    priority = serializers.ChoiceField(choices=Task.Priority.choices, required=False, allow_null=True)
    due_date = serializers.DateTimeField(required=False, allow_null=True)
    assignee_id = serializers.UUIDField(required=False, allow_null=True)


class TaskUpdateSerializer(TaskWriteSerializer):
    status = serializers.ChoiceField(choices=Task.Status.choices, required=False)


class ProjectAnalyticsSerializer(serializers.Serializer):
    project_id = serializers.UUIDField()
    tasks_by_status = serializers.DictField(child=serializers.IntegerField())
    overdue_count = serializers.IntegerField()
    overdue_tasks = TaskSerializer(many=True)
    avg_completion_time_hours = serializers.FloatField(allow_null=True)
    completion_time_distribution = serializers.DictField(
        child=serializers.IntegerField(),
        help_text=f"Always holds the keys {', '.join(COMPLETION_BUCKETS)}",
    )
