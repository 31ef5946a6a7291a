from rest_framework import serializers

from accounts.rbac import ProjectRole
from accounts.serializers import UserSummarySerializer

from .models import Project, ProjectMember


class ProjectMemberSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)

    class Meta:
        model = ProjectMember
        fields = ['id', 'project_id', 'user_id', 'user', 'project_role', 'joined_at']
        read_only_fields = fields


class ProjectSerializer(serializers.ModelSerializer):
    members = ProjectMemberSerializer(many=True, read_only=True)
    task_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = Project
        fields = ['id', 'name', 'description', 'created_at', 'updated_at', 'members', 'task_count']
        read_only_fields = fields


class ProjectWriteSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=3, max_length=100)
    description = serializers.CharField(max_length=500, required=False, allow_null=True, allow_blank=True)


class AddMemberSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    project_role = serializers.ChoiceField(choices=ProjectRole.choices, default=ProjectRole.MEMBER)


class UpdateMemberRoleSerializer(serializers.Serializer):
    project_role = serializers.ChoiceField(choices=ProjectRole.choices)
