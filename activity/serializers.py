# activity/serializers.py
from rest_framework import serializers

from .models import AuditLog


class AuditActorSerializer(serializers.Serializer):
    id = serializers.UUIDField(read_only=True)
    email = serializers.EmailField(read_only=True)
    name = serializers.CharField(read_only=True)


class AuditLogSerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()

    class Meta:
        model = AuditLog
        fields = [
            'id',
            'entity_type',
            'entity_id',
            'action',
            'actor_id',
            'actor',
            'timestamp',
            'details',
        ]
        read_only_fields = fields

    def get_actor(self, obj):
        # None when the acting account has been deleted since
        actor = obj.safe_actor
        return AuditActorSerializer(actor).data if actor else None
