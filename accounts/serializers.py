from django.contrib.auth import authenticate, get_user_model
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed

from tracker.pagination import PaginationQuerySerializer

from .rbac import GlobalRole
from .services import SORT_FIELDS

User = get_user_model()


class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'email', 'name', 'role']
        read_only_fields = fields


class UserSerializer(serializers.ModelSerializer):
    created_at = serializers.DateTimeField(source='date_joined', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'name', 'role', 'created_at', 'updated_at']
        read_only_fields = fields


class UserCreateSerializer(serializers.Serializer):
    email = serializers.EmailField()
    name = serializers.CharField(min_length=2, max_length=100)
    password = serializers.CharField(min_length=6, write_only=True)
    role = serializers.ChoiceField(choices=GlobalRole.choices, default=GlobalRole.VIEWER)


class UserUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=2, max_length=100, required=False)
    role = serializers.ChoiceField(choices=GlobalRole.choices, required=False)


class UserListQuerySerializer(PaginationQuerySerializer):
    search = serializers.CharField(required=False, allow_blank=True)
    sort_by = serializers.ChoiceField(choices=list(SORT_FIELDS), default='created_at')
    sort_order = serializers.ChoiceField(choices=['asc', 'desc'], default='desc')


class UserLoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate(self, attrs):
        user = authenticate(email=attrs.get('email'), password=attrs.get('password'))

        if not user:
            raise AuthenticationFailed('Invalid email or password.')

        attrs['user'] = user
        return attrs
