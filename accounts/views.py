import logging

from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from tracker.pagination import paginated_response_data

from .permissions import GlobalActionPermission
from .rbac import Action
from .serializers import (
    UserCreateSerializer,
    UserListQuerySerializer,
    UserLoginSerializer,
    UserSerializer,
    UserUpdateSerializer,
)
from .services import user_service

logger = logging.getLogger(__name__)


class UserLoginView(APIView):
    permission_classes = [permissions.AllowAny]

    @swagger_auto_schema(
        request_body=UserLoginSerializer,
        responses={
            status.HTTP_200_OK: openapi.Response(
                description="Login successful",
                schema=openapi.Schema(
                    type=openapi.TYPE_OBJECT,
                    properties={
                        "access_token": openapi.Schema(type=openapi.TYPE_STRING),
                        "refresh_token": openapi.Schema(type=openapi.TYPE_STRING),
                        "user": openapi.Schema(type=openapi.TYPE_OBJECT),
                    },
                ),
            ),
            status.HTTP_401_UNAUTHORIZED: "Invalid credentials",
        },
        operation_description="Authenticate user and return JWT tokens",
        security=[],
    )
    def post(self, request):
        serializer = UserLoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = serializer.validated_data["user"]
        refresh = RefreshToken.for_user(user)
        logger.info(f"User {user.id} logged in")

        return Response(
            {
                "access_token": str(refresh.access_token),
                "refresh_token": str(refresh),
                "user": UserSerializer(user).data,
            },
            status=status.HTTP_200_OK,
        )


class MeView(APIView):
    @swagger_auto_schema(
        operation_summary="Current user",
        responses={200: UserSerializer, 401: "Not authenticated"},
        security=[{"Bearer": []}],
    )
    def get(self, request):
        return Response(UserSerializer(request.user).data)


class UserListCreateView(APIView):
    permission_classes = [permissions.IsAuthenticated, GlobalActionPermission]
    global_actions = {'GET': Action.MANAGE_USERS, 'POST': Action.MANAGE_USERS}

    @swagger_auto_schema(
        operation_summary="List users (Admin only)",
        query_serializer=UserListQuerySerializer,
        responses={200: UserSerializer(many=True), 403: "Admin role required"},
        security=[{"Bearer": []}],
    )
    def get(self, request):
        query = UserListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        page = user_service.list(**query.validated_data)
        return Response(paginated_response_data(page, UserSerializer))

    @swagger_auto_schema(
        operation_summary="Create a user (Admin only)",
        request_body=UserCreateSerializer,
        responses={201: UserSerializer, 409: "Email already exists"},
        security=[{"Bearer": []}],
    )
    def post(self, request):
        serializer = UserCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = user_service.create(**serializer.validated_data)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


class UserDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, GlobalActionPermission]
    global_actions = {
        'GET': Action.MANAGE_USERS,
        'PATCH': Action.MANAGE_USERS,
        'DELETE': Action.MANAGE_USERS,
    }

    @swagger_auto_schema(
        operation_summary="Get a user (Admin only)",
        responses={200: UserSerializer, 404: "User not found"},
        security=[{"Bearer": []}],
    )
    def get(self, request, user_id):
        return Response(UserSerializer(user_service.get(user_id)).data)

    @swagger_auto_schema(
        operation_summary="Update a user's name or role (Admin only)",
        operation_description="Changing your own role is refused, even to the same value.",
        request_body=UserUpdateSerializer,
        responses={200: UserSerializer, 400: "Cannot change your own role", 404: "User not found"},
        security=[{"Bearer": []}],
    )
    def patch(self, request, user_id):
        serializer = UserUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        user = user_service.update(request.user, user_id, serializer.validated_data)
        return Response(UserSerializer(user).data)

    @swagger_auto_schema(
        operation_summary="Delete a user (Admin only)",
        responses={204: "Deleted", 400: "Cannot delete your own account", 404: "User not found"},
        security=[{"Bearer": []}],
    )
    def delete(self, request, user_id):
        user_service.delete(request.user, user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
