from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import GlobalActionPermission, ProjectActionPermission
from accounts.rbac import Action
from activity.serializers import AuditLogSerializer
from tracker.pagination import PaginationQuerySerializer, paginated_response_data

from .serializers import (
    AddMemberSerializer,
    ProjectMemberSerializer,
    ProjectSerializer,
    ProjectWriteSerializer,
    UpdateMemberRoleSerializer,
)
from .services import project_service


class ProjectScopedView(APIView):
    """Base for routes under ``projects/<project_id>/``; see ``ProjectActionPermission``."""
    permission_classes = [permissions.IsAuthenticated, ProjectActionPermission]
    project_actions = {}

    def get_project_id(self):
        return self.kwargs['project_id']


class ProjectListCreateView(APIView):
    permission_classes = [permissions.IsAuthenticated, GlobalActionPermission]
    global_actions = {'POST': Action.MANAGE_PROJECT}

    @swagger_auto_schema(
        operation_summary="List projects",
        operation_description="Admins see every project; other users see the projects they are members of.",
        query_serializer=PaginationQuerySerializer,
        responses={200: ProjectSerializer(many=True)},
        security=[{"Bearer": []}],
    )
    def get(self, request):
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        page = project_service.get_all(request.user.id, request.user.is_admin, **query.validated_data)
        return Response(paginated_response_data(page, ProjectSerializer))

    @swagger_auto_schema(
        operation_summary="Create a project (Admin only)",
        request_body=ProjectWriteSerializer,
        responses={201: ProjectSerializer, 403: "Admin role required"},
        security=[{"Bearer": []}],
    )
    def post(self, request):
        serializer = ProjectWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        project = project_service.create(
            serializer.validated_data['name'],
            serializer.validated_data.get('description'),
            request.user.id,
        )
        return Response(ProjectSerializer(project).data, status=status.HTTP_201_CREATED)


class ProjectDetailView(ProjectScopedView):
    project_actions = {
        'GET': Action.READ,
        'PUT': Action.MANAGE_PROJECT,
        'PATCH': Action.MANAGE_PROJECT,
        'DELETE': Action.MANAGE_PROJECT,
    }

    @swagger_auto_schema(
        operation_summary="Get a project with its members and task count",
        responses={200: ProjectSerializer, 403: "No access to this project", 404: "Project not found"},
        security=[{"Bearer": []}],
    )
    def get(self, request, project_id):
        return Response(ProjectSerializer(project_service.get_by_id(project_id)).data)

    @swagger_auto_schema(
        operation_summary="Update a project (Admin only)",
        request_body=ProjectWriteSerializer,
        responses={200: ProjectSerializer, 404: "Project not found"},
        security=[{"Bearer": []}],
    )
    def put(self, request, project_id):
        serializer = ProjectWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        project_service.update(project_id, serializer.validated_data, request.user.id)
        return Response(ProjectSerializer(project_service.get_by_id(project_id)).data)

    @swagger_auto_schema(auto_schema=None)
    def patch(self, request, project_id):
        return self.put(request, project_id)

    @swagger_auto_schema(
        operation_summary="Delete a project and its tasks (Admin only)",
        responses={204: "Deleted", 404: "Project not found"},
        security=[{"Bearer": []}],
    )
    def delete(self, request, project_id):
        project_service.delete(project_id, request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectMemberListView(ProjectScopedView):
    project_actions = {'POST': Action.MANAGE_MEMBERS}

    @swagger_auto_schema(
        operation_summary="Add a member to a project (Admin only)",
        request_body=AddMemberSerializer,
        responses={
            201: ProjectMemberSerializer,
            404: "Project or user not found",
            409: "User is already a member",
        },
        security=[{"Bearer": []}],
    )
    def post(self, request, project_id):
        serializer = AddMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        member = project_service.add_member(
            project_id,
            serializer.validated_data['user_id'],
            serializer.validated_data['project_role'],
            request.user.id,
        )
        return Response(ProjectMemberSerializer(member).data, status=status.HTTP_201_CREATED)


class ProjectMemberDetailView(ProjectScopedView):
    project_actions = {'PATCH': Action.MANAGE_MEMBERS, 'DELETE': Action.MANAGE_MEMBERS}

    @swagger_auto_schema(
        operation_summary="Change a member's project role (Admin only)",
        request_body=UpdateMemberRoleSerializer,
        responses={200: ProjectMemberSerializer, 404: "Member not found in this project"},
        security=[{"Bearer": []}],
    )
    def patch(self, request, project_id, member_id):
        serializer = UpdateMemberRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        member = project_service.update_member_role(
            project_id, member_id, serializer.validated_data['project_role'], request.user.id,
        )
        return Response(ProjectMemberSerializer(member).data)

    @swagger_auto_schema(
        operation_summary="Remove a member from a project (Admin only)",
        responses={204: "Removed", 404: "Member not found in this project"},
        security=[{"Bearer": []}],
    )
    def delete(self, request, project_id, member_id):
        project_service.remove_member(project_id, member_id, request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectHistoryView(ProjectScopedView):
    project_actions = {'GET': Action.READ}

    @swagger_auto_schema(
        operation_summary="Audit trail of a project, newest first",
        query_serializer=PaginationQuerySerializer,
        responses={
            200: openapi.Response(description="Paginated audit entries", schema=AuditLogSerializer(many=True)),
        },
        security=[{"Bearer": []}],
    )
    def get(self, request, project_id):
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        page = project_service.get_history(project_id, **query.validated_data)
        return Response(paginated_response_data(page, AuditLogSerializer))
