# tasks/views.py
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import status
from rest_framework.response import Response

from accounts.rbac import Action
from activity.serializers import AuditLogSerializer
from projects.services import project_service
from projects.views import ProjectScopedView
from tracker.exceptions import ErrorCodes, NotFound
from tracker.pagination import PaginationQuerySerializer, paginated_response_data

from .analytics import analytics_service
from .models import Task
from .serializers import ProjectAnalyticsSerializer, TaskSerializer, TaskUpdateSerializer, TaskWriteSerializer
from .services import task_service

TASK_FILTER_PARAMETERS = [
    openapi.Parameter(
        'status', openapi.IN_QUERY, type=openapi.TYPE_STRING,
        enum=list(Task.Status.values), description="Only tasks in this status",
    ),
    openapi.Parameter(
        'assignee_id', openapi.IN_QUERY, type=openapi.TYPE_STRING, format=openapi.FORMAT_UUID,
        description="Only tasks assigned to this user",
    ),
    openapi.Parameter(
        'search', openapi.IN_QUERY, type=openapi.TYPE_STRING,
        description="Case-insensitive match on title or description",
    ),
]


class TaskScopedView(ProjectScopedView):
    """Routes under ``tasks/<task_id>/``: permissions are checked against the task's project."""

    def get_project_id(self):
        task_id = self.kwargs['task_id']
        project_id = Task.objects.filter(pk=task_id).values_list('project_id', flat=True).first()
        if project_id is None:
            raise NotFound('Task not found.', ErrorCodes.TASK_NOT_FOUND, {'task_id': task_id})
        return project_id


class ProjectTaskListView(ProjectScopedView):
    project_actions = {'GET': Action.READ, 'POST': Action.WRITE_TASK}

    @swagger_auto_schema(
        operation_summary="List a project's tasks",
        operation_description="Ordered TODO, IN_PROGRESS, DONE; newest first within a status.",
        query_serializer=PaginationQuerySerializer,
        manual_parameters=TASK_FILTER_PARAMETERS,
        responses={200: TaskSerializer(many=True), 403: "No access to this project"},
        security=[{"Bearer": []}],
    )
    def get(self, request, project_id):
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        project_service.get_by_id(project_id)
        page = task_service.get_by_project(project_id, filters=request.query_params, **query.validated_data)
        return Response(paginated_response_data(page, TaskSerializer))

    @swagger_auto_schema(
        operation_summary="Create a task",
        operation_description="The assignee must be a global admin or a MEMBER of the project.",
        request_body=TaskWriteSerializer,
        responses={
            201: TaskSerializer,
            400: "Invalid assignee",
            403: "Write access required",
            404: "Project not found",
        },
        security=[{"Bearer": []}],
    )
    def post(self, request, project_id):
        serializer = TaskWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        task = task_service.create({**serializer.validated_data, 'project_id': project_id}, request.user.id)
        return Response(TaskSerializer(task_service.get_by_id(task.id)).data, status=status.HTTP_201_CREATED)


class TaskDetailView(TaskScopedView):
    project_actions = {'GET': Action.READ, 'PATCH': Action.WRITE_TASK, 'DELETE': Action.WRITE_TASK}

    @swagger_auto_schema(
        operation_summary="Get a task",
        responses={200: TaskSerializer, 404: "Task not found"},
        security=[{"Bearer": []}],
    )
    def get(self, request, task_id):
        return Response(TaskSerializer(task_service.get_by_id(task_id)).data)

    @swagger_auto_schema(
        operation_summary="Update a task",
        operation_description="Moving into DONE stamps completed_at; moving out of DONE clears it.",
        request_body=TaskUpdateSerializer,
        responses={200: TaskSerializer, 400: "Invalid assignee", 404: "Task not found"},
        security=[{"Bearer": []}],
    )
    def patch(self, request, task_id):
        serializer = TaskUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        task_service.update(task_id, serializer.validated_data, request.user.id)
        return Response(TaskSerializer(task_service.get_by_id(task_id)).data)

    @swagger_auto_schema(
        operation_summary="Delete a task",
        responses={204: "Deleted", 404: "Task not found"},
        security=[{"Bearer": []}],
    )
    def delete(self, request, task_id):
        task_service.delete(task_id, request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class TaskHistoryView(TaskScopedView):
    project_actions = {'GET': Action.READ}

    @swagger_auto_schema(
        operation_summary="Audit trail of a task, newest first",
        query_serializer=PaginationQuerySerializer,
        responses={200: AuditLogSerializer(many=True)},
        security=[{"Bearer": []}],
    )
    def get(self, request, task_id):
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        page = task_service.get_history(task_id, **query.validated_data)
        return Response(paginated_response_data(page, AuditLogSerializer))


class ProjectAnalyticsView(ProjectScopedView):
    project_actions = {'GET': Action.READ}

    @swagger_auto_schema(
        operation_summary="Dashboard figures for a project",
        responses={200: ProjectAnalyticsSerializer, 404: "Project not found"},
        security=[{"Bearer": []}],
    )
    def get(self, request, project_id):
        project_service.get_by_id(project_id)
        analytics = analytics_service.get_project_analytics(project_id)
        return Response(ProjectAnalyticsSerializer(analytics).data)
