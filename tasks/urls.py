from django.urls import path

from .views import ProjectAnalyticsView, ProjectTaskListView, TaskDetailView, TaskHistoryView

urlpatterns = [
    path('projects/<uuid:project_id>/tasks/', ProjectTaskListView.as_view(), name='project-task-list'),
    path('projects/<uuid:project_id>/analytics/', ProjectAnalyticsView.as_view(), name='project-analytics'),
    path('tasks/<uuid:task_id>/', TaskDetailView.as_view(), name='task-detail'),
    path('tasks/<uuid:task_id>/history/', TaskHistoryView.as_view(), name='task-history'),
]
