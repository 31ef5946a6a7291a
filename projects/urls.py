from django.urls import path

from .views import (
    ProjectDetailView,
    ProjectHistoryView,
    ProjectListCreateView,
    ProjectMemberDetailView,
    ProjectMemberListView,
)

urlpatterns = [
    path('', ProjectListCreateView.as_view(), name='project-list-create'),
    path('<uuid:project_id>/', ProjectDetailView.as_view(), name='project-detail'),
    path('<uuid:project_id>/members/', ProjectMemberListView.as_view(), name='project-members'),
    path(
        '<uuid:project_id>/members/<uuid:member_id>/',
        ProjectMemberDetailView.as_view(),
        name='project-member-detail',
    ),
    path('<uuid:project_id>/history/', ProjectHistoryView.as_view(), name='project-history'),
]
