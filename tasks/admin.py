from django.contrib import admin

from projects.admin import ReadOnlyAdminMixin

from .models import Task


@admin.register(Task)
class TaskAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('title', 'project', 'status', 'priority', 'assignee', 'due_date')
    list_filter = ('status', 'priority')
    search_fields = ('title', 'description')
