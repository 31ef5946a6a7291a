from django.contrib import admin

from .models import Project, ProjectMember


class ReadOnlyAdminMixin:
    """Writes go through the API so each one gets its audit entry."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class ProjectMemberInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = ProjectMember
    extra = 0


@admin.register(Project)
class ProjectAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('name', 'created_at', 'updated_at')
    search_fields = ('name',)
    inlines = [ProjectMemberInline]
