# tasks/filters.py
import django_filters
from django.db.models import Q

from .models import Task


class TaskFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=Task.Status.choices)
    assignee_id = django_filters.UUIDFilter(field_name='assignee_id')
    search = django_filters.CharFilter(method='filter_search')

    class Meta:
        model = Task
        fields = ['status', 'assignee_id', 'search']

    def filter_search(self, queryset, name, value):
        # Case-insensitive match on title or description
        return queryset.filter(Q(title__icontains=value) | Q(description__icontains=value))
