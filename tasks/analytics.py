# tasks/analytics.py
"""
Read-only project dashboard figures.

All five sub-results are read inside one atomic block so they describe the
same state of the project.
"""
import logging

from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from .models import Task

logger = logging.getLogger(__name__)

OVERDUE_LIMIT = 5

LESS_THAN_A_DAY = '< 1 Day'
ONE_TO_THREE_DAYS = '1-3 Days'
THREE_TO_SEVEN_DAYS = '3-7 Days'
MORE_THAN_A_WEEK = '> 7 Days'

COMPLETION_BUCKETS = (LESS_THAN_A_DAY, ONE_TO_THREE_DAYS, THREE_TO_SEVEN_DAYS, MORE_THAN_A_WEEK)


def completion_bucket(hours):
    """Bucket for a completion duration; the 24h and 72h edges fall in 1-3 Days."""
    if hours < 24:
        return LESS_THAN_A_DAY
    if hours <= 72:
        return ONE_TO_THREE_DAYS
    if hours <= 168:
        return THREE_TO_SEVEN_DAYS
    return MORE_THAN_A_WEEK


class AnalyticsService:
    def tasks_by_status(self, tasks):
        stats = {status: 0 for status in Task.Status.values}
        for row in tasks.order_by().values('status').annotate(count=Count('id')):
            stats[row['status']] = row['count']
        return stats

    def completion_hours(self, tasks):
        pairs = tasks.completed().values_list('created_at', 'completed_at')
        return [(completed - created).total_seconds() / 3600 for created, completed in pairs]

    def get_project_analytics(self, project_id, now=None):
        now = now or timezone.now()

        with transaction.atomic():
            tasks = Task.objects.filter(project_id=project_id)
            tasks_by_status = self.tasks_by_status(tasks)
            overdue = tasks.overdue(now)
            overdue_count = overdue.count()
            overdue_tasks = list(
                overdue.select_related('assignee', 'reporter').order_by('due_date', 'id')[:OVERDUE_LIMIT]
            )
            durations = self.completion_hours(tasks)

        distribution = {bucket: 0 for bucket in COMPLETION_BUCKETS}
        for hours in durations:
            distribution[completion_bucket(hours)] += 1

        avg_hours = round(sum(durations) / len(durations), 2) if durations else None

        logger.debug(f"Analytics for project {project_id}: {len(durations)} completed, {overdue_count} overdue")
        return {
            'project_id': project_id,
            'tasks_by_status': tasks_by_status,
            'overdue_count': overdue_count,
            'overdue_tasks': overdue_tasks,
            'avg_completion_time_hours': avg_hours,
            'completion_time_distribution': distribution,
        }


analytics_service = AnalyticsService()
