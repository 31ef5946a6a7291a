import datetime
import uuid
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.rbac import GlobalRole, ProjectRole
from activity.models import AuditLog
from projects.models import Project, ProjectMember
from tasks.analytics import analytics_service, completion_bucket
from tasks.models import Task
from tasks.services import task_service
from tracker.exceptions import ErrorCodes, InvalidAssignee, NotFound, TransactionFailure

User = get_user_model()


def make_user(email, role=GlobalRole.MEMBER):
    return User.objects.create_user(email=email, password='testpass123', name=email.split('@')[0], role=role)


def task_log(task_id):
    return AuditLog.objects.filter(entity_type=AuditLog.EntityType.TASK, entity_id=task_id)


class ProjectFixtureMixin:
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.member = make_user('member@example.com')
        self.viewer = make_user('viewer@example.com', GlobalRole.VIEWER)
        self.outsider = make_user('outsider@example.com')
        self.project = Project.objects.create(name='Apollo')
        ProjectMember.objects.create(project=self.project, user=self.member, project_role=ProjectRole.MEMBER)
        ProjectMember.objects.create(project=self.project, user=self.viewer, project_role=ProjectRole.VIEWER)

    def create_task(self, title='Write docs', **extra):
        data = {'project_id': self.project.id, 'title': title, **extra}
        return task_service.create(data, self.member.id)


class CompletionBucketTest(SimpleTestCase):
    def test_bucket_edges(self):
        self.assertEqual(completion_bucket(0), '< 1 Day')
        self.assertEqual(completion_bucket(23.99), '< 1 Day')
        self.assertEqual(completion_bucket(24), '1-3 Days')
        self.assertEqual(completion_bucket(72), '1-3 Days')
        self.assertEqual(completion_bucket(72.01), '3-7 Days')
        self.assertEqual(completion_bucket(168), '3-7 Days')
        self.assertEqual(completion_bucket(168.5), '> 7 Days')


class TaskServiceTest(ProjectFixtureMixin, TestCase):
    def test_create_sets_reporter_and_audits(self):
        task = self.create_task(priority=Task.Priority.HIGH, assignee_id=self.member.id)
        self.assertEqual(task.reporter_id, self.member.id)
        self.assertEqual(task.status, Task.Status.TODO)

        entry = task_log(task.id).get()
        self.assertEqual(entry.action, AuditLog.Action.CREATE)
        self.assertEqual(entry.details['title'], 'Write docs')
        self.assertEqual(entry.details['assignee_id'], str(self.member.id))
        self.assertEqual(entry.details['project_id'], str(self.project.id))

    def test_create_in_missing_project(self):
        with self.assertRaises(NotFound) as ctx:
            task_service.create({'project_id': uuid.uuid4(), 'title': 'Orphan'}, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.PROJECT_NOT_FOUND)

    def test_failed_audit_leaves_no_task(self):
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                self.create_task(title='Phantom')
        self.assertFalse(Task.objects.filter(title='Phantom').exists())

    def test_failed_audit_leaves_task_unchanged(self):
        task = self.create_task()
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                task_service.update(task.id, {'status': Task.Status.DONE}, self.member.id)
        task.refresh_from_db()
        self.assertEqual(task.status, Task.Status.TODO)
        self.assertIsNone(task.completed_at)
        self.assertEqual(task_log(task.id).count(), 1)

    def test_failed_audit_keeps_deleted_task(self):
        task = self.create_task()
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                task_service.delete(task.id, self.member.id)
        self.assertTrue(Task.objects.filter(pk=task.id).exists())
        self.assertFalse(task_log(task.id).filter(action=AuditLog.Action.DELETE).exists())

    def test_failed_task_write_leaves_no_audit(self):
        task = self.create_task()
        with mock.patch.object(Task, 'save', side_effect=DatabaseError('update failed')):
            with self.assertRaises(TransactionFailure):
                task_service.update(task.id, {'title': 'Rewrite docs'}, self.member.id)
        self.assertEqual(task_log(task.id).count(), 1)

    def test_done_stamps_and_clears_completed_at(self):
        task = self.create_task()

        task = task_service.update(task.id, {'status': Task.Status.DONE}, self.member.id)
        self.assertIsNotNone(task.completed_at)
        entry = task_log(task.id).filter(action=AuditLog.Action.UPDATE).first()
        self.assertEqual(set(entry.details), {'status', 'completed_at'})
        self.assertEqual(entry.details['status'], {'old': 'TODO', 'new': 'DONE'})
        self.assertIsNone(entry.details['completed_at']['old'])

        task = task_service.update(task.id, {'status': Task.Status.IN_PROGRESS}, self.member.id)
        self.assertIsNone(task.completed_at)
        entry = task_log(task.id).filter(action=AuditLog.Action.UPDATE).first()
        self.assertEqual(entry.details['status'], {'old': 'DONE', 'new': 'IN_PROGRESS'})
        self.assertIsNone(entry.details['completed_at']['new'])

    def test_staying_done_keeps_completed_at(self):
        task = self.create_task()
        task = task_service.update(task.id, {'status': Task.Status.DONE}, self.member.id)
        completed_at = task.completed_at
        task = task_service.update(task.id, {'status': Task.Status.DONE, 'title': 'Docs written'}, self.member.id)
        self.assertEqual(task.completed_at, completed_at)
        entry = task_log(task.id).filter(action=AuditLog.Action.UPDATE).first()
        self.assertEqual(set(entry.details), {'title'})

    def test_noop_update_writes_nothing(self):
        task = self.create_task(priority=Task.Priority.LOW)
        task_service.update(task.id, {'title': 'Write docs', 'priority': Task.Priority.LOW}, self.member.id)
        task_service.update(task.id, {}, self.member.id)
        self.assertEqual(task_log(task.id).count(), 1)

    def test_clearing_assignee_is_recorded(self):
        task = self.create_task(assignee_id=self.member.id)
        task_service.update(task.id, {'assignee_id': None}, self.member.id)
        entry = task_log(task.id).filter(action=AuditLog.Action.UPDATE).get()
        self.assertEqual(entry.details, {'assignee_id': {'old': str(self.member.id), 'new': None}})

    def test_update_missing_task(self):
        with self.assertRaises(NotFound) as ctx:
            task_service.update(uuid.uuid4(), {'title': 'Nope'}, self.member.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.TASK_NOT_FOUND)

    def test_delete_keeps_snapshot(self):
        task = self.create_task(description='All of it')
        task_service.delete(task.id, self.member.id)
        self.assertFalse(Task.objects.filter(pk=task.id).exists())
        entry = task_log(task.id).get(action=AuditLog.Action.DELETE)
        self.assertEqual(entry.details['title'], 'Write docs')
        self.assertEqual(entry.details['description'], 'All of it')
        self.assertEqual(entry.details['status'], 'TODO')

    def test_history_newest_first(self):
        task = self.create_task()
        task_service.update(task.id, {'title': 'Rewrite docs'}, self.member.id)
        page = task_service.get_history(task.id)
        self.assertEqual([e.action for e in page['data']], ['UPDATE', 'CREATE'])


class AssigneeValidationTest(ProjectFixtureMixin, TestCase):
    def assertRejected(self, assignee_id, reason):
        with self.assertRaises(InvalidAssignee) as ctx:
            task_service.validate_assignee(self.project.id, assignee_id)
        self.assertEqual(ctx.exception.reason, reason)
        return ctx.exception

    def test_project_member_and_any_admin_accepted(self):
        task_service.validate_assignee(self.project.id, self.member.id)
        task_service.validate_assignee(self.project.id, self.admin.id)
        task_service.validate_assignee(self.project.id, None)

    def test_viewer_rejected(self):
        exc = self.assertRejected(self.viewer.id, InvalidAssignee.IS_VIEWER)
        self.assertEqual(exc.error_code, ErrorCodes.VIEWER_CANNOT_BE_ASSIGNED)

    def test_non_member_rejected(self):
        exc = self.assertRejected(self.outsider.id, InvalidAssignee.NOT_IN_PROJECT)
        self.assertEqual(exc.error_code, ErrorCodes.ASSIGNEE_NOT_IN_PROJECT)

    def test_unknown_user_rejected(self):
        exc = self.assertRejected(uuid.uuid4(), InvalidAssignee.NOT_FOUND)
        self.assertEqual(exc.error_code, ErrorCodes.ASSIGNEE_NOT_FOUND)

    def test_create_and_update_validate_assignee(self):
        with self.assertRaises(InvalidAssignee):
            self.create_task(title='For the viewer', assignee_id=self.viewer.id)
        self.assertFalse(Task.objects.filter(title='For the viewer').exists())

        task = self.create_task()
        with self.assertRaises(InvalidAssignee):
            task_service.update(task.id, {'assignee_id': self.outsider.id}, self.member.id)
        task.refresh_from_db()
        self.assertIsNone(task.assignee_id)
        self.assertEqual(task_log(task.id).count(), 1)


class TaskListingTest(ProjectFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        base = timezone.now() - datetime.timedelta(days=1)
        rows = [
            ('Old todo', Task.Status.TODO, 0),
            ('New todo', Task.Status.TODO, 2),
            ('Doing', Task.Status.IN_PROGRESS, 3),
            ('Finished', Task.Status.DONE, 4),
        ]
        for title, task_status, minutes in rows:
            task = Task.objects.create(
                title=title, status=task_status, project=self.project, reporter=self.member,
                description='searchable body' if title == 'Doing' else None,
                assignee=self.member if task_status == Task.Status.TODO else None,
            )
            Task.objects.filter(pk=task.pk).update(created_at=base + datetime.timedelta(minutes=minutes))
        Task.objects.create(title='Elsewhere', project=Project.objects.create(name='Gemini'))

    def titles(self, filters=None):
        return [t.title for t in task_service.get_by_project(self.project.id, filters=filters)['data']]

    def test_board_order(self):
        self.assertEqual(self.titles(), ['New todo', 'Old todo', 'Doing', 'Finished'])

    def test_status_filter(self):
        self.assertEqual(self.titles({'status': 'DONE'}), ['Finished'])

    def test_assignee_filter(self):
        self.assertEqual(self.titles({'assignee_id': str(self.member.id)}), ['New todo', 'Old todo'])

    def test_search_matches_title_or_description(self):
        self.assertEqual(self.titles({'search': 'FINISH'}), ['Finished'])
        self.assertEqual(self.titles({'search': 'Searchable'}), ['Doing'])

    def test_pagination(self):
        page = task_service.get_by_project(self.project.id, page=2, page_size=3)
        self.assertEqual([t.title for t in page['data']], ['Finished'])
        self.assertEqual(page['meta'], {'total': 4, 'page': 2, 'page_size': 3, 'total_pages': 2})


class ProjectAnalyticsTest(ProjectFixtureMixin, TestCase):
    def add_task(self, task_status=Task.Status.TODO, due_date=None, hours_to_complete=None):
        task = Task.objects.create(title='Task', status=task_status, due_date=due_date, project=self.project)
        if hours_to_complete is not None:
            created = timezone.now() - datetime.timedelta(days=30)
            Task.objects.filter(pk=task.pk).update(
                created_at=created, completed_at=created + datetime.timedelta(hours=hours_to_complete),
            )
        return task

    def test_empty_project(self):
        analytics = analytics_service.get_project_analytics(self.project.id)
        self.assertEqual(analytics['tasks_by_status'], {'TODO': 0, 'IN_PROGRESS': 0, 'DONE': 0})
        self.assertEqual(analytics['overdue_count'], 0)
        self.assertEqual(analytics['overdue_tasks'], [])
        self.assertIsNone(analytics['avg_completion_time_hours'])
        self.assertEqual(
            analytics['completion_time_distribution'],
            {'< 1 Day': 0, '1-3 Days': 0, '3-7 Days': 0, '> 7 Days': 0},
        )

    def test_figures(self):
        now = timezone.now()
        self.add_task(Task.Status.DONE, hours_to_complete=12)
        self.add_task(Task.Status.DONE, hours_to_complete=48)
        self.add_task(Task.Status.DONE, due_date=now - datetime.timedelta(days=3), hours_to_complete=24)
        self.add_task(Task.Status.IN_PROGRESS, due_date=now - datetime.timedelta(days=1))
        self.add_task(Task.Status.TODO, due_date=now - datetime.timedelta(days=2))
        self.add_task(Task.Status.TODO, due_date=now + datetime.timedelta(days=2))

        analytics = analytics_service.get_project_analytics(self.project.id, now=now)

        self.assertEqual(analytics['tasks_by_status'], {'TODO': 2, 'IN_PROGRESS': 1, 'DONE': 3})
        self.assertEqual(analytics['overdue_count'], 2)
        self.assertEqual([t.status for t in analytics['overdue_tasks']], ['TODO', 'IN_PROGRESS'])
        self.assertEqual(analytics['avg_completion_time_hours'], 28.0)
        self.assertEqual(
            analytics['completion_time_distribution'],
            {'< 1 Day': 1, '1-3 Days': 2, '3-7 Days': 0, '> 7 Days': 0},
        )

    def test_overdue_list_capped_at_five(self):
        now = timezone.now()
        for days in range(1, 8):
            self.add_task(due_date=now - datetime.timedelta(days=days))
        analytics = analytics_service.get_project_analytics(self.project.id, now=now)
        self.assertEqual(analytics['overdue_count'], 7)
        self.assertEqual(len(analytics['overdue_tasks']), 5)
        due_dates = [t.due_date for t in analytics['overdue_tasks']]
        self.assertEqual(due_dates, sorted(due_dates))


class TaskViewTest(ProjectFixtureMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.task = self.create_task()
        self.list_url = f'/api/projects/{self.project.id}/tasks/'
        self.detail_url = f'/api/tasks/{self.task.id}/'

    def test_member_creates_task(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.post(
            self.list_url, {'title': 'Ship it', 'assignee_id': str(self.member.id)}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['reporter']['email'], 'member@example.com')
        self.assertEqual(response.data['status'], 'TODO')

    def test_viewer_cannot_write(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(self.list_url, {'title': 'Sneaky'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], ErrorCodes.WRITE_ACCESS_REQUIRED)

        response = self.client.patch(self.detail_url, {'title': 'Sneaky'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.assertEqual(self.client.get(self.detail_url).status_code, status.HTTP_200_OK)

    def test_outsider_cannot_read(self):
        self.client.force_authenticate(user=self.outsider)
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], ErrorCodes.PROJECT_ACCESS_DENIED)

    def test_invalid_assignee_codes(self):
        self.client.force_authenticate(user=self.member)
        cases = [
            (self.viewer.id, ErrorCodes.VIEWER_CANNOT_BE_ASSIGNED),
            (self.outsider.id, ErrorCodes.ASSIGNEE_NOT_IN_PROJECT),
            (uuid.uuid4(), ErrorCodes.ASSIGNEE_NOT_FOUND),
        ]
        for assignee_id, code in cases:
            response = self.client.post(
                self.list_url, {'title': 'Assigned', 'assignee_id': str(assignee_id)}, format='json',
            )
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data['code'], code)

    def test_admin_without_membership_has_full_access(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.patch(self.detail_url, {'status': 'DONE'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['completed_at'])

    def test_missing_task_is_404(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.get(f'/api/tasks/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], ErrorCodes.TASK_NOT_FOUND)

    def test_tasks_of_missing_project_is_404(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(f'/api/projects/{uuid.uuid4()}/tasks/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], ErrorCodes.PROJECT_NOT_FOUND)

    def test_list_with_filters(self):
        self.create_task(title='Another one')
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get(self.list_url, {'search': 'another', 'page_size': 10})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['title'] for t in response.data['data']], ['Another one'])
        self.assertEqual(response.data['meta']['total'], 1)

    def test_invalid_status_filter(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.get(self.list_url, {'status': 'BLOCKED'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], ErrorCodes.INVALID_INPUT)

    def test_delete_task(self):
        self.client.force_authenticate(user=self.member)
        self.assertEqual(self.client.delete(self.detail_url).status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get(self.detail_url).status_code, status.HTTP_404_NOT_FOUND)

    def test_task_history(self):
        self.client.force_authenticate(user=self.member)
        self.client.patch(self.detail_url, {'title': 'Rewrite docs'}, format='json')
        response = self.client.get(f'{self.detail_url}history/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e['action'] for e in response.data['data']], ['UPDATE', 'CREATE'])
        self.assertEqual(response.data['data'][0]['details']['title']['new'], 'Rewrite docs')

    def test_analytics_route(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get(f'/api/projects/{self.project.id}/analytics/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['tasks_by_status']['TODO'], 1)
        self.assertIsNone(response.data['avg_completion_time_hours'])

        self.client.force_authenticate(user=self.admin)
        response = self.client.get(f'/api/projects/{uuid.uuid4()}/analytics/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
