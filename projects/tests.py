import uuid
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.rbac import GlobalRole, ProjectRole
from activity.models import AuditLog
from projects.models import Project, ProjectMember, ProjectMemberQuerySet
from projects.services import project_service
from tasks.models import Task
from tracker.exceptions import AlreadyExists, ErrorCodes, NotFound, TransactionFailure

User = get_user_model()


def make_user(email, role=GlobalRole.MEMBER, name=None):
    return User.objects.create_user(email=email, password='testpass123', name=name or email.split('@')[0], role=role)


def project_log(project_id):
    return AuditLog.objects.filter(entity_type=AuditLog.EntityType.PROJECT, entity_id=project_id)


class ProjectServiceTest(TestCase):
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.member = make_user('member@example.com')
        self.project = project_service.create('Apollo', 'Moon landing', self.admin.id)

    def test_create_writes_audit_entry(self):
        entry = project_log(self.project.id).get()
        self.assertEqual(entry.action, AuditLog.Action.CREATE)
        self.assertEqual(entry.actor_id, self.admin.id)
        self.assertEqual(entry.details, {'name': 'Apollo', 'description': 'Moon landing'})

    def test_update_records_only_changed_fields(self):
        project_service.update(self.project.id, {'name': 'Artemis', 'description': 'Moon landing'}, self.admin.id)
        self.project.refresh_from_db()
        self.assertEqual(self.project.name, 'Artemis')
        entry = project_log(self.project.id).filter(action=AuditLog.Action.UPDATE).get()
        self.assertEqual(entry.details, {'name': {'old': 'Apollo', 'new': 'Artemis'}})

    def test_noop_update_writes_no_audit(self):
        before = project_log(self.project.id).count()
        project_service.update(self.project.id, {'name': 'Apollo', 'description': 'Moon landing'}, self.admin.id)
        project_service.update(self.project.id, {}, self.admin.id)
        self.assertEqual(project_log(self.project.id).count(), before)

    def test_update_missing_project(self):
        with self.assertRaises(NotFound) as ctx:
            project_service.update(uuid.uuid4(), {'name': 'Nope'}, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.PROJECT_NOT_FOUND)

    def test_delete_cascades_and_keeps_snapshot(self):
        for title in ('One', 'Two', 'Three'):
            Task.objects.create(title=title, project=self.project, reporter=self.admin)
        project_id = self.project.id

        project_service.delete(project_id, self.admin.id)

        self.assertFalse(Project.objects.filter(pk=project_id).exists())
        self.assertEqual(Task.objects.filter(project_id=project_id).count(), 0)
        entry = project_log(project_id).get(action=AuditLog.Action.DELETE)
        self.assertEqual(entry.details['name'], 'Apollo')
        self.assertEqual(entry.details['description'], 'Moon landing')

    def test_failed_audit_rolls_back_create(self):
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                project_service.create('Gemini', None, self.admin.id)
        self.assertFalse(Project.objects.filter(name='Gemini').exists())

    def test_failed_audit_rolls_back_delete(self):
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                project_service.delete(self.project.id, self.admin.id)
        self.assertTrue(Project.objects.filter(pk=self.project.id).exists())

    def test_get_by_id_includes_members_and_task_count(self):
        project_service.add_member(self.project.id, self.member.id, ProjectRole.MEMBER, self.admin.id)
        Task.objects.create(title='Task', project=self.project, reporter=self.admin)
        project = project_service.get_by_id(self.project.id)
        self.assertEqual(project.task_count, 1)
        self.assertEqual([m.user_id for m in project.members.all()], [self.member.id])


class ProjectMembershipTest(TestCase):
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.user = make_user('user@example.com', name='Uma')
        self.project = project_service.create('Apollo', None, self.admin.id)

    def test_add_member_audits_on_project(self):
        member = project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        entry = project_log(self.project.id).get(action=AuditLog.Action.UPDATE)
        self.assertEqual(entry.details, {
            'member_added': {
                'user_id': str(self.user.id),
                'user_name': 'Uma',
                'user_email': 'user@example.com',
                'project_role': 'MEMBER',
            },
        })
        self.assertEqual(member.project_role, ProjectRole.MEMBER)

    def test_duplicate_member_rejected_and_role_kept(self):
        project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        with self.assertRaises(AlreadyExists) as ctx:
            project_service.add_member(self.project.id, self.user.id, ProjectRole.VIEWER, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.MEMBER_ALREADY_EXISTS)
        self.assertEqual(ProjectMember.objects.role_of(self.project.id, self.user.id), ProjectRole.MEMBER)
        self.assertEqual(project_log(self.project.id).filter(action=AuditLog.Action.UPDATE).count(), 1)

    def test_racing_insert_surfaces_as_conflict(self):
        ProjectMember.objects.create(project=self.project, user=self.user, project_role=ProjectRole.MEMBER)
        # Simulate the pre-check losing the race
        with mock.patch.object(ProjectMemberQuerySet, 'role_of', return_value=None):
            with self.assertRaises(AlreadyExists):
                project_service.add_member(self.project.id, self.user.id, ProjectRole.VIEWER, self.admin.id)
        self.assertEqual(project_log(self.project.id).filter(action=AuditLog.Action.UPDATE).count(), 0)

    def test_add_member_missing_project_or_user(self):
        with self.assertRaises(NotFound) as ctx:
            project_service.add_member(uuid.uuid4(), self.user.id, ProjectRole.MEMBER, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.PROJECT_NOT_FOUND)
        with self.assertRaises(NotFound) as ctx:
            project_service.add_member(self.project.id, uuid.uuid4(), ProjectRole.MEMBER, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.USER_NOT_FOUND)

    def test_update_member_role(self):
        member = project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        project_service.update_member_role(self.project.id, member.id, ProjectRole.VIEWER, self.admin.id)
        self.assertEqual(ProjectMember.objects.role_of(self.project.id, self.user.id), ProjectRole.VIEWER)
        entry = project_log(self.project.id).filter(action=AuditLog.Action.UPDATE).first()
        self.assertEqual(
            entry.details['member_role_changed']['project_role'], {'old': 'MEMBER', 'new': 'VIEWER'},
        )

    def test_same_role_is_a_noop(self):
        member = project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        before = project_log(self.project.id).count()
        project_service.update_member_role(self.project.id, member.id, ProjectRole.MEMBER, self.admin.id)
        self.assertEqual(project_log(self.project.id).count(), before)

    def test_member_of_other_project_not_found(self):
        other = project_service.create('Gemini', None, self.admin.id)
        member = project_service.add_member(other.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        with self.assertRaises(NotFound) as ctx:
            project_service.update_member_role(self.project.id, member.id, ProjectRole.VIEWER, self.admin.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.MEMBER_NOT_FOUND)
        with self.assertRaises(NotFound):
            project_service.remove_member(self.project.id, member.id, self.admin.id)

    def test_remove_member(self):
        member = project_service.add_member(self.project.id, self.user.id, ProjectRole.VIEWER, self.admin.id)
        project_service.remove_member(self.project.id, member.id, self.admin.id)
        self.assertIsNone(ProjectMember.objects.role_of(self.project.id, self.user.id))
        entry = project_log(self.project.id).filter(action=AuditLog.Action.UPDATE).first()
        self.assertEqual(entry.details['member_removed']['project_role'], 'VIEWER')
        self.assertEqual(entry.details['member_removed']['user_email'], 'user@example.com')

    def test_history_newest_first(self):
        member = project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        project_service.remove_member(self.project.id, member.id, self.admin.id)
        page = project_service.get_history(self.project.id)
        self.assertEqual(page['meta']['total'], 3)
        self.assertIn('member_removed', page['data'][0].details)
        self.assertEqual(page['data'][-1].action, AuditLog.Action.CREATE)


class ProjectRollbackTest(TestCase):
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.user = make_user('user@example.com')
        self.project = project_service.create('Apollo', 'Moon landing', self.admin.id)
        self.member = ProjectMember.objects.create(
            project=self.project, user=make_user('crew@example.com'), project_role=ProjectRole.MEMBER,
        )
        self.log_count = project_log(self.project.id).count()

    def failing_audit(self):
        return mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed'))

    def assertNoNewAudit(self):
        self.assertEqual(project_log(self.project.id).count(), self.log_count)

    def test_update(self):
        with self.failing_audit():
            with self.assertRaises(TransactionFailure):
                project_service.update(self.project.id, {'name': 'Artemis'}, self.admin.id)
        self.project.refresh_from_db()
        self.assertEqual(self.project.name, 'Apollo')
        self.assertNoNewAudit()

    def test_add_member(self):
        with self.failing_audit():
            with self.assertRaises(TransactionFailure):
                project_service.add_member(self.project.id, self.user.id, ProjectRole.MEMBER, self.admin.id)
        self.assertIsNone(ProjectMember.objects.role_of(self.project.id, self.user.id))
        self.assertNoNewAudit()

    def test_update_member_role(self):
        with self.failing_audit():
            with self.assertRaises(TransactionFailure):
                project_service.update_member_role(
                    self.project.id, self.member.id, ProjectRole.VIEWER, self.admin.id,
                )
        self.member.refresh_from_db()
        self.assertEqual(self.member.project_role, ProjectRole.MEMBER)
        self.assertNoNewAudit()

    def test_remove_member(self):
        with self.failing_audit():
            with self.assertRaises(TransactionFailure):
                project_service.remove_member(self.project.id, self.member.id, self.admin.id)
        self.assertTrue(ProjectMember.objects.filter(pk=self.member.id).exists())
        self.assertNoNewAudit()

    def test_failed_entity_write_leaves_no_audit(self):
        with mock.patch.object(Project, 'save', side_effect=DatabaseError('update failed')):
            with self.assertRaises(TransactionFailure):
                project_service.update(self.project.id, {'name': 'Artemis'}, self.admin.id)
        self.assertNoNewAudit()

        total = AuditLog.objects.count()
        with mock.patch.object(Project, 'save', side_effect=DatabaseError('insert failed')):
            with self.assertRaises(TransactionFailure):
                project_service.create('Gemini', None, self.admin.id)
        self.assertEqual(AuditLog.objects.count(), total)


class ProjectListingTest(TestCase):
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.member = make_user('member@example.com')

    def test_pagination_math(self):
        for i in range(45):
            Project.objects.create(name=f'Project {i:02d}')
        page = project_service.get_all(self.admin.id, True, page=3, page_size=20)
        self.assertEqual(len(page['data']), 5)
        self.assertEqual(page['meta'], {'total': 45, 'page': 3, 'page_size': 20, 'total_pages': 3})

    def test_non_admin_sees_only_memberships(self):
        visible = Project.objects.create(name='Visible')
        Project.objects.create(name='Hidden')
        ProjectMember.objects.create(project=visible, user=self.member, project_role=ProjectRole.VIEWER)

        page = project_service.get_all(self.member.id, False)
        self.assertEqual([p.name for p in page['data']], ['Visible'])
        self.assertEqual(project_service.get_all(self.admin.id, True)['meta']['total'], 2)


class ProjectViewTest(APITestCase):
    def setUp(self):
        self.admin = make_user('admin@example.com', GlobalRole.ADMIN)
        self.member = make_user('member@example.com')
        self.viewer = make_user('viewer@example.com', GlobalRole.VIEWER)
        self.outsider = make_user('outsider@example.com')
        self.project = project_service.create('Apollo', None, self.admin.id)
        project_service.add_member(self.project.id, self.member.id, ProjectRole.MEMBER, self.admin.id)
        project_service.add_member(self.project.id, self.viewer.id, ProjectRole.VIEWER, self.admin.id)

    def test_only_admin_creates_projects(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.post('/api/projects/', {'name': 'Gemini'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], ErrorCodes.ADMIN_REQUIRED)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/projects/', {'name': 'Gemini'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'Gemini')

    def test_project_name_validation(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/projects/', {'name': 'ab'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data['errors'])

    def test_members_can_read_outsiders_cannot(self):
        url = f'/api/projects/{self.project.id}/'
        for user in (self.admin, self.member, self.viewer):
            self.client.force_authenticate(user=user)
            self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)

        self.client.force_authenticate(user=self.outsider)
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], ErrorCodes.PROJECT_ACCESS_DENIED)

    def test_project_detail_payload(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.get(f'/api/projects/{self.project.id}/')
        self.assertEqual(len(response.data['members']), 2)
        self.assertEqual(response.data['task_count'], 0)

    def test_admin_gets_404_for_missing_project(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(f'/api/projects/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], ErrorCodes.PROJECT_NOT_FOUND)

    def test_member_cannot_update_or_delete(self):
        self.client.force_authenticate(user=self.member)
        url = f'/api/projects/{self.project.id}/'
        self.assertEqual(self.client.put(url, {'name': 'Hijack'}, format='json').status_code, 403)
        self.assertEqual(self.client.delete(url).status_code, 403)

    def test_admin_updates_project(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.put(f'/api/projects/{self.project.id}/', {'name': 'Artemis'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Artemis')

    def test_member_management_routes(self):
        newcomer = make_user('new@example.com')
        self.client.force_authenticate(user=self.admin)
        url = f'/api/projects/{self.project.id}/members/'

        response = self.client.post(url, {'user_id': str(newcomer.id), 'project_role': 'VIEWER'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        member_id = response.data['id']

        response = self.client.post(url, {'user_id': str(newcomer.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.patch(f'{url}{member_id}/', {'project_role': 'MEMBER'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['project_role'], 'MEMBER')

        response = self.client.delete(f'{url}{member_id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

    def test_member_cannot_manage_members(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.post(
            f'/api/projects/{self.project.id}/members/', {'user_id': str(self.outsider.id)}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_history_route(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get(f'/api/projects/{self.project.id}/history/', {'page_size': 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['meta']['total'], 3)
        self.assertEqual(response.data['meta']['total_pages'], 2)
        self.assertEqual(response.data['data'][0]['actor']['email'], 'admin@example.com')
