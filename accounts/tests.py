import uuid
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.rbac import (
    Action,
    Assignee,
    GlobalRole,
    ProjectRole,
    Reason,
    assignee_decision,
    decide,
    enforce,
)
from accounts.services import user_service
from tracker.exceptions import (
    AlreadyExists,
    ErrorCodes,
    InvalidAssignee,
    NotFound,
    PermissionDenied,
    SelfActionForbidden,
)

User = get_user_model()


class DecideTest(SimpleTestCase):
    def test_read_matrix(self):
        self.assertTrue(decide(GlobalRole.ADMIN, None, Action.READ))
        self.assertTrue(decide(GlobalRole.MEMBER, ProjectRole.MEMBER, Action.READ))
        self.assertTrue(decide(GlobalRole.VIEWER, ProjectRole.VIEWER, Action.READ))
        decision = decide(GlobalRole.MEMBER, None, Action.READ)
        self.assertFalse(decision)
        self.assertEqual(decision.reason, Reason.NOT_A_MEMBER)

    def test_write_task_matrix(self):
        self.assertTrue(decide(GlobalRole.ADMIN, None, Action.WRITE_TASK))
        self.assertTrue(decide(GlobalRole.VIEWER, ProjectRole.MEMBER, Action.WRITE_TASK))
        self.assertEqual(decide(GlobalRole.MEMBER, ProjectRole.VIEWER, Action.WRITE_TASK).reason, Reason.READ_ONLY)
        self.assertEqual(decide(GlobalRole.MEMBER, None, Action.WRITE_TASK).reason, Reason.NOT_A_MEMBER)

    def test_admin_only_actions(self):
        for action in (Action.MANAGE_PROJECT, Action.MANAGE_MEMBERS, Action.MANAGE_USERS):
            self.assertTrue(decide(GlobalRole.ADMIN, None, action))
            # Project membership does not grant administration
            self.assertEqual(decide(GlobalRole.MEMBER, ProjectRole.MEMBER, action).reason, Reason.ADMIN_REQUIRED)
            self.assertEqual(decide(GlobalRole.VIEWER, None, action).reason, Reason.ADMIN_REQUIRED)

    def test_assign_task(self):
        member = Assignee(uuid.uuid4(), GlobalRole.MEMBER, ProjectRole.MEMBER)
        viewer = Assignee(uuid.uuid4(), GlobalRole.MEMBER, ProjectRole.VIEWER)
        outsider = Assignee(uuid.uuid4(), GlobalRole.MEMBER, None)
        admin = Assignee(uuid.uuid4(), GlobalRole.ADMIN, None)
        unknown = Assignee(uuid.uuid4(), None, None)

        self.assertTrue(decide(GlobalRole.MEMBER, ProjectRole.MEMBER, Action.ASSIGN_TASK, assignee=member))
        self.assertTrue(decide(GlobalRole.ADMIN, None, Action.ASSIGN_TASK, assignee=admin))
        self.assertEqual(
            decide(GlobalRole.ADMIN, None, Action.ASSIGN_TASK, assignee=viewer).reason,
            Reason.ASSIGNEE_IS_VIEWER,
        )
        self.assertEqual(
            decide(GlobalRole.MEMBER, ProjectRole.MEMBER, Action.ASSIGN_TASK, assignee=outsider).reason,
            Reason.ASSIGNEE_NOT_IN_PROJECT,
        )
        self.assertEqual(
            decide(GlobalRole.MEMBER, ProjectRole.MEMBER, Action.ASSIGN_TASK, assignee=unknown).reason,
            Reason.ASSIGNEE_NOT_FOUND,
        )
        # A viewer cannot assign even an eligible user
        self.assertEqual(
            decide(GlobalRole.MEMBER, ProjectRole.VIEWER, Action.ASSIGN_TASK, assignee=member).reason,
            Reason.READ_ONLY,
        )

    def test_self_protection_applies_to_admins(self):
        actor = uuid.uuid4()
        decision = decide(GlobalRole.ADMIN, None, Action.UPDATE_USER_ROLE, actor_id=actor, target_id=actor)
        self.assertEqual(decision.reason, Reason.SELF_ROLE_CHANGE)
        decision = decide(GlobalRole.ADMIN, None, Action.DELETE_USER, actor_id=actor, target_id=str(actor))
        self.assertEqual(decision.reason, Reason.SELF_DELETE)
        self.assertTrue(decide(GlobalRole.ADMIN, None, Action.DELETE_USER, actor_id=actor, target_id=uuid.uuid4()))

    def test_assignee_decision_without_assignee(self):
        self.assertEqual(assignee_decision(None).reason, Reason.ASSIGNEE_NOT_FOUND)


class EnforceTest(SimpleTestCase):
    def test_allowed_decision_is_silent(self):
        enforce(decide(GlobalRole.ADMIN, None, Action.READ))

    def test_error_kinds(self):
        with self.assertRaises(PermissionDenied) as ctx:
            enforce(decide(GlobalRole.MEMBER, ProjectRole.VIEWER, Action.WRITE_TASK), project_id='p1')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.WRITE_ACCESS_REQUIRED)
        self.assertEqual(ctx.exception.metadata, {'project_id': 'p1'})

        with self.assertRaises(PermissionDenied) as ctx:
            enforce(decide(GlobalRole.MEMBER, None, Action.READ))
        self.assertEqual(ctx.exception.error_code, ErrorCodes.PROJECT_ACCESS_DENIED)

        with self.assertRaises(InvalidAssignee) as ctx:
            enforce(assignee_decision(Assignee(uuid.uuid4(), GlobalRole.MEMBER, ProjectRole.VIEWER)))
        self.assertEqual(ctx.exception.reason, InvalidAssignee.IS_VIEWER)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.VIEWER_CANNOT_BE_ASSIGNED)

        actor = uuid.uuid4()
        with self.assertRaises(SelfActionForbidden) as ctx:
            enforce(decide(GlobalRole.ADMIN, None, Action.DELETE_USER, actor_id=actor, target_id=actor))
        self.assertEqual(ctx.exception.error_code, ErrorCodes.SELF_DELETE)


class UserModelTest(TestCase):
    def test_migrations_match_models(self):
        # Exits with SystemExit when a model change has no migration
        call_command('makemigrations', '--check', '--dry-run', stdout=StringIO())

    def test_create_user_defaults_to_viewer(self):
        user = User.objects.create_user(email='test@example.com', password='testpass123', name='Test')
        self.assertEqual(user.role, GlobalRole.VIEWER)
        self.assertFalse(user.is_admin)
        self.assertTrue(user.check_password('testpass123'))

    def test_create_superuser_is_admin(self):
        user = User.objects.create_superuser(email='root@example.com', password='testpass123', name='Root')
        self.assertEqual(user.role, GlobalRole.ADMIN)
        self.assertTrue(user.is_staff)

    def test_email_uniqueness(self):
        User.objects.create_user(email='test@example.com', password='testpass123', name='Test')
        with self.assertRaises(Exception):
            User.objects.create_user(email='test@example.com', password='testpass123', name='Other')


class UserServiceTest(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            email='admin@example.com', password='testpass123', name='Admin', role=GlobalRole.ADMIN,
        )
        self.member = User.objects.create_user(
            email='member@example.com', password='testpass123', name='Member', role=GlobalRole.MEMBER,
        )

    def test_admin_cannot_change_own_role_even_to_same_value(self):
        with self.assertRaises(SelfActionForbidden) as ctx:
            user_service.update(self.admin, self.admin.id, {'role': GlobalRole.ADMIN})
        self.assertEqual(ctx.exception.error_code, ErrorCodes.SELF_ROLE_CHANGE)

    def test_admin_can_rename_self(self):
        user = user_service.update(self.admin, self.admin.id, {'name': 'Renamed'})
        self.assertEqual(user.name, 'Renamed')

    def test_admin_changes_other_role(self):
        user = user_service.update(self.admin, self.member.id, {'role': GlobalRole.VIEWER})
        user.refresh_from_db()
        self.assertEqual(user.role, GlobalRole.VIEWER)

    def test_non_admin_cannot_manage_users(self):
        with self.assertRaises(PermissionDenied):
            user_service.update(self.member, self.admin.id, {'name': 'Hijacked'})

    def test_self_delete_forbidden(self):
        with self.assertRaises(SelfActionForbidden):
            user_service.delete(self.admin, self.admin.id)
        self.assertTrue(User.objects.filter(pk=self.admin.id).exists())

    def test_delete_missing_user(self):
        with self.assertRaises(NotFound):
            user_service.delete(self.admin, uuid.uuid4())

    def test_create_duplicate_email(self):
        with self.assertRaises(AlreadyExists) as ctx:
            user_service.create('MEMBER@example.com', 'Dup', 'testpass123')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.EMAIL_ALREADY_EXISTS)

    def test_list_search_and_sort(self):
        User.objects.create_user(email='zed@example.com', password='testpass123', name='Zed')
        page = user_service.list(search='example', sort_by='name', sort_order='asc')
        self.assertEqual([u.name for u in page['data']], ['Admin', 'Member', 'Zed'])
        page = user_service.list(search='zed')
        self.assertEqual(page['meta']['total'], 1)


class AuthViewTest(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='test@example.com', password='testpass123', name='Test')

    def test_user_login_success(self):
        data = {'email': 'test@example.com', 'password': 'testpass123'}
        response = self.client.post('/api/auth/login/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access_token', response.data)
        self.assertIn('refresh_token', response.data)
        self.assertEqual(response.data['user']['email'], 'test@example.com')

    def test_user_login_invalid_credentials(self):
        data = {'email': 'test@example.com', 'password': 'wrongpass'}
        response = self.client.post('/api/auth/login/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_with_bearer_token(self):
        login = self.client.post(
            '/api/auth/login/', {'email': 'test@example.com', 'password': 'testpass123'}, format='json',
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['access_token']}")
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], str(self.user.id))
        self.assertEqual(response.data['role'], GlobalRole.VIEWER)

    def test_me_requires_authentication(self):
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class UserViewTest(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            email='admin@example.com', password='testpass123', name='Admin', role=GlobalRole.ADMIN,
        )
        self.member = User.objects.create_user(
            email='member@example.com', password='testpass123', name='Member', role=GlobalRole.MEMBER,
        )

    def test_list_users_requires_admin(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.get('/api/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], ErrorCodes.ADMIN_REQUIRED)

    def test_list_users_paginated(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/users/', {'page_size': 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']), 1)
        self.assertEqual(response.data['meta']['total'], 2)
        self.assertEqual(response.data['meta']['total_pages'], 2)

    def test_page_size_bounds(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/users/', {'page_size': 101})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], ErrorCodes.INVALID_INPUT)
        response = self.client.get('/api/users/', {'page': 0})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_user(self):
        self.client.force_authenticate(user=self.admin)
        data = {'email': 'new@example.com', 'name': 'New', 'password': 'testpass123', 'role': 'MEMBER'}
        response = self.client.post('/api/users/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], GlobalRole.MEMBER)
        self.assertNotIn('password', response.data)

    def test_create_user_duplicate_email(self):
        self.client.force_authenticate(user=self.admin)
        data = {'email': 'member@example.com', 'name': 'Dup', 'password': 'testpass123'}
        response = self.client.post('/api/users/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], ErrorCodes.EMAIL_ALREADY_EXISTS)

    def test_self_role_change_rejected(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.patch(f'/api/users/{self.admin.id}/', {'role': 'ADMIN'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], ErrorCodes.SELF_ROLE_CHANGE)

    def test_self_delete_rejected(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(f'/api/users/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], ErrorCodes.SELF_DELETE)

    def test_delete_other_user(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(f'/api/users/{self.member.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(User.objects.filter(pk=self.member.id).exists())

    def test_get_missing_user(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(f'/api/users/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], ErrorCodes.USER_NOT_FOUND)
