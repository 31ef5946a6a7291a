import datetime
import uuid
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.transaction import TransactionManagementError
from django.test import SimpleTestCase, TestCase

from activity import audit
from activity.diff import Change, compute_diff, diff_details, snapshot, to_json, values_equal
from activity.models import AuditLog, AuditLogImmutableError
from activity.serializers import AuditLogSerializer
from tracker.exceptions import TransactionFailure

User = get_user_model()


class ValuesEqualTest(SimpleTestCase):
    def test_none_is_not_the_string_none(self):
        self.assertFalse(values_equal(None, 'None'))
        self.assertFalse(values_equal('None', None))
        self.assertTrue(values_equal(None, None))

    def test_datetimes_compare_as_instants(self):
        utc = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
        plus_two = utc.astimezone(datetime.timezone(datetime.timedelta(hours=2)))
        self.assertTrue(values_equal(utc, plus_two))
        self.assertTrue(values_equal(utc, '2024-05-01T12:00:00Z'))
        self.assertFalse(values_equal(utc, utc + datetime.timedelta(seconds=1)))
        self.assertFalse(values_equal(utc, 'not a date'))

    def test_uuid_against_string(self):
        value = uuid.uuid4()
        self.assertTrue(values_equal(value, str(value)))
        self.assertTrue(values_equal(str(value).upper(), value))
        self.assertFalse(values_equal(value, uuid.uuid4()))
        self.assertFalse(values_equal(value, 'garbage'))

    def test_exact_equality_otherwise(self):
        self.assertTrue(values_equal('High', 'High'))
        self.assertFalse(values_equal('1', 1))
        self.assertFalse(values_equal('', None))


class ComputeDiffTest(SimpleTestCase):
    fields = ('title', 'status', 'assignee_id')

    def test_only_changed_and_submitted_fields(self):
        assignee = uuid.uuid4()
        current = {'title': 'Write docs', 'status': 'TODO', 'assignee_id': assignee}
        diff = compute_diff(current, {'title': 'Write docs', 'status': 'DONE', 'assignee_id': str(assignee)}, self.fields)
        self.assertEqual(diff, {'status': Change('TODO', 'DONE')})

    def test_ignores_unlisted_fields(self):
        diff = compute_diff({'title': 'a'}, {'reporter_id': uuid.uuid4()}, self.fields)
        self.assertEqual(diff, {})

    def test_clearing_a_value_is_a_change(self):
        assignee = uuid.uuid4()
        diff = compute_diff({'assignee_id': assignee}, {'assignee_id': None}, self.fields)
        self.assertEqual(diff_details(diff), {'assignee_id': {'old': str(assignee), 'new': None}})

    def test_details_are_json_ready(self):
        when = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
        rendered = to_json({'due_date': when, 'ids': [uuid.UUID(int=1)]})
        self.assertEqual(rendered['due_date'], '2024-05-01T12:00:00Z')
        self.assertEqual(rendered['ids'], ['00000000-0000-0000-0000-000000000001'])

    def test_snapshot_reads_attnames(self):
        obj = mock.Mock(title='t', status='TODO', assignee_id=None)
        self.assertEqual(snapshot(obj, self.fields), {'title': 't', 'status': 'TODO', 'assignee_id': None})


class AuditWriterTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='actor@example.com', password='testpass123', name='Actor')
        self.entity_id = uuid.uuid4()

    def test_record_refuses_to_run_outside_a_transaction(self):
        # TestCase wraps each test in atomic, so leave it explicitly
        with mock.patch.object(
            transaction.get_connection(), 'in_atomic_block', False,
        ):
            with self.assertRaises(TransactionManagementError):
                audit.record('default', AuditLog.EntityType.TASK, self.entity_id, AuditLog.Action.CREATE, self.user.id)

    def test_update_needs_details(self):
        with audit.atomic_write() as using:
            with self.assertRaises(ValueError):
                audit.record(using, AuditLog.EntityType.TASK, self.entity_id, AuditLog.Action.UPDATE, self.user.id, {})

    def test_database_error_becomes_transaction_failure(self):
        with self.assertRaises(TransactionFailure):
            with audit.atomic_write():
                raise DatabaseError('disk full')

    def test_entity_and_audit_roll_back_together(self):
        with mock.patch.object(AuditLog, 'save', side_effect=DatabaseError('audit insert failed')):
            with self.assertRaises(TransactionFailure):
                with audit.atomic_write() as using:
                    User.objects.create_user(email='ghost@example.com', password='testpass123', name='Ghost')
                    audit.record(
                        using, AuditLog.EntityType.PROJECT, self.entity_id, AuditLog.Action.CREATE, self.user.id,
                    )
        self.assertFalse(User.objects.filter(email='ghost@example.com').exists())
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_history_newest_first(self):
        with audit.atomic_write() as using:
            for action in (AuditLog.Action.CREATE, AuditLog.Action.UPDATE, AuditLog.Action.DELETE):
                audit.record(
                    using, AuditLog.EntityType.TASK, self.entity_id, action, self.user.id, {'step': action},
                )
            audit.record(using, AuditLog.EntityType.TASK, uuid.uuid4(), AuditLog.Action.CREATE, self.user.id)

        page = audit.history(AuditLog.EntityType.TASK, self.entity_id, page=1, page_size=2)
        self.assertEqual([entry.action for entry in page['data']], ['DELETE', 'UPDATE'])
        self.assertEqual(page['meta'], {'total': 3, 'page': 1, 'page_size': 2, 'total_pages': 2})


class AuditLogImmutabilityTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='actor@example.com', password='testpass123', name='Actor')
        with audit.atomic_write() as using:
            self.entry = audit.record(
                using, AuditLog.EntityType.PROJECT, uuid.uuid4(), AuditLog.Action.CREATE, self.user.id,
                {'name': 'Apollo'},
            )

    def test_cannot_update_instance(self):
        self.entry.details = {'name': 'Changed'}
        with self.assertRaises(AuditLogImmutableError):
            self.entry.save()

    def test_cannot_delete_instance(self):
        with self.assertRaises(AuditLogImmutableError):
            self.entry.delete()

    def test_cannot_bulk_update_or_delete(self):
        with self.assertRaises(AuditLogImmutableError):
            AuditLog.objects.all().update(action=AuditLog.Action.DELETE)
        with self.assertRaises(AuditLogImmutableError):
            AuditLog.objects.filter(pk=self.entry.pk).delete()
        self.assertEqual(AuditLog.objects.get(pk=self.entry.pk).details, {'name': 'Apollo'})

    def test_entry_survives_actor_deletion(self):
        actor_id = self.user.id
        self.user.delete()
        entry = AuditLog.objects.get(pk=self.entry.pk)
        self.assertEqual(entry.actor_id, actor_id)
        self.assertIsNone(entry.safe_actor)
        data = AuditLogSerializer(entry).data
        self.assertIsNone(data['actor'])
        self.assertEqual(str(data['actor_id']), str(actor_id))
