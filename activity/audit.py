# activity/audit.py
"""
Audit log writer.

Services open one transaction with ``atomic_write`` and, inside it, change the
entity and call ``record`` on the same connection alias. Either both rows
land or neither does. ``record`` never opens a transaction of its own.
"""
import logging
from contextlib import contextmanager

from django.db import DEFAULT_DB_ALIAS, DatabaseError, transaction
from django.db.transaction import TransactionManagementError

from tracker.exceptions import TransactionFailure
from tracker.pagination import paginate

from .diff import to_json
from .models import AuditLog

logger = logging.getLogger(__name__)


@contextmanager
def atomic_write(using=DEFAULT_DB_ALIAS):
    """
    Run an entity write and its audit entry as one unit.

    Yields the connection alias to hand to ``record``. A database error inside
    the block rolls everything back and is raised as ``TransactionFailure``;
    business errors raised inside the block also roll back and pass through
    unchanged.
    """
    try:
        with transaction.atomic(using=using):
            yield using
    except DatabaseError as exc:
        logger.error(f"Transaction on '{using}' rolled back: {exc}")
        raise TransactionFailure() from exc


def record(using, entity_type, entity_id, action, actor_id, details=None):
    """Append one audit entry inside the caller's open transaction."""
    if not transaction.get_connection(using).in_atomic_block:
        raise TransactionManagementError(
            'Audit entries must be written inside the transaction of the change they describe.'
        )
    if action == AuditLog.Action.UPDATE and not details:
        raise ValueError('An UPDATE audit entry needs at least one recorded change.')

    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        details=to_json(details) if details is not None else None,
    )
    entry.save(using=using)
    logger.debug(f"Audit {action} {entity_type}:{entity_id} by {actor_id}")
    return entry


def history(entity_type, entity_id, page=1, page_size=None):
    """Audit entries for one entity, newest first."""
    queryset = (
        AuditLog.objects
        .for_entity(entity_type, entity_id)
        .prefetch_related('actor')
        .order_by('-timestamp', '-id')
    )
    return paginate(queryset, page=page, page_size=page_size)
