# activity/diff.py
"""
Field-level change detection for audited entities.

Values are compared by type, never through their string forms: two datetimes
are equal when they denote the same instant, two ids are equal when they name
the same UUID whether held as ``UUID`` or ``str``, and ``None`` only equals
``None``. Everything that ends up in an audit row goes through ``to_json`` so
every entity type is serialized the same way.
"""
import datetime
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone
from django.utils.dateparse import parse_datetime

_encoder = DjangoJSONEncoder()


def to_json(value):
    """Render a model value as the JSON-safe form stored in audit details."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return _encoder.default(value)


@dataclass(frozen=True)
class Change:
    old: Any
    new: Any

    def as_dict(self):
        return {'old': to_json(self.old), 'new': to_json(self.new)}


def _as_instant(value):
    if isinstance(value, str):
        value = parse_datetime(value)
    if not isinstance(value, datetime.datetime):
        return None
    if timezone.is_naive(value):
        value = timezone.make_aware(value, datetime.timezone.utc)
    return value


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def values_equal(old, new) -> bool:
    if old is None or new is None:
        return old is None and new is None
    if isinstance(old, datetime.datetime) or isinstance(new, datetime.datetime):
        old_instant, new_instant = _as_instant(old), _as_instant(new)
        if old_instant is None or new_instant is None:
            return False
        return old_instant == new_instant
    if isinstance(old, uuid.UUID) or isinstance(new, uuid.UUID):
        old_id, new_id = _as_uuid(old), _as_uuid(new)
        return old_id is not None and old_id == new_id
    return old == new


def snapshot(instance, fields: Iterable[str]) -> Dict[str, Any]:
    """Current values of ``fields`` on a model instance (attnames, e.g. ``assignee_id``)."""
    return {name: getattr(instance, name) for name in fields}


def compute_diff(current: Dict[str, Any], changes: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Change]:
    """
    Compare submitted ``changes`` against ``current`` values.

    Only names listed in ``fields`` and present in ``changes`` are considered;
    a field whose submitted value equals the current one is left out.
    """
    diff = {}
    for name in fields:
        if name not in changes:
            continue
        old, new = current.get(name), changes[name]
        if not values_equal(old, new):
            diff[name] = Change(old, new)
    return diff


def diff_details(diff: Dict[str, Change]) -> Dict[str, Dict[str, Any]]:
    return {name: change.as_dict() for name, change in diff.items()}
