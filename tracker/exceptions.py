# tracker/exceptions.py
"""
Error taxonomy shared by the services and the API layer.

Every business error is an ``APIException`` subclass so DRF renders it with
the right status code; ``error_code`` is the machine-readable identifier the
client switches on and ``metadata`` carries the ids involved.
"""
import uuid

from rest_framework import status
from rest_framework.exceptions import APIException


class ErrorCodes:
    # Authorization
    INSUFFICIENT_PERMISSIONS = 'ERR_AUTHZ_001'
    PROJECT_ACCESS_DENIED = 'ERR_AUTHZ_003'
    ADMIN_REQUIRED = 'ERR_AUTHZ_004'
    WRITE_ACCESS_REQUIRED = 'ERR_AUTHZ_005'

    # Projects
    PROJECT_NOT_FOUND = 'ERR_PROJECT_001'
    MEMBER_ALREADY_EXISTS = 'ERR_PROJECT_003'
    MEMBER_NOT_FOUND = 'ERR_PROJECT_004'

    # Tasks
    TASK_NOT_FOUND = 'ERR_TASK_001'
    VIEWER_CANNOT_BE_ASSIGNED = 'ERR_TASK_003'
    ASSIGNEE_NOT_FOUND = 'ERR_TASK_004'
    ASSIGNEE_NOT_IN_PROJECT = 'ERR_TASK_005'

    # Users
    USER_NOT_FOUND = 'ERR_USER_001'
    EMAIL_ALREADY_EXISTS = 'ERR_USER_002'
    SELF_ROLE_CHANGE = 'ERR_USER_004'
    SELF_DELETE = 'ERR_USER_005'

    # Validation / system
    INVALID_INPUT = 'ERR_VALIDATION_001'
    INTERNAL_ERROR = 'ERR_SYSTEM_001'
    DATABASE_ERROR = 'ERR_SYSTEM_002'


def _jsonable(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class ServiceError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'error'
    error_code = ErrorCodes.INTERNAL_ERROR

    def __init__(self, detail=None, error_code=None, metadata=None):
        super().__init__(detail=detail)
        if error_code is not None:
            self.error_code = error_code
        self.metadata = _jsonable(metadata or {})

    @property
    def message(self):
        return str(self.detail)


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'


class AlreadyExists(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource already exists.'
    default_code = 'already_exists'


class PermissionDenied(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'permission_denied'
    error_code = ErrorCodes.INSUFFICIENT_PERMISSIONS


class InvalidAssignee(ServiceError):
    NOT_FOUND = 'not_found'
    NOT_IN_PROJECT = 'not_in_project'
    IS_VIEWER = 'is_viewer'

    _codes = {
        NOT_FOUND: ErrorCodes.ASSIGNEE_NOT_FOUND,
        NOT_IN_PROJECT: ErrorCodes.ASSIGNEE_NOT_IN_PROJECT,
        IS_VIEWER: ErrorCodes.VIEWER_CANNOT_BE_ASSIGNED,
    }
    _messages = {
        NOT_FOUND: 'Assignee not found.',
        NOT_IN_PROJECT: 'Assignee is not a member of this project.',
        IS_VIEWER: 'Cannot assign tasks to view-only users. Viewers have read-only access.',
    }

    default_code = 'invalid_assignee'

    def __init__(self, reason, metadata=None):
        self.reason = reason
        super().__init__(
            detail=self._messages[reason],
            error_code=self._codes[reason],
            metadata=metadata,
        )


class SelfActionForbidden(ServiceError):
    default_detail = 'You cannot perform this action on your own account.'
    default_code = 'self_action_forbidden'


class TransactionFailure(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'The operation could not be completed. No changes were saved.'
    default_code = 'transaction_failure'
    error_code = ErrorCodes.DATABASE_ERROR
