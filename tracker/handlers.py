# tracker/handlers.py
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .exceptions import ErrorCodes, ServiceError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """DRF exception handler producing ``{status, code, message, metadata}`` bodies."""
    response = exception_handler(exc, context)
    view = context.get('view')
    view_name = view.__class__.__name__ if view is not None else '?'

    if isinstance(exc, ServiceError):
        body = {
            'status': 'error' if exc.status_code >= 500 else 'fail',
            'code': exc.error_code,
            'message': exc.message,
        }
        if exc.metadata:
            body['metadata'] = exc.metadata
        if exc.status_code >= 500:
            logger.error(f"{view_name}: {exc.error_code} {exc.message}", exc_info=exc)
        else:
            logger.info(f"{view_name}: {exc.error_code} {exc.message}")
        response.data = body
        return response

    if isinstance(exc, ValidationError) and response is not None:
        response.data = {
            'status': 'fail',
            'code': ErrorCodes.INVALID_INPUT,
            'message': 'Validation failed',
            'errors': response.data,
        }
        return response

    if response is None:
        logger.error(f"Unexpected error in {view_name}", exc_info=exc)
        message = str(exc) if settings.DEBUG else 'Something went wrong. Please try again later.'
        return Response(
            {'status': 'error', 'code': ErrorCodes.INTERNAL_ERROR, 'message': message},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return response
