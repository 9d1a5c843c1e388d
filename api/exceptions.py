"""
Custom exception handling for the API.
"""

import logging
import traceback

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.locks import RunInProgress
from scrapers.base import (
    DuplicateExternalId,
    ExtractionFailed,
    FetchFailed,
    InsufficientContent,
    InvalidImage,
    ServiceUnavailable,
    SourceBlocked,
    UnparsableResponse,
)
from .staging import (
    ConfigNotFound,
    InvalidTransition,
    PromotionInconsistency,
    PropertyNotFound,
    StagingNotFound,
)
from .store import RunAlreadyFinished

logger = logging.getLogger(__name__)

# Checked in order: subclasses before their bases
ERROR_MAP = [
    ((StagingNotFound, PropertyNotFound, ConfigNotFound), status.HTTP_404_NOT_FOUND, 'Not Found'),
    ((InvalidImage,), status.HTTP_400_BAD_REQUEST, 'Bad Request'),
    ((DuplicateExternalId,), status.HTTP_409_CONFLICT, 'Duplicate'),
    ((InvalidTransition, RunInProgress, RunAlreadyFinished), status.HTTP_409_CONFLICT, 'Conflict'),
    ((ExtractionFailed, InsufficientContent, UnparsableResponse), status.HTTP_422_UNPROCESSABLE_ENTITY,
     'Unprocessable Content'),
    ((SourceBlocked, ServiceUnavailable), status.HTTP_503_SERVICE_UNAVAILABLE, 'Service Unavailable'),
    ((FetchFailed,), status.HTTP_502_BAD_GATEWAY, 'Bad Gateway'),
]


def error_response(error: str, message: str, status_code: int, **extra) -> Response:
    body = {'error': error, 'message': message, 'status_code': status_code}
    body.update(extra)
    return Response(body, status=status_code)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that converts pipeline exceptions to API responses.
    """
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        return response

    if isinstance(exc, PromotionInconsistency):
        logger.error(f"500: {exc}")
        return error_response(
            'Promotion Inconsistency', str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR,
            staging_id=exc.staging_id, property_id=exc.property_id,
        )

    for exception_types, status_code, error in ERROR_MAP:
        if not isinstance(exc, exception_types):
            continue

        # Expected errors: no stack trace
        if status_code >= 500:
            logger.warning(f"{status_code}: {exc}")
        else:
            logger.info(f"{status_code}: {exc}")

        extra = {}
        draft = getattr(exc, 'draft', None)
        if draft is not None:
            extra['data'] = draft.to_dict()
        raw_content = getattr(exc, 'raw_content', None)
        if raw_content is not None:
            extra['raw_content'] = raw_content[:2000]
        return error_response(error, str(exc), status_code, **extra)

    # For any other unhandled exceptions
    logger.exception(f"Unhandled exception: {exc}")
    return error_response(
        'Internal Server Error',
        str(exc) if settings.DEBUG else 'An unexpected error occurred.',
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exception_type=type(exc).__name__ if settings.DEBUG else None,
        details=traceback.format_exc() if settings.DEBUG else None,
    )
