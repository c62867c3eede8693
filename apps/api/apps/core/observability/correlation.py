"""
Request correlation middleware.

Generates/propagates X-Request-ID so every billing log line of one request
can be grouped together.
"""
import uuid
import time
import logging
from threading import local

from django.utils.deprecation import MiddlewareMixin

from .metrics import metrics

_request_context = local()

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'


def get_request_id():
    """Current request ID, or None outside a request."""
    return getattr(_request_context, 'request_id', None)


def get_user_id():
    """Current authenticated user ID, or None."""
    return getattr(_request_context, 'user_id', None)


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in ('request_id', 'user_id'):
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Stores the request id and user id in thread-local storage for logging
    and echoes X-Request-ID on the response.
    """

    def process_request(self, request):
        request.request_id = request.META.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.start_time = time.time()

        _request_context.request_id = request.request_id
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            _request_context.user_id = str(user.pk)
        else:
            _request_context.user_id = None

    def process_response(self, request, response):
        request_id = getattr(request, 'request_id', None)
        if request_id:
            response['X-Request-ID'] = request_id

        resolver_match = getattr(request, 'resolver_match', None)
        metrics.http_requests_total.labels(
            path=resolver_match.route if resolver_match else 'unmatched',
            method=request.method,
            status=str(response.status_code),
        ).inc()

        start_time = getattr(request, 'start_time', None)
        if start_time is not None:
            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round((time.time() - start_time) * 1000, 2),
                    'request_id': request_id,
                }
            )

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'request_id': getattr(request, 'request_id', None),
            }
        )
