"""
Request correlation middleware.

Generates/propagates X-Request-ID and injects it into logs. Outgoing calls to
the storage and patient services forward the same header.
"""
import uuid
import time
import logging
from threading import local
from django.utils.deprecation import MiddlewareMixin

# Thread-local storage for request context
_request_context = local()

REQUEST_ID_HEADER = 'X-Request-ID'

logger = logging.getLogger(__name__)


def get_request_id():
    """Get current request ID from thread-local storage."""
    return getattr(_request_context, 'request_id', None)


def set_request_id(request_id=None):
    """
    Bind a request ID to the current thread.

    Used outside of HTTP requests (editor sessions driven from a shell or a
    worker) so their gateway calls still carry a correlation header.
    """
    request_id = request_id or str(uuid.uuid4())
    _request_context.request_id = request_id
    return request_id


def get_user_id():
    """Get current user ID from thread-local storage."""
    return getattr(_request_context, 'user_id', None)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Middleware to handle request correlation.

    - Generates/propagates X-Request-ID
    - Stores context in thread-local for logging
    - Adds correlation header to response
    - Tracks request duration
    """

    REQUEST_ID_META = 'HTTP_X_REQUEST_ID'

    def process_request(self, request):
        request_id = request.META.get(self.REQUEST_ID_META) or str(uuid.uuid4())

        request.request_id = request_id
        request.start_time = time.time()

        _request_context.request_id = request_id

        if hasattr(request, 'user') and request.user.is_authenticated:
            _request_context.user_id = str(request.user.id)
        else:
            _request_context.user_id = None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response[REQUEST_ID_HEADER] = request.request_id

        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000
            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }
            )

        return response

    def process_exception(self, request, exception):
        duration_ms = 0
        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': round(duration_ms, 2),
            }
        )


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in ['request_id', 'user_id']:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)
