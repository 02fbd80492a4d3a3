"""
Health check endpoints.

Provides /healthz and /readyz endpoints for monitoring.
"""
import logging
from django.http import JsonResponse
from django.views import View
from django.db import connection
from django.conf import settings

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Basic health check endpoint.

    Returns 200 OK if application is running.
    Does not check dependencies.
    """

    def get(self, request):
        return JsonResponse({
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }, status=200)


class ReadyzView(View):
    """
    Readiness check endpoint.

    Returns 200 OK when the database and the document bucket are reachable,
    503 otherwise.
    """

    def get(self, request):
        checks = {
            'database': self._check_database(),
            'storage': self._check_storage(),
        }

        all_healthy = all(checks.values())

        response_data = {
            'status': 'ready' if all_healthy else 'not_ready',
            'checks': checks,
        }

        return JsonResponse(response_data, status=200 if all_healthy else 503)

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                return True
        except Exception as e:
            logger.error(
                'Database health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'database',
                    'error': str(e)
                }
            )
            return False

    def _check_storage(self):
        from apps.storage.utils_storage import get_bucket_name, get_minio_client

        try:
            return bool(get_minio_client().bucket_exists(get_bucket_name()))
        except Exception as e:
            logger.error(
                'Storage health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'storage',
                    'error': str(e)
                }
            )
            return False
