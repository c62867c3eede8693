"""
Health check endpoints.

Provides /healthz and /readyz endpoints for monitoring.
"""
import logging

from django.conf import settings
from django.core.cache import cache
from django.db import connection, DatabaseError
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Liveness: 200 while the process is up, no dependency checks.
    """

    def get(self, request):
        health_data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }

        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash

        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """
    Readiness: database and rate cache must answer.

    The exchange-rate service is not checked; payments keep working on the
    fallback rate when it is down.
    """

    def get(self, request):
        checks = {
            'database': self._check_database(),
            'cache': self._check_cache(),
        }

        all_healthy = all(checks.values())

        return JsonResponse(
            {
                'status': 'ready' if all_healthy else 'not_ready',
                'checks': checks,
            },
            status=200 if all_healthy else 503,
        )

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
            return True
        except DatabaseError as e:
            logger.error(
                'Database health check failed',
                extra={'event': 'health_check_failed', 'check': 'database', 'error': str(e)}
            )
            return False

    def _check_cache(self):
        cache.set('readyz-probe', 'ok', 5)
        ok = cache.get('readyz-probe') == 'ok'
        if not ok:
            logger.error(
                'Cache health check failed',
                extra={'event': 'health_check_failed', 'check': 'cache'}
            )
        return ok
