"""
URL configuration for pos_system project.
"""
import logging

from django.http import Http404, JsonResponse
from django.urls import include, path
from django.utils import timezone

logger = logging.getLogger(__name__)


def admin_honeypot(request):
    """Honeypot for /admin/ - logs attempts and returns 404."""
    logger.warning(
        f"Admin honeypot triggered: IP={request.META.get('REMOTE_ADDR')}, "
        f"User-Agent={request.META.get('HTTP_USER_AGENT', 'Unknown')}"
    )
    raise Http404("Not Found")


def health_check(request):
    return JsonResponse({
        'status': 'ok',
        'timestamp': timezone.now().isoformat(),
    })


urlpatterns = [
    # Honeypot: Log attempts to access /admin/
    path('admin/', admin_honeypot, name='admin_honeypot'),
    path('admin/<path:subpath>', admin_honeypot),

    path('health/', health_check, name='health_check'),
    path('pos/', include('apps.pos.urls')),
]
