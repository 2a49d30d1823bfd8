"""
PeerCarrier Monitoring & Health Check Endpoints

Provides:
1. /health/ - Basic liveness check (for load balancers/Docker)
2. /health/ready/ - Readiness check (database, channel layer)
3. /health/detailed/ - Request and presence counters (staff only)
"""

import time
import uuid
import logging
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.http import JsonResponse
from django.db import connection
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt
from django.utils import timezone

logger = logging.getLogger(__name__)


@csrf_exempt
@require_GET
def health_check(request):
    """
    Basic liveness check.
    Returns 200 if the Django process is alive.
    """
    return JsonResponse({
        'status': 'ok',
        'service': 'peercarrier',
        'timestamp': timezone.now().isoformat(),
    })


def _check_database() -> dict:
    start = time.time()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    return {'status': 'healthy', 'response_time_ms': round((time.time() - start) * 1000, 2)}


def _check_channel_layer() -> dict:
    """Round-trip one message through the layer the broadcast relies on."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        raise RuntimeError("No channel layer configured")

    start = time.time()
    channel = f"healthcheck.{uuid.uuid4().hex}"
    async_to_sync(channel_layer.send)(channel, {'type': 'health.ping'})
    message = async_to_sync(channel_layer.receive)(channel)
    if message.get('type') != 'health.ping':
        raise RuntimeError("Channel layer round-trip mismatch")
    return {'status': 'healthy', 'response_time_ms': round((time.time() - start) * 1000, 2)}


@csrf_exempt
@require_GET
def readiness_check(request):
    """
    Readiness check - covers the database and the channel layer.
    Returns 503 if any dependency is down.
    """
    checks = {}
    all_healthy = True

    for name, check in (('database', _check_database), ('channel_layer', _check_channel_layer)):
        try:
            checks[name] = check()
        except Exception as e:
            checks[name] = {'status': 'unhealthy', 'error': str(e)}
            all_healthy = False
            logger.error(f"Health check - {name} unhealthy: {e}")

    return JsonResponse({
        'status': 'healthy' if all_healthy else 'unhealthy',
        'service': 'peercarrier',
        'timestamp': timezone.now().isoformat(),
        'checks': checks,
    }, status=200 if all_healthy else 503)


@csrf_exempt
@require_GET
def detailed_health(request):
    """Request and presence counters (staff only)."""
    if not request.user.is_authenticated or not request.user.is_staff:
        return JsonResponse({
            'error': 'Unauthorized',
            'message': 'Staff access required for detailed diagnostics',
        }, status=403)

    from core.models import CarrierProfile, CarrierType
    from logistics.models import DeliveryRequest, DeliveryStatus

    online = CarrierProfile.objects.filter(is_active=True, is_online=True)
    stats = {
        'carriers': {
            'total': CarrierProfile.objects.count(),
            'online': online.count(),
            'online_by_type': {
                carrier_type: online.filter(carrier_type=carrier_type).count()
                for carrier_type in CarrierType.values
            },
        },
        'requests': {
            'total': DeliveryRequest.objects.count(),
            'pending': DeliveryRequest.objects.filter(status=DeliveryStatus.PENDING).count(),
            'accepted_today': DeliveryRequest.objects.filter(
                status=DeliveryStatus.ACCEPTED,
                assigned_at__date=timezone.now().date()
            ).count(),
        },
    }

    return JsonResponse({
        'status': 'ok',
        'service': 'peercarrier',
        'timestamp': timezone.now().isoformat(),
        'stats': stats,
    })
