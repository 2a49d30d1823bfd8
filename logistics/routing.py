"""
LOGISTICS App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers for real-time matching.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Carrier app - presence, location and request prompts
    # ws://localhost:8000/ws/carrier/
    re_path(
        r'ws/carrier/$',
        consumers.CarrierConsumer.as_asgi()
    ),

    # Requester waiting for a carrier on one request
    # ws://localhost:8000/ws/requests/<uuid>/
    re_path(
        r'ws/requests/(?P<request_id>[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})/$',
        consumers.DeliveryRequestConsumer.as_asgi()
    ),
]
