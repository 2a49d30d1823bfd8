"""
WSGI config for PeerCarrier (REST API only, no WebSockets).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'peercarrier_core.settings')

application = get_wsgi_application()
