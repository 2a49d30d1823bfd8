"""
PeerCarrier Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.decorators import api_view
from rest_framework.response import Response

from core.health import detailed_health, health_check, readiness_check


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "PeerCarrier Control Tower"
admin.site.site_title = "PeerCarrier Admin"
admin.site.index_title = "Requests & carriers"


@api_view(['GET'])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'PeerCarrier API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'users': '/api/users/',
            'requests': {
                'list_create': '/api/requests/',
                'presentable': '/api/requests/presentable/',
                'accept': '/api/requests/<id>/accept/',
                'decline': '/api/requests/<id>/decline/',
                'retry': '/api/requests/<id>/retry/',
            },
            'carriers_online': '/api/carriers/online/',
            'quote': '/api/quote/',
            'mobile': {
                'toggle_online': '/api/mobile/toggle-online/',
                'location': '/api/mobile/location/',
                'profile': '/api/mobile/profile/',
                'profile_photo': '/api/mobile/profile/photo/',
            },
            'websockets': {
                'carrier': '/ws/carrier/',
                'request': '/ws/requests/<id>/',
            },
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # Health checks
    path('health/', health_check, name='health'),
    path('health/ready/', readiness_check, name='health-ready'),
    path('health/detailed/', detailed_health, name='health-detailed'),

    # API Root
    path('api/', api_root, name='api-root'),

    # API schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # App URLs
    path('api/', include('core.urls')),
    path('api/', include('logistics.urls')),

    # Mobile API (carrier app)
    path('api/mobile/', include('carrier.urls_mobile')),
]

# Serve media files in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
