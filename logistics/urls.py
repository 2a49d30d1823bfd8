"""
Logistics App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import DeliveryRequestViewSet, OnlineCarriersView, QuoteAPIView

router = DefaultRouter()
router.register(r'requests', DeliveryRequestViewSet, basename='delivery-request')

urlpatterns = [
    # Presence (map pins / online count)
    path('carriers/online/', OnlineCarriersView.as_view(), name='carriers-online'),

    # Advisory pricing
    path('quote/', QuoteAPIView.as_view(), name='quote'),

    # Router URLs
    path('', include(router.urls)),
]
