"""
CARRIER App - Mobile API URL Configuration
"""

from django.urls import path
from .api_mobile import (
    CarrierProfileView,
    ProfilePhotoUploadView,
    ToggleOnlineView,
    UpdateLocationView,
)


app_name = 'mobile_api'

urlpatterns = [
    # Presence
    path('toggle-online/', ToggleOnlineView.as_view(), name='toggle_online'),
    path('location/', UpdateLocationView.as_view(), name='location'),

    # Profile
    path('profile/', CarrierProfileView.as_view(), name='profile'),
    path('profile/photo/', ProfilePhotoUploadView.as_view(), name='profile_photo'),
]
