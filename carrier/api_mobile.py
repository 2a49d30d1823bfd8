"""
CARRIER App - Mobile REST API

Django REST Framework API endpoints for the carrier mobile app.
All endpoints require JWT authentication.
"""

import logging
from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import IsCarrier
from core.presence import Position, PresenceWriteRejected, ProfileAlreadySetUp, presence_store
from core.serializers import (
    CarrierProfileSetupSerializer,
    CarrierProfileSerializer,
    LocationUpdateSerializer,
    PresenceToggleSerializer,
    ProfilePhotoSerializer,
)
from core.storage import ProfileImageError, upload_profile_image

logger = logging.getLogger(__name__)


# ============================================
# PRESENCE
# ============================================

class ToggleOnlineView(APIView):
    """
    Set carrier online/offline status.

    POST /api/mobile/toggle-online/
    { "is_online": true, "latitude": 6.52, "longitude": 3.37 }

    is_online omitted: flip the stored flag. Coordinates omitted: online
    without a location (the carrier still receives requests).
    """
    permission_classes = [IsCarrier]

    def post(self, request):
        serializer = PresenceToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        is_online = data.get('is_online')
        if is_online is None:
            is_online = not presence_store.is_online(request.user)

        position = None
        if is_online and 'latitude' in data:
            position = Position(data['latitude'], data['longitude'])

        try:
            profile = presence_store.write_presence(request.user, is_online, position)
        except PresenceWriteRejected as e:
            return Response(
                {'error': str(e), 'code': 'presence_rejected'},
                status=status.HTTP_403_FORBIDDEN
            )
        except Exception:
            logger.exception(f"[MOBILE] Presence write failed for {request.user.phone_number}")
            return Response(
                {'error': 'Could not update your status, try again.', 'code': 'unavailable'},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )

        return Response({
            'is_online': profile.is_online,
            'has_location': profile.has_location,
            'message': 'Online' if profile.is_online else 'Offline'
        })


class UpdateLocationView(APIView):
    """
    Update carrier location (via HTTP fallback, WebSocket preferred).

    POST /api/mobile/location/
    { "latitude": 6.5244, "longitude": 3.3792 }
    """
    permission_classes = [IsCarrier]

    def post(self, request):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        position = Position(
            serializer.validated_data['latitude'],
            serializer.validated_data['longitude'],
        )
        if not presence_store.update_location(request.user, position):
            return Response(
                {'error': 'Go online to share your location.', 'code': 'offline'},
                status=status.HTTP_409_CONFLICT
            )

        return Response({'success': True})


# ============================================
# PROFILE
# ============================================

class CarrierProfileView(APIView):
    """
    Carrier profile.

    GET /api/mobile/profile/
    POST /api/mobile/profile/   { "carrier_type": "Bike", "display_name": "..." }  (setup, once)
    PATCH /api/mobile/profile/  { "display_name": "..." }
    """
    permission_classes = [IsCarrier]

    def get_profile(self, request):
        return presence_store.get_profile(request.user)

    def get(self, request):
        profile = self.get_profile(request)
        if profile is None:
            return Response(
                {'error': 'No carrier profile for this account'},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(CarrierProfileSerializer(profile).data)

    def post(self, request):
        serializer = CarrierProfileSetupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            profile = presence_store.set_up_profile(
                request.user,
                serializer.validated_data['carrier_type'],
                serializer.validated_data['display_name'],
            )
        except ProfileAlreadySetUp as e:
            return Response(
                {'error': str(e), 'code': 'already_set_up'},
                status=status.HTTP_409_CONFLICT
            )
        except PresenceWriteRejected as e:
            return Response(
                {'error': str(e), 'code': 'presence_rejected'},
                status=status.HTTP_403_FORBIDDEN
            )

        return Response(CarrierProfileSerializer(profile).data, status=status.HTTP_201_CREATED)

    def patch(self, request):
        profile = self.get_profile(request)
        if profile is None:
            return Response(
                {'error': 'No carrier profile for this account'},
                status=status.HTTP_404_NOT_FOUND
            )
        serializer = CarrierProfileSerializer(profile, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class ProfilePhotoUploadView(APIView):
    """
    Upload carrier profile photo.

    POST /api/mobile/profile/photo/
    - photo: File
    """
    permission_classes = [IsCarrier]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        serializer = ProfilePhotoSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            url = upload_profile_image(
                request.user,
                serializer.validated_data['photo'],
                absolute_url=request.build_absolute_uri,
            )
        except ProfileImageError as e:
            return Response(
                {'error': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )

        return Response({
            'success': True,
            'url': url,
        })
