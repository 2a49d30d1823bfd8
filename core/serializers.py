"""
Core App Serializers - Users & Carrier Profiles
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import CarrierProfile, CarrierType

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model (read operations)."""

    is_carrier = serializers.ReadOnlyField()

    class Meta:
        model = User
        fields = [
            'id', 'phone_number', 'email', 'full_name', 'role',
            'is_carrier', 'is_active', 'date_joined'
        ]
        read_only_fields = ['id', 'phone_number', 'role', 'is_active', 'date_joined']


class CarrierProfileSerializer(serializers.ModelSerializer):
    """Carrier profile as shown in the carrier app."""

    carrier_id = serializers.UUIDField(source='user_id', read_only=True)
    phone_number = serializers.CharField(source='user.phone_number', read_only=True)
    name = serializers.ReadOnlyField()
    has_location = serializers.ReadOnlyField()

    class Meta:
        model = CarrierProfile
        fields = [
            'id', 'carrier_id', 'phone_number', 'name', 'display_name',
            'carrier_type', 'is_setup_complete', 'profile_image_url',
            'is_online', 'latitude', 'longitude', 'has_location',
            'location_updated_at', 'last_online_at', 'is_active',
        ]
        read_only_fields = [
            'id', 'carrier_type', 'is_setup_complete', 'profile_image_url',
            'is_online', 'latitude', 'longitude',
            'location_updated_at', 'last_online_at', 'is_active',
        ]


class OnlineCarrierSerializer(serializers.ModelSerializer):
    """Lightweight serializer for map pins of online carriers."""

    carrier_id = serializers.UUIDField(source='user_id', read_only=True)
    name = serializers.ReadOnlyField()
    latitude = serializers.SerializerMethodField()
    longitude = serializers.SerializerMethodField()

    class Meta:
        model = CarrierProfile
        fields = [
            'carrier_id', 'name', 'carrier_type', 'profile_image_url',
            'latitude', 'longitude', 'location_updated_at',
        ]

    # Coordinates only mean something while online
    def get_latitude(self, obj):
        return obj.latitude if obj.has_location else None

    def get_longitude(self, obj):
        return obj.longitude if obj.has_location else None


class CarrierProfileSetupSerializer(serializers.Serializer):
    """One-time setup: the carrier picks its type ('Bike', 'BIKE', ...)."""

    carrier_type = serializers.CharField()
    display_name = serializers.CharField(max_length=150, required=False, allow_blank=True, default='')

    def validate_carrier_type(self, value):
        normalized = CarrierType.normalize(value)
        if normalized is None:
            raise serializers.ValidationError(
                f"Unknown carrier type. Choose one of: {', '.join(CarrierType.labels)}."
            )
        return normalized


class LocationUpdateSerializer(serializers.Serializer):
    """Serializer for updating carrier GPS location."""

    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class PresenceToggleSerializer(serializers.Serializer):
    """
    Presence toggle. Without is_online the stored flag is flipped.
    Coordinates are optional: going online without them is allowed.
    """

    is_online = serializers.BooleanField(required=False, allow_null=True, default=None)
    latitude = serializers.FloatField(min_value=-90, max_value=90, required=False)
    longitude = serializers.FloatField(min_value=-180, max_value=180, required=False)

    def validate(self, data):
        if ('latitude' in data) != ('longitude' in data):
            raise serializers.ValidationError(
                {'latitude': "Latitude and longitude must be sent together."}
            )
        return data


class ProfilePhotoSerializer(serializers.Serializer):
    photo = serializers.ImageField()
