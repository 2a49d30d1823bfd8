"""
Logistics App Serializers - Delivery Requests & Quotes
"""

from rest_framework import serializers

from core.models import CarrierType
from .models import DeliveryRequest, DeliveryStatus


class CarrierTypeField(serializers.CharField):
    """Accepts 'BIKE', 'bike', 'Bike' or 'Bike Carrier'; stores the canonical value."""

    default_error_messages = {
        'unknown': "Unknown carrier type '{value}'. Choose one of: {choices}.",
    }

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        normalized = CarrierType.normalize(value)
        if normalized is None:
            self.fail('unknown', value=value, choices=', '.join(CarrierType.values))
        return normalized


class DeliveryRequestSerializer(serializers.ModelSerializer):
    """Full (read) serializer for DeliveryRequest."""

    requester_phone = serializers.CharField(source='requester.phone_number', read_only=True)
    assigned_carrier_name = serializers.SerializerMethodField()

    class Meta:
        model = DeliveryRequest
        fields = [
            'id', 'requester', 'requester_phone', 'carrier_type', 'status',
            'assigned_carrier', 'assigned_carrier_name',
            'sender_name', 'sender_contact', 'sender_location',
            'sender_latitude', 'sender_longitude',
            'receiver_name', 'receiver_contact', 'receiver_location',
            'receiver_latitude', 'receiver_longitude',
            'item_type', 'quantity', 'insurance', 'is_inter_state', 'delivery_method',
            'price', 'distance_km', 'eta_minutes',
            'created_at', 'assigned_at', 'reopened_at', 'retry_count',
        ]
        read_only_fields = fields

    def get_assigned_carrier_name(self, obj):
        carrier = obj.assigned_carrier
        if carrier is None:
            return None
        profile = getattr(carrier, 'carrier_profile', None)
        return profile.name if profile else (carrier.full_name or carrier.phone_number)


class DeliveryRequestCreateSerializer(serializers.ModelSerializer):
    """
    Submission of a new request. All checks run before anything is written.

    status is optional and may only say "open" (PENDING, or the deprecated
    BROADCASTING); the ledger stores PENDING regardless.
    """

    carrier_type = CarrierTypeField(max_length=30)
    status = serializers.CharField(required=False, write_only=True)

    class Meta:
        model = DeliveryRequest
        fields = [
            'carrier_type', 'status',
            'sender_name', 'sender_contact', 'sender_location',
            'sender_latitude', 'sender_longitude',
            'receiver_name', 'receiver_contact', 'receiver_location',
            'receiver_latitude', 'receiver_longitude',
            'item_type', 'quantity', 'insurance', 'is_inter_state', 'delivery_method',
            'price', 'distance_km', 'eta_minutes',
        ]
        extra_kwargs = {
            'sender_location': {'allow_blank': False},
            'receiver_location': {'allow_blank': False},
            'receiver_contact': {'allow_blank': False},
            'item_type': {'allow_blank': False},
            'price': {'min_value': 0},
            'distance_km': {'min_value': 0},
        }

    def validate_status(self, value):
        if DeliveryStatus.normalize(value) != DeliveryStatus.PENDING:
            raise serializers.ValidationError("A new request can only be submitted as PENDING.")
        return DeliveryStatus.PENDING

    def validate(self, data):
        errors = {}
        for side in ('sender', 'receiver'):
            lat, lng = data.get(f'{side}_latitude'), data.get(f'{side}_longitude')
            if (lat is None) != (lng is None):
                errors[f'{side}_latitude'] = "Latitude and longitude must be sent together."
                continue
            if lat is not None and not (-90 <= lat <= 90 and -180 <= lng <= 180):
                errors[f'{side}_latitude'] = "Coordinates out of range."
        if errors:
            raise serializers.ValidationError(errors)
        data.pop('status', None)
        return data

    def create(self, validated_data):
        from .services.ledger import request_ledger
        return request_ledger.create(self.context['request'].user, **validated_data)


class ClaimResultSerializer(serializers.Serializer):
    outcome = serializers.CharField()
    success = serializers.BooleanField()
    message = serializers.CharField()
    request = DeliveryRequestSerializer(required=False)


class QuoteRequestSerializer(serializers.Serializer):
    """Serializer for an advisory price / ETA quote."""

    sender_latitude = serializers.FloatField(min_value=-90, max_value=90)
    sender_longitude = serializers.FloatField(min_value=-180, max_value=180)
    receiver_latitude = serializers.FloatField(min_value=-90, max_value=90)
    receiver_longitude = serializers.FloatField(min_value=-180, max_value=180)
    carrier_type = CarrierTypeField(max_length=30, required=False)


class QuoteResponseSerializer(serializers.Serializer):
    """Serializer for one quote line."""

    carrier_type = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    distance_km = serializers.FloatField()
    eta_minutes = serializers.IntegerField()
    estimated = serializers.BooleanField()
    currency = serializers.CharField(default='NGN')
