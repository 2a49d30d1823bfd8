"""
LOGISTICS App - Delivery Requests for PeerCarrier

Handles: the request ledger (one row per parcel-movement intent) whose
assignment slot is claimed by exactly one carrier.
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from core.models import CarrierType


class DeliveryStatus(models.TextChoices):
    """
    Request lifecycle status.

    PENDING is the canonical "open for claim" state. BROADCASTING is a
    deprecated alias accepted on input only (see normalize()).
    """
    PENDING = 'PENDING', 'Pending'
    ACCEPTED = 'ACCEPTED', 'Accepted'
    DECLINED = 'DECLINED', 'Declined'

    @classmethod
    def normalize(cls, value):
        if not value:
            return None
        cleaned = str(value).strip().upper()
        if cleaned == DEPRECATED_OPEN_STATUS:
            return cls.PENDING
        if cleaned in cls.values:
            return cls(cleaned)
        return None


DEPRECATED_OPEN_STATUS = 'BROADCASTING'


class DeliveryMethod(models.TextChoices):
    ARRIVAL = 'ARRIVAL', 'Pick up on arrival'
    HOME = 'HOME', 'Home delivery'


class DeliveryRequest(models.Model):
    """
    Core delivery request model.

    Invariants:
    - status becomes ACCEPTED exactly when assigned_carrier goes from NULL
      to a carrier, in one conditioned UPDATE (see RequestLedger.claim)
    - once assigned_carrier is set, no other claim can succeed
    - rows are never deleted; terminal states stay for history
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Actors
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='delivery_requests',
        verbose_name="Requester"
    )
    carrier_type = models.CharField(
        max_length=10,
        choices=CarrierType.choices,
        db_index=True,
        verbose_name="Carrier type"
    )
    assigned_carrier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='assigned_requests',
        verbose_name="Assigned carrier"
    )

    # Status
    status = models.CharField(
        max_length=10,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        verbose_name="Status"
    )

    # Sender side
    sender_name = models.CharField(max_length=150, blank=True)
    sender_contact = models.CharField(max_length=32, blank=True)
    sender_location = models.CharField(max_length=255)
    sender_latitude = models.FloatField(null=True, blank=True)
    sender_longitude = models.FloatField(null=True, blank=True)

    # Receiver side
    receiver_name = models.CharField(max_length=150, blank=True)
    receiver_contact = models.CharField(max_length=32)
    receiver_location = models.CharField(max_length=255)
    receiver_latitude = models.FloatField(null=True, blank=True)
    receiver_longitude = models.FloatField(null=True, blank=True)

    # Package
    item_type = models.CharField(max_length=100)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    insurance = models.BooleanField(default=False)
    is_inter_state = models.BooleanField(default=False)
    delivery_method = models.CharField(
        max_length=10,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.HOME
    )

    # Pricing (advisory quote confirmed by the requester, major unit)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        verbose_name="Price (NGN)"
    )
    distance_km = models.FloatField(null=True, blank=True)
    eta_minutes = models.PositiveIntegerField(null=True, blank=True)

    # Timestamps / retry bookkeeping
    created_at = models.DateTimeField(auto_now_add=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    reopened_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = "Delivery request"
        verbose_name_plural = "Delivery requests"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['carrier_type', 'status', 'created_at'], name='request_type_status_idx'),
            models.Index(fields=['assigned_carrier', 'status'], name='request_assignee_status_idx'),
        ]

    def __str__(self):
        return f"Request {str(self.id)[:8]} [{self.carrier_type}] - {self.status}"

    @property
    def is_pending(self) -> bool:
        return self.status == DeliveryStatus.PENDING

    @property
    def is_presentable(self) -> bool:
        """Open for claim: pending and nobody assigned."""
        return self.status == DeliveryStatus.PENDING and self.assigned_carrier_id is None

    @property
    def is_assigned(self) -> bool:
        return self.assigned_carrier_id is not None

    def to_event_payload(self) -> dict:
        """Flat JSON-safe snapshot, as carried by broadcast events."""
        return {
            'id': str(self.id),
            'requester_id': str(self.requester_id),
            'carrier_type': self.carrier_type,
            'status': self.status,
            'assigned_carrier_id': str(self.assigned_carrier_id) if self.assigned_carrier_id else None,
            'sender_name': self.sender_name,
            'sender_contact': self.sender_contact,
            'sender_location': self.sender_location,
            'sender_latitude': self.sender_latitude,
            'sender_longitude': self.sender_longitude,
            'receiver_name': self.receiver_name,
            'receiver_contact': self.receiver_contact,
            'receiver_location': self.receiver_location,
            'receiver_latitude': self.receiver_latitude,
            'receiver_longitude': self.receiver_longitude,
            'item_type': self.item_type,
            'quantity': self.quantity,
            'insurance': self.insurance,
            'is_inter_state': self.is_inter_state,
            'delivery_method': self.delivery_method,
            'price': str(self.price),
            'distance_km': self.distance_km,
            'eta_minutes': self.eta_minutes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'assigned_at': self.assigned_at.isoformat() if self.assigned_at else None,
            'retry_count': self.retry_count,
        }
