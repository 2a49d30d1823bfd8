"""
CORE App - Users & Carrier Presence for PeerCarrier

Handles: Users (Senders, Carriers, Admins) and the carrier presence record
(online flag + last known position) read by the matching workflow.
"""

import uuid
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator
from django.db import models


class UserRole(models.TextChoices):
    """User role enumeration."""
    ADMIN = 'ADMIN', 'Administrator'
    SENDER = 'SENDER', 'Sender'
    CARRIER = 'CARRIER', 'Carrier'


class CarrierType(models.TextChoices):
    """Closed set of carrier vehicle types. Matching is keyed on this."""
    CARRIER = 'CARRIER', 'Carrier'
    BICYCLE = 'BICYCLE', 'Bicycle'
    BIKE = 'BIKE', 'Bike'
    CAR = 'CAR', 'Car'

    @classmethod
    def normalize(cls, value):
        """
        Map a client spelling ('Bike', 'bike', 'Bike Carrier', 'BIKE')
        to the stored value. Returns None when nothing matches.
        """
        if not value:
            return None
        cleaned = str(value).strip().upper()
        if cleaned.endswith(' CARRIER') and cleaned != 'CARRIER':
            cleaned = cleaned[:-len(' CARRIER')]
        if cleaned in cls.values:
            return cleaned
        return None


class UserManager(BaseUserManager):
    """Custom user manager for phone-based authentication."""

    def create_user(self, phone_number, password=None, **extra_fields):
        if not phone_number:
            raise ValueError('Phone number is required')

        user = self.model(phone_number=phone_number, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, phone_number, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', UserRole.ADMIN)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(phone_number, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using phone number as primary identifier.

    Senders create delivery requests, carriers go online and claim them.
    """

    phone_regex = RegexValidator(
        regex=r'^\+?[0-9]{7,15}$',
        message="Format: +2348012345678 (7 to 15 digits)"
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    phone_number = models.CharField(
        max_length=16,
        unique=True,
        validators=[phone_regex],
        verbose_name="Phone number"
    )
    email = models.EmailField(blank=True)

    full_name = models.CharField(max_length=150, blank=True, verbose_name="Full name")
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.SENDER,
        verbose_name="Role"
    )

    # Django Auth Fields
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(auto_now_add=True)

    objects = UserManager()

    USERNAME_FIELD = 'phone_number'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        ordering = ['-date_joined']

    def __str__(self):
        return f"{self.full_name or self.phone_number} ({self.role})"

    @property
    def is_carrier(self) -> bool:
        return self.role == UserRole.CARRIER

    @property
    def is_sender(self) -> bool:
        return self.role == UserRole.SENDER


class CarrierProfile(models.Model):
    """
    Presence record, one per carrier account.

    Key Business Logic:
    - carrier_type is fixed once the profile is set up (matching key); a
      profile created by a first go-online write is not set up yet and the
      carrier picks the type once
    - latitude/longitude are only meaningful while is_online is True
    - is_active=False deactivates the profile: presence writes are refused
      but the row is kept
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='carrier_profile',
        verbose_name="Carrier"
    )
    carrier_type = models.CharField(
        max_length=10,
        choices=CarrierType.choices,
        default=CarrierType.CARRIER,
        db_index=True,
        verbose_name="Carrier type"
    )
    display_name = models.CharField(max_length=150, blank=True, verbose_name="Display name")
    is_setup_complete = models.BooleanField(
        default=True,
        verbose_name="Setup complete",
        help_text="False for profiles created by a go-online write before the carrier chose a type"
    )
    profile_image_url = models.URLField(max_length=500, blank=True, verbose_name="Profile photo")

    # Presence
    is_online = models.BooleanField(default=False, verbose_name="Online")
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    location_updated_at = models.DateTimeField(null=True, blank=True)
    last_online_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(
        default=True,
        verbose_name="Active",
        help_text="Deactivated profiles keep their history but cannot go online"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Carrier profile"
        verbose_name_plural = "Carrier profiles"
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['carrier_type', 'is_online'], name='carrier_type_online_idx'),
        ]

    def __str__(self):
        state = 'online' if self.is_online else 'offline'
        return f"{self.display_name or self.user.phone_number} [{self.carrier_type}] {state}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored = (
                CarrierProfile.objects.filter(pk=self.pk)
                .values_list('carrier_type', 'is_setup_complete')
                .first()
            )
            if stored is not None and stored[1] and stored[0] != self.carrier_type:
                raise ValidationError("carrier_type cannot change after profile setup")
        super().save(*args, **kwargs)

    @property
    def has_location(self) -> bool:
        return self.is_online and self.latitude is not None and self.longitude is not None

    @property
    def name(self) -> str:
        return self.display_name or self.user.full_name or self.user.phone_number
