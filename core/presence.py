"""
CORE App - Carrier Presence

Two layers:
- PresenceStore: synchronous ORM access to CarrierProfile (the presence
  store). Handles the "zero rows updated" ambiguity between a missing
  profile and a deactivated one.
- CarrierPresenceController: per-session async service owning the online
  flag, the location fix on go-online and the periodic location emission.
  Injected into consumers (and into the matching engine, which reads
  is_online) instead of being shared ambient state.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.models import CarrierProfile, CarrierType, User
from core.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class PresenceWriteRejected(ValueError):
    """The profile exists but the write was refused (deactivated / not a carrier)."""


class ProfileAlreadySetUp(ValueError):
    """The carrier type was already chosen for this profile."""


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float

    def distance_m(self, other: 'Position') -> float:
        """Haversine distance in meters."""
        R = 6371000.0
        lat1, lat2 = math.radians(self.latitude), math.radians(other.latitude)
        dlat = lat2 - lat1
        dlng = math.radians(other.longitude - self.longitude)
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
        return 2 * R * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    @classmethod
    def from_payload(cls, data) -> Optional['Position']:
        """Build a Position from {'latitude', 'longitude'}; None if absent or invalid."""
        if not data:
            return None
        try:
            lat = float(data.get('latitude'))
            lng = float(data.get('longitude'))
        except (TypeError, ValueError):
            return None
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            return None
        return cls(lat, lng)


LocationProvider = Callable[[], Awaitable[Optional[Position]]]


# ============================================
# PRESENCE STORE (sync, ORM)
# ============================================

class PresenceStore:
    """Reads and writes of CarrierProfile rows."""

    def get_profile(self, user: User) -> Optional[CarrierProfile]:
        return CarrierProfile.objects.filter(user=user).first()

    def write_presence(
        self,
        user: User,
        is_online: bool,
        position: Optional[Position] = None,
    ) -> CarrierProfile:
        """
        Persist the online flag and coordinates in one write.

        Without a position the stored coordinates are cleared, so a carrier
        who goes online with location denied never shows a previous
        session's position.

        Zero rows updated is disambiguated with a follow-up read:
        - row exists → the write was refused (deactivated profile)
        - row absent → the profile is created, never duplicated

        Raises:
            PresenceWriteRejected: user is not a carrier or the profile is deactivated
        """
        if not user.is_carrier or not user.is_active:
            raise PresenceWriteRejected("Only active carriers can change presence")

        now = timezone.now()
        fields = {'is_online': is_online, 'updated_at': now}
        if is_online:
            fields['last_online_at'] = now
        if position is not None:
            fields.update(
                latitude=position.latitude,
                longitude=position.longitude,
                location_updated_at=now,
            )
        else:
            fields.update(latitude=None, longitude=None, location_updated_at=None)

        updated = CarrierProfile.objects.filter(user=user, is_active=True).update(**fields)
        if updated:
            logger.info(
                f"[PRESENCE] {user.phone_number} online={is_online} "
                f"location={'yes' if position else 'no'}"
            )
            profile = CarrierProfile.objects.get(user=user)
            self._publish(profile)
            return profile

        if CarrierProfile.objects.filter(user=user).exists():
            logger.warning(f"[PRESENCE] Write refused for deactivated profile of {user.phone_number}")
            raise PresenceWriteRejected("Carrier profile is deactivated")

        create_fields = {k: v for k, v in fields.items() if k != 'updated_at'}
        with transaction.atomic():
            profile, created = CarrierProfile.objects.get_or_create(
                user=user,
                defaults={
                    'display_name': user.full_name,
                    'carrier_type': CarrierType.CARRIER,
                    'is_setup_complete': False,
                    **create_fields,
                },
            )
        if not created:
            # Created concurrently between our read and insert: apply our write once
            if not CarrierProfile.objects.filter(user=user, is_active=True).update(**fields):
                raise PresenceWriteRejected("Carrier profile is deactivated")
            profile.refresh_from_db()
        else:
            logger.info(f"[PRESENCE] Created carrier profile for {user.phone_number}")

        self._publish(profile)
        return profile

    def set_up_profile(self, user: User, carrier_type: str, display_name: str = '') -> CarrierProfile:
        """
        One-time profile setup: the carrier picks its type.

        Creates the profile, or completes one that a go-online write created
        before setup. The completion is a conditioned update, so two racing
        setups cannot both pick a type.

        Raises:
            PresenceWriteRejected: user is not an active carrier
            ProfileAlreadySetUp: the type was already chosen
        """
        if not user.is_carrier or not user.is_active:
            raise PresenceWriteRejected("Only active carriers have a carrier profile")

        display_name = display_name or user.full_name
        profile, created = CarrierProfile.objects.get_or_create(
            user=user,
            defaults={
                'carrier_type': carrier_type,
                'display_name': display_name,
                'is_setup_complete': True,
            },
        )
        if not created:
            completed = CarrierProfile.objects.filter(user=user, is_setup_complete=False).update(
                carrier_type=carrier_type,
                display_name=display_name,
                is_setup_complete=True,
                updated_at=timezone.now(),
            )
            if not completed:
                raise ProfileAlreadySetUp("Carrier profile is already set up")
            profile.refresh_from_db()

        logger.info(f"[PRESENCE] Profile set up for {user.phone_number} as {carrier_type}")
        self._publish(profile)
        return profile

    def update_location(self, user: User, position: Position) -> bool:
        """Write coordinates for an online, active profile. Returns False otherwise."""
        now = timezone.now()
        updated = CarrierProfile.objects.filter(
            user=user, is_active=True, is_online=True
        ).update(
            latitude=position.latitude,
            longitude=position.longitude,
            location_updated_at=now,
            updated_at=now,
        )
        return bool(updated)

    def is_online(self, user: User) -> bool:
        return CarrierProfile.objects.filter(user=user, is_active=True, is_online=True).exists()

    def online_carriers(self, carrier_type: Optional[str] = None) -> List[CarrierProfile]:
        qs = CarrierProfile.objects.filter(is_active=True, is_online=True).select_related('user')
        if carrier_type:
            qs = qs.filter(carrier_type=carrier_type)
        return list(qs)

    def count_online(self, carrier_type: str) -> int:
        return CarrierProfile.objects.filter(
            is_active=True, is_online=True, carrier_type=carrier_type
        ).count()

    def _publish(self, profile: CarrierProfile) -> None:
        from logistics.events import publish_presence_change
        transaction.on_commit(lambda: publish_presence_change(profile))


presence_store = PresenceStore()


# ============================================
# PRESENCE CONTROLLER (async, per session)
# ============================================

class CarrierPresenceController:
    """
    Owns one carrier's presence for the lifetime of a client session.

    is_online reflects only confirmed writes. Toggles are serialized; going
    offline stops the location loop before the offline write is issued.
    """

    def __init__(
        self,
        user: User,
        store: Optional[PresenceStore] = None,
        location_provider: Optional[LocationProvider] = None,
        fix_timeout: Optional[float] = None,
        emit_interval: Optional[float] = None,
        min_movement_m: Optional[float] = None,
    ):
        self.user = user
        self.store = store or presence_store
        self.location_provider = location_provider
        self.fix_timeout = fix_timeout if fix_timeout is not None else settings.LOCATION_FIX_TIMEOUT
        self.emit_interval = emit_interval if emit_interval is not None else settings.LOCATION_EMIT_INTERVAL
        self.min_movement_m = (
            min_movement_m if min_movement_m is not None else settings.LOCATION_MIN_MOVEMENT_M
        )
        self.last_position: Optional[Position] = None
        self._online = False
        self._lock = asyncio.Lock()
        self._loop = PeriodicTask(
            f'presence-{user.pk}', self.emit_interval, self._emit_location
        )

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def emitting(self) -> bool:
        return self._loop.running

    async def restore(self) -> bool:
        """Pick up the stored flag when a session (re)connects."""
        online = await sync_to_async(self.store.is_online)(self.user)
        self._online = online
        if online:
            self._loop.start()
        return online

    async def set_online(self, online: bool) -> CarrierProfile:
        async with self._lock:
            if online:
                return await self._go_online()
            return await self._go_offline()

    async def _go_online(self) -> CarrierProfile:
        position = await self.acquire_position()
        profile = await sync_to_async(self.store.write_presence)(self.user, True, position)
        self._online = True
        if position is not None:
            self.last_position = position
        self._loop.start()
        return profile

    async def _go_offline(self) -> CarrierProfile:
        await self._loop.stop()
        try:
            profile = await sync_to_async(self.store.write_presence)(self.user, False)
        except Exception:
            if self._online:
                self._loop.start()
            raise
        self._online = False
        return profile

    async def acquire_position(self) -> Optional[Position]:
        """
        Single-shot fix bounded by fix_timeout.

        Permission denial (provider returns None), timeout and provider
        errors all degrade to "no coordinates".
        """
        if self.location_provider is None:
            return None
        try:
            return await asyncio.wait_for(self.location_provider(), timeout=self.fix_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[PRESENCE] Location fix timed out after {self.fix_timeout}s "
                f"for {self.user.phone_number}"
            )
        except Exception as e:
            logger.warning(f"[PRESENCE] Location fix failed for {self.user.phone_number}: {e}")
        return None

    async def report_position(self, position: Position) -> bool:
        """
        Device-pushed position. Written only while online and only when it
        moved at least min_movement_m since the last written position.
        """
        if not self._online:
            return False
        if self.last_position is not None and (
            self.last_position.distance_m(position) < self.min_movement_m
        ):
            return False
        written = await sync_to_async(self.store.update_location)(self.user, position)
        if written:
            self.last_position = position
        return written

    async def _emit_location(self) -> None:
        if not self._online:
            return
        position = await self.acquire_position()
        if position is None:
            return
        if await sync_to_async(self.store.update_location)(self.user, position):
            self.last_position = position

    async def shutdown(self) -> None:
        """Session teardown: stop the loop, keep the stored flag."""
        await self._loop.stop()
