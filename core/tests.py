"""
PeerCarrier Core Tests
======================

Tests for:
1. Custom User Model (creation, roles)
2. CarrierType normalization and profile immutability
3. PresenceStore (single-write presence, deactivated profiles, profile setup)
4. CarrierPresenceController (location fix, toggles, emission loop)
5. PeriodicTask lifecycle
"""

import asyncio
import uuid
from types import SimpleNamespace
from unittest.mock import patch

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase

from core.models import CarrierProfile, CarrierType, User, UserRole
from core.periodic import PeriodicTask
from core.presence import (
    CarrierPresenceController,
    Position,
    PresenceStore,
    PresenceWriteRejected,
    ProfileAlreadySetUp,
)


LAGOS = Position(6.4541, 3.3947)


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def setUp(self):
        self.sender = User.objects.create_user(
            phone_number='+2348000000001',
            password='testpass123',
            role=UserRole.SENDER,
            full_name='Sender Test',
        )
        self.carrier = User.objects.create_user(
            phone_number='+2348000000002',
            password='testpass123',
            role=UserRole.CARRIER,
            full_name='Carrier Test',
        )

    def test_user_creation_with_phone(self):
        """User should be created with phone number as identifier."""
        self.assertEqual(self.carrier.phone_number, '+2348000000002')
        self.assertTrue(self.carrier.check_password('testpass123'))
        self.assertIsInstance(self.carrier.id, uuid.UUID)

    def test_role_properties(self):
        """is_carrier / is_sender follow the role."""
        self.assertTrue(self.carrier.is_carrier)
        self.assertFalse(self.carrier.is_sender)
        self.assertTrue(self.sender.is_sender)
        self.assertFalse(self.sender.is_carrier)

    def test_phone_number_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(phone_number='', password='x')

    def test_superuser_is_admin(self):
        admin = User.objects.create_superuser('+2348000000009', 'adminpass')
        self.assertEqual(admin.role, UserRole.ADMIN)
        self.assertTrue(admin.is_staff)


class TestCarrierType(SimpleTestCase):

    def test_normalize_accepts_client_spellings(self):
        """Every spelling used by the apps maps to the stored value."""
        self.assertEqual(CarrierType.normalize('BIKE'), 'BIKE')
        self.assertEqual(CarrierType.normalize('bike'), 'BIKE')
        self.assertEqual(CarrierType.normalize(' Bicycle '), 'BICYCLE')
        self.assertEqual(CarrierType.normalize('Car Carrier'), 'CAR')
        self.assertEqual(CarrierType.normalize('Carrier'), 'CARRIER')

    def test_normalize_rejects_unknown(self):
        self.assertIsNone(CarrierType.normalize('truck'))
        self.assertIsNone(CarrierType.normalize(''))
        self.assertIsNone(CarrierType.normalize(None))


class TestCarrierProfile(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(
            phone_number='+2348000000010', password='testpass123', role=UserRole.CARRIER,
            full_name='Femi',
        )
        self.profile = CarrierProfile.objects.create(user=self.user, carrier_type=CarrierType.BIKE)

    def test_carrier_type_is_immutable(self):
        """The matching key cannot change once the profile exists."""
        self.profile.carrier_type = CarrierType.CAR
        with self.assertRaises(ValidationError):
            self.profile.save()
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.carrier_type, CarrierType.BIKE)

    def test_type_can_be_chosen_before_setup(self):
        CarrierProfile.objects.filter(pk=self.profile.pk).update(is_setup_complete=False)
        self.profile.refresh_from_db()

        self.profile.carrier_type = CarrierType.CAR
        self.profile.save()

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.carrier_type, CarrierType.CAR)

    def test_other_fields_remain_editable(self):
        self.profile.display_name = 'Femi B.'
        self.profile.save()
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.display_name, 'Femi B.')

    def test_has_location_requires_online(self):
        """Coordinates only count while the carrier is online."""
        self.profile.latitude, self.profile.longitude = LAGOS.latitude, LAGOS.longitude
        self.assertFalse(self.profile.has_location)
        self.profile.is_online = True
        self.assertTrue(self.profile.has_location)

    def test_name_falls_back_to_user(self):
        self.assertEqual(self.profile.name, 'Femi')


# ==========================================
# Presence Store
# ==========================================

class TestPresenceStore(TestCase):
    """Tests for the synchronous presence store."""

    def setUp(self):
        self.store = PresenceStore()
        self.user = User.objects.create_user(
            phone_number='+2348000000020', password='testpass123', role=UserRole.CARRIER,
        )
        self.profile = CarrierProfile.objects.create(user=self.user, carrier_type=CarrierType.BIKE)

    def test_go_online_with_position_is_one_write(self):
        """Flag and coordinates land together."""
        profile = self.store.write_presence(self.user, True, LAGOS)

        self.assertTrue(profile.is_online)
        self.assertEqual(profile.latitude, LAGOS.latitude)
        self.assertEqual(profile.longitude, LAGOS.longitude)
        self.assertIsNotNone(profile.location_updated_at)
        self.assertIsNotNone(profile.last_online_at)

    def test_go_online_without_position_keeps_coordinates_empty(self):
        profile = self.store.write_presence(self.user, True)
        self.assertTrue(profile.is_online)
        self.assertFalse(profile.has_location)

    def test_going_offline_clears_coordinates(self):
        self.store.write_presence(self.user, True, LAGOS)

        profile = self.store.write_presence(self.user, False)

        self.assertFalse(profile.is_online)
        self.assertIsNone(profile.latitude)
        self.assertIsNone(profile.longitude)
        self.assertIsNone(profile.location_updated_at)

    def test_back_online_without_position_drops_previous_coordinates(self):
        """Location denied in a new session: online with no pin, not last session's."""
        self.store.write_presence(self.user, True, LAGOS)
        self.store.write_presence(self.user, False)

        profile = self.store.write_presence(self.user, True)

        self.assertTrue(profile.is_online)
        self.assertIsNone(profile.latitude)
        self.assertIsNone(profile.longitude)
        self.assertFalse(profile.has_location)

    def test_online_again_without_position_while_still_online(self):
        self.store.write_presence(self.user, True, LAGOS)

        profile = self.store.write_presence(self.user, True)

        self.assertIsNone(profile.latitude)
        self.assertFalse(profile.has_location)

    def test_deactivated_profile_is_rejected_not_duplicated(self):
        """Zero rows updated on an existing row means refused, never a new profile."""
        CarrierProfile.objects.filter(pk=self.profile.pk).update(is_active=False)

        with self.assertRaises(PresenceWriteRejected):
            self.store.write_presence(self.user, True)

        self.assertEqual(CarrierProfile.objects.filter(user=self.user).count(), 1)
        self.profile.refresh_from_db()
        self.assertFalse(self.profile.is_online)

    def test_missing_profile_is_created_once(self):
        """A carrier without a profile gets exactly one."""
        newcomer = User.objects.create_user(
            phone_number='+2348000000021', password='testpass123', role=UserRole.CARRIER,
            full_name='New Carrier',
        )
        self.store.write_presence(newcomer, True)
        self.store.write_presence(newcomer, False)

        profiles = CarrierProfile.objects.filter(user=newcomer)
        self.assertEqual(profiles.count(), 1)
        self.assertEqual(profiles.first().carrier_type, CarrierType.CARRIER)
        self.assertFalse(profiles.first().is_setup_complete)
        self.assertFalse(profiles.first().is_online)

    def test_set_up_new_profile(self):
        newcomer = User.objects.create_user(
            phone_number='+2348000000024', password='testpass123', role=UserRole.CARRIER,
            full_name='Tolu',
        )

        profile = self.store.set_up_profile(newcomer, CarrierType.BICYCLE)

        self.assertEqual(profile.carrier_type, CarrierType.BICYCLE)
        self.assertEqual(profile.display_name, 'Tolu')
        self.assertTrue(profile.is_setup_complete)

    def test_set_up_completes_profile_created_by_going_online(self):
        newcomer = User.objects.create_user(
            phone_number='+2348000000025', password='testpass123', role=UserRole.CARRIER,
        )
        self.store.write_presence(newcomer, True)

        profile = self.store.set_up_profile(newcomer, CarrierType.BIKE, 'Speedy')

        self.assertEqual(profile.carrier_type, CarrierType.BIKE)
        self.assertEqual(profile.display_name, 'Speedy')
        self.assertTrue(profile.is_online)
        self.assertEqual(CarrierProfile.objects.filter(user=newcomer).count(), 1)
        with self.assertRaises(ProfileAlreadySetUp):
            self.store.set_up_profile(newcomer, CarrierType.CAR)

    def test_set_up_refused_once_type_chosen(self):
        with self.assertRaises(ProfileAlreadySetUp):
            self.store.set_up_profile(self.user, CarrierType.CAR)
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.carrier_type, CarrierType.BIKE)

    def test_non_carrier_cannot_write_presence(self):
        sender = User.objects.create_user(
            phone_number='+2348000000022', password='testpass123', role=UserRole.SENDER,
        )
        with self.assertRaises(PresenceWriteRejected):
            self.store.write_presence(sender, True)
        self.assertFalse(CarrierProfile.objects.filter(user=sender).exists())

    def test_update_location_only_while_online(self):
        self.assertFalse(self.store.update_location(self.user, LAGOS))

        self.store.write_presence(self.user, True)
        self.assertTrue(self.store.update_location(self.user, LAGOS))
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.latitude, LAGOS.latitude)

    def test_online_carriers_by_type(self):
        other = User.objects.create_user(
            phone_number='+2348000000023', password='testpass123', role=UserRole.CARRIER,
        )
        CarrierProfile.objects.create(user=other, carrier_type=CarrierType.CAR, is_online=True)
        self.store.write_presence(self.user, True)

        self.assertEqual(self.store.count_online(CarrierType.BIKE), 1)
        self.assertEqual(self.store.count_online(CarrierType.CAR), 1)
        self.assertEqual(len(self.store.online_carriers()), 2)
        self.assertEqual(
            [p.user_id for p in self.store.online_carriers(CarrierType.BIKE)],
            [self.user.pk]
        )

    def test_write_publishes_after_commit(self):
        """The carrier's own sessions are told once the write commits."""
        with patch('logistics.events.publish_presence_change') as publish:
            with self.captureOnCommitCallbacks(execute=True):
                self.store.write_presence(self.user, True)

        publish.assert_called_once()
        self.assertTrue(publish.call_args[0][0].is_online)


# ==========================================
# Presence Controller
# ==========================================

class FakeStore:
    """Sync store double recording calls."""

    def __init__(self, online=False, reject=False):
        self.online = online
        self.reject = reject
        self.fail_offline = False
        self.writes = []
        self.locations = []
        self.controller = None
        self.loop_running_at_write = None

    def is_online(self, user):
        return self.online

    def write_presence(self, user, is_online, position=None):
        if self.controller is not None:
            self.loop_running_at_write = self.controller.emitting
        if self.reject:
            raise PresenceWriteRejected("Carrier profile is deactivated")
        if not is_online and self.fail_offline:
            raise ConnectionError("store unreachable")
        self.writes.append((is_online, position))
        self.online = is_online
        return SimpleNamespace(
            is_online=is_online,
            has_location=position is not None,
        )

    def update_location(self, user, position):
        if not self.online:
            return False
        self.locations.append(position)
        return True


def fake_user():
    return SimpleNamespace(pk=uuid.uuid4(), phone_number='+2348000000030')


def provider_returning(position):
    async def provider():
        return position
    return provider


class TestCarrierPresenceController(SimpleTestCase):
    """Tests for go-online / go-offline and location emission."""

    def make_controller(self, store, provider=None, **kwargs):
        kwargs.setdefault('fix_timeout', 0.05)
        kwargs.setdefault('emit_interval', 0.01)
        kwargs.setdefault('min_movement_m', 20.0)
        controller = CarrierPresenceController(fake_user(), store=store, location_provider=provider, **kwargs)
        store.controller = controller
        return controller

    async def test_go_online_with_fix(self):
        """A fix within the timeout is written with the online flag."""
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(LAGOS))

        await controller.set_online(True)

        self.assertEqual(store.writes, [(True, LAGOS)])
        self.assertTrue(controller.is_online)
        self.assertTrue(controller.emitting)
        self.assertEqual(controller.last_position, LAGOS)
        await controller.shutdown()

    async def test_fix_timeout_degrades_to_online_without_location(self):
        """A slow GPS never blocks going online."""
        async def slow_provider():
            await asyncio.sleep(1)
            return LAGOS

        store = FakeStore()
        controller = self.make_controller(store, slow_provider)

        await controller.set_online(True)

        self.assertEqual(store.writes, [(True, None)])
        self.assertTrue(controller.is_online)
        await controller.shutdown()

    async def test_permission_denied_degrades_to_online_without_location(self):
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(None))

        await controller.set_online(True)

        self.assertEqual(store.writes, [(True, None)])
        self.assertTrue(controller.is_online)
        await controller.shutdown()

    async def test_provider_error_degrades(self):
        async def broken_provider():
            raise RuntimeError("gps off")

        store = FakeStore()
        controller = self.make_controller(store, broken_provider)

        await controller.set_online(True)
        self.assertEqual(store.writes, [(True, None)])
        await controller.shutdown()

    async def test_rejected_write_leaves_flag_off(self):
        """is_online only reflects confirmed writes."""
        store = FakeStore(reject=True)
        controller = self.make_controller(store, provider_returning(LAGOS))

        with self.assertRaises(PresenceWriteRejected):
            await controller.set_online(True)

        self.assertFalse(controller.is_online)
        self.assertFalse(controller.emitting)

    async def test_go_offline_stops_loop_before_write(self):
        """No location write can land after the offline write."""
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(LAGOS))
        await controller.set_online(True)

        await controller.set_online(False)

        self.assertFalse(store.loop_running_at_write)
        self.assertFalse(controller.is_online)
        self.assertFalse(controller.emitting)
        self.assertEqual(store.writes[-1], (False, None))

    async def test_failed_offline_write_keeps_session_online(self):
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(LAGOS))
        await controller.set_online(True)
        store.fail_offline = True

        with self.assertRaises(ConnectionError):
            await controller.set_online(False)

        self.assertTrue(controller.is_online)
        self.assertTrue(controller.emitting)
        await controller.shutdown()

    async def test_restore_picks_up_stored_flag(self):
        store = FakeStore(online=True)
        controller = self.make_controller(store)

        self.assertTrue(await controller.restore())
        self.assertTrue(controller.emitting)
        await controller.shutdown()
        self.assertFalse(controller.emitting)

    async def test_report_position_ignored_while_offline(self):
        store = FakeStore()
        controller = self.make_controller(store)

        self.assertFalse(await controller.report_position(LAGOS))
        self.assertEqual(store.locations, [])

    async def test_report_position_movement_threshold(self):
        """Jitter under the threshold is not written."""
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(LAGOS), emit_interval=60)
        await controller.set_online(True)

        nearby = Position(LAGOS.latitude + 0.00005, LAGOS.longitude)  # ~5m
        far = Position(LAGOS.latitude + 0.001, LAGOS.longitude)       # ~110m

        self.assertFalse(await controller.report_position(nearby))
        self.assertTrue(await controller.report_position(far))
        self.assertEqual(store.locations, [far])
        self.assertEqual(controller.last_position, far)
        await controller.shutdown()

    async def test_emission_loop_writes_positions(self):
        store = FakeStore()
        controller = self.make_controller(store, provider_returning(LAGOS), emit_interval=0.01)
        await controller.set_online(True)

        await asyncio.sleep(0.05)
        await controller.set_online(False)
        emitted = len(store.locations)
        await asyncio.sleep(0.03)

        self.assertGreater(emitted, 0)
        self.assertEqual(len(store.locations), emitted)


class TestPosition(SimpleTestCase):

    def test_from_payload(self):
        self.assertEqual(Position.from_payload({'latitude': '6.5', 'longitude': 3.4}), Position(6.5, 3.4))
        self.assertIsNone(Position.from_payload({'latitude': 95, 'longitude': 3.4}))
        self.assertIsNone(Position.from_payload({'latitude': 'x'}))
        self.assertIsNone(Position.from_payload(None))

    def test_distance(self):
        self.assertAlmostEqual(LAGOS.distance_m(LAGOS), 0.0)
        one_degree = Position(0, 0).distance_m(Position(1, 0))
        self.assertAlmostEqual(one_degree / 1000, 111.19, places=1)


# ==========================================
# Periodic Task
# ==========================================

class TestPeriodicTask(SimpleTestCase):

    async def test_runs_until_stopped(self):
        calls = []

        async def callback():
            calls.append(1)

        task = PeriodicTask('test', 0.01, callback, run_immediately=True)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        count = len(calls)
        await asyncio.sleep(0.03)

        self.assertGreater(count, 1)
        self.assertEqual(len(calls), count)
        self.assertFalse(task.running)

    async def test_failing_iteration_does_not_kill_loop(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        async with PeriodicTask('flaky', 0.01, flaky, run_immediately=True) as task:
            await asyncio.sleep(0.05)
            self.assertTrue(task.running)
        self.assertGreater(len(calls), 1)

    async def test_cancel_from_inside_callback(self):
        calls = []
        holder = {}

        async def once():
            calls.append(1)
            holder['task'].cancel()

        holder['task'] = PeriodicTask('once', 0.01, once, run_immediately=True)
        holder['task'].start()
        await asyncio.sleep(0.05)

        self.assertEqual(len(calls), 1)
        self.assertFalse(holder['task'].running)
        await holder['task'].stop()

    async def test_start_is_idempotent(self):
        async def noop():
            return None

        task = PeriodicTask('noop', 10, noop)
        task.start()
        first = task._task
        task.start()
        self.assertIs(task._task, first)
        await task.stop()

    def test_interval_must_be_positive(self):
        async def noop():
            return None

        with self.assertRaises(ValueError):
            PeriodicTask('bad', 0, noop)
