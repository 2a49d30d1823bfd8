"""
WebSocket consumer tests (carrier session and requester wait session).

TransactionTestCase: database_sync_to_async closes connections, and
commits must really happen so ledger events reach the channel layer.
"""

import asyncio

from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.test import TransactionTestCase, override_settings

from core.models import CarrierProfile, CarrierType
from logistics.models import DeliveryRequest, DeliveryStatus
from logistics.routing import websocket_urlpatterns
from logistics.services.ledger import request_ledger
from logistics.tests.helpers import make_carrier, make_request, make_sender, receive_until, token_for


application = URLRouter(websocket_urlpatterns)


@override_settings(
    MATCHING_POLL_INTERVAL=0.1,
    LOCATION_FIX_TIMEOUT=1.0,
    LOCATION_EMIT_INTERVAL=60.0,
    REQUEST_WAIT_SECONDS=30,
)
class ConsumerTestCase(TransactionTestCase):

    def setUp(self):
        self.sender = make_sender()
        self.carrier = make_carrier(CarrierType.BIKE, is_online=False)

    async def connect_carrier(self, user=None):
        user = user or self.carrier
        communicator = WebsocketCommunicator(application, f'/ws/carrier/?token={token_for(user)}')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def connect_requester(self, request_id, user=None):
        user = user or self.sender
        communicator = WebsocketCommunicator(application, f'/ws/requests/{request_id}/?token={token_for(user)}')
        connected, code = await communicator.connect()
        return communicator, connected, code


# ==========================================
# Carrier session
# ==========================================

class TestCarrierConsumer(ConsumerTestCase):

    async def test_token_in_query_authenticates(self):
        communicator = await self.connect_carrier()

        message = await communicator.receive_json_from()

        self.assertEqual(message['type'], 'authenticated')
        self.assertEqual(message['carrier_type'], CarrierType.BIKE)
        self.assertFalse(message['is_online'])
        await communicator.disconnect()

    async def test_authenticate_message(self):
        communicator = WebsocketCommunicator(application, '/ws/carrier/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        self.assertEqual((await communicator.receive_json_from())['type'], 'connection_established')

        await communicator.send_json_to({'type': 'go_online'})
        self.assertEqual((await communicator.receive_json_from())['code'], 'not_authenticated')

        await communicator.send_json_to({'type': 'authenticate', 'token': 'garbage'})
        self.assertEqual((await communicator.receive_json_from())['code'], 'not_authenticated')

        await communicator.send_json_to({'type': 'authenticate', 'token': token_for(self.carrier)})
        self.assertEqual((await communicator.receive_json_from())['type'], 'authenticated')
        await communicator.disconnect()

    async def test_sender_is_not_a_carrier(self):
        communicator = WebsocketCommunicator(application, f'/ws/carrier/?token={token_for(self.sender)}')
        await communicator.connect()

        message = await communicator.receive_json_from()
        self.assertEqual(message['code'], 'not_a_carrier')
        output = await communicator.receive_output()
        self.assertEqual(output['type'], 'websocket.close')
        self.assertEqual(output['code'], 4003)

    async def test_ping(self):
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        await communicator.send_json_to({'type': 'ping'})

        self.assertEqual((await communicator.receive_json_from())['type'], 'pong')
        await communicator.disconnect()

    async def test_go_online_with_location_fix(self):
        """The server asks for one fix and writes it with the online flag."""
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        await communicator.send_json_to({'type': 'go_online'})
        await receive_until(communicator, 'location_request')
        await communicator.send_json_to({'type': 'location', 'latitude': 6.52, 'longitude': 3.37})
        presence = await receive_until(communicator, 'presence')

        self.assertTrue(presence['is_online'])
        self.assertTrue(presence['has_location'])
        profile = await database_sync_to_async(CarrierProfile.objects.get)(user=self.carrier)
        self.assertTrue(profile.is_online)
        self.assertEqual(profile.latitude, 6.52)
        await communicator.disconnect()

    async def test_go_online_with_location_denied(self):
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        await communicator.send_json_to({'type': 'go_online'})
        await receive_until(communicator, 'location_request')
        await communicator.send_json_to({'type': 'location', 'denied': True})
        presence = await receive_until(communicator, 'presence')

        self.assertTrue(presence['is_online'])
        self.assertFalse(presence['has_location'])
        await communicator.disconnect()

    async def test_go_offline(self):
        await database_sync_to_async(
            CarrierProfile.objects.filter(user=self.carrier).update
        )(is_online=True)
        communicator = await self.connect_carrier()
        self.assertTrue((await receive_until(communicator, 'authenticated'))['is_online'])

        await communicator.send_json_to({'type': 'go_offline'})
        presence = await receive_until(communicator, 'presence')

        self.assertFalse(presence['is_online'])
        profile = await database_sync_to_async(CarrierProfile.objects.get)(user=self.carrier)
        self.assertFalse(profile.is_online)
        await communicator.disconnect()

    async def test_deactivated_profile_cannot_go_online(self):
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')
        await database_sync_to_async(
            CarrierProfile.objects.filter(user=self.carrier).update
        )(is_active=False)

        await communicator.send_json_to({'type': 'go_online'})
        await receive_until(communicator, 'location_request')
        await communicator.send_json_to({'type': 'location', 'denied': True})
        error = await receive_until(communicator, 'error')

        self.assertEqual(error['code'], 'presence_rejected')
        self.assertFalse(error['is_online'])
        count = await database_sync_to_async(CarrierProfile.objects.filter(user=self.carrier).count)()
        self.assertEqual(count, 1)
        await communicator.disconnect()

    async def test_device_location_push_while_online(self):
        await database_sync_to_async(
            CarrierProfile.objects.filter(user=self.carrier).update
        )(is_online=True)
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        await communicator.send_json_to({'type': 'location', 'latitude': 6.6, 'longitude': 3.3})
        confirmed = await receive_until(communicator, 'location_confirmed')

        self.assertTrue(confirmed['written'])
        await communicator.disconnect()


class TestCarrierMatching(ConsumerTestCase):

    def setUp(self):
        super().setUp()
        CarrierProfile.objects.filter(user=self.carrier).update(is_online=True)

    async def test_new_request_is_presented(self):
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        request = await database_sync_to_async(make_request)(self.sender, CarrierType.BIKE)
        presented = await receive_until(communicator, 'request_presented')

        self.assertEqual(presented['request']['id'], str(request.id))
        await communicator.disconnect()

    async def test_other_type_is_not_presented(self):
        await database_sync_to_async(make_request)(self.sender, CarrierType.CAR)
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'authenticated')

        await asyncio.sleep(0.3)

        self.assertTrue(await communicator.receive_nothing(timeout=0.1))
        await communicator.disconnect()

    async def test_accept_over_websocket(self):
        request = await database_sync_to_async(make_request)(self.sender, CarrierType.BIKE)
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'request_presented')

        await communicator.send_json_to({'type': 'accept', 'request_id': str(request.id)})
        result = await receive_until(communicator, 'claim_result')

        self.assertTrue(result['success'])
        self.assertEqual(result['outcome'], 'accepted')
        stored = await database_sync_to_async(DeliveryRequest.objects.get)(pk=request.id)
        self.assertEqual(stored.status, DeliveryStatus.ACCEPTED)
        self.assertEqual(stored.assigned_carrier_id, self.carrier.pk)
        await communicator.disconnect()

    async def test_taken_request_is_withdrawn(self):
        rival = await database_sync_to_async(make_carrier)(CarrierType.BIKE, is_online=True)
        request = await database_sync_to_async(make_request)(self.sender, CarrierType.BIKE)
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'request_presented')

        await database_sync_to_async(request_ledger.claim)(request.id, rival)
        withdrawn = await receive_until(communicator, 'request_withdrawn')

        self.assertEqual(withdrawn['request_id'], str(request.id))
        self.assertEqual(withdrawn['reason'], 'no_longer_available')
        await communicator.disconnect()

    async def test_decline_hides_prompt(self):
        request = await database_sync_to_async(make_request)(self.sender, CarrierType.BIKE)
        communicator = await self.connect_carrier()
        await receive_until(communicator, 'request_presented')

        await communicator.send_json_to({'type': 'decline', 'request_id': str(request.id)})
        withdrawn = await receive_until(communicator, 'request_withdrawn')

        self.assertEqual(withdrawn['reason'], 'declined')
        await asyncio.sleep(0.3)
        self.assertTrue(await communicator.receive_nothing(timeout=0.1))
        stored = await database_sync_to_async(DeliveryRequest.objects.get)(pk=request.id)
        self.assertEqual(stored.status, DeliveryStatus.PENDING)
        await communicator.disconnect()


# ==========================================
# Requester session
# ==========================================

class TestDeliveryRequestConsumer(ConsumerTestCase):

    def setUp(self):
        super().setUp()
        self.request = make_request(self.sender, CarrierType.BIKE)

    async def test_owner_receives_waiting_state(self):
        communicator, connected, _ = await self.connect_requester(self.request.id)
        self.assertTrue(connected)

        state = await receive_until(communicator, 'wait_state')

        self.assertEqual(state['state'], 'waiting')
        self.assertEqual(state['remaining'], 30)
        self.assertEqual(state['online_carriers'], 0)
        await communicator.disconnect()

    async def test_stranger_is_refused(self):
        stranger = await database_sync_to_async(make_sender)()
        _, connected, code = await self.connect_requester(self.request.id, stranger)

        self.assertFalse(connected)
        self.assertEqual(code, 4004)

    async def test_anonymous_is_refused(self):
        communicator = WebsocketCommunicator(application, f'/ws/requests/{self.request.id}/')
        connected, code = await communicator.connect()

        self.assertFalse(connected)
        self.assertEqual(code, 4001)

    async def test_acceptance_is_pushed_to_requester(self):
        communicator, _, _ = await self.connect_requester(self.request.id)
        await receive_until(communicator, 'wait_state', state='waiting')

        await database_sync_to_async(
            CarrierProfile.objects.filter(user=self.carrier).update
        )(is_online=True)
        await database_sync_to_async(request_ledger.claim)(self.request.id, self.carrier)
        state = await receive_until(communicator, 'wait_state', state='assigned')

        self.assertEqual(state['assigned_carrier_id'], str(self.carrier.pk))
        await communicator.disconnect()

    async def test_retry_while_waiting_is_refused(self):
        communicator, _, _ = await self.connect_requester(self.request.id)
        await receive_until(communicator, 'wait_state')

        await communicator.send_json_to({'type': 'retry'})
        result = await receive_until(communicator, 'retry_result')

        self.assertFalse(result['success'])
        await communicator.disconnect()


@override_settings(REQUEST_WAIT_SECONDS=1)
class TestRequesterTimeout(ConsumerTestCase):

    def setUp(self):
        super().setUp()
        self.request = make_request(self.sender, CarrierType.BIKE)

    async def test_timeout_then_retry(self):
        communicator, _, _ = await self.connect_requester(self.request.id)

        timed_out = await receive_until(communicator, 'wait_state', timeout=4, state='timed_out')
        self.assertTrue(timed_out['can_retry'])

        await communicator.send_json_to({'type': 'retry'})
        result = await receive_until(communicator, 'retry_result')

        self.assertTrue(result['success'])
        self.assertEqual(result['state'], 'waiting')
        stored = await database_sync_to_async(DeliveryRequest.objects.get)(pk=self.request.id)
        self.assertEqual(stored.retry_count, 1)
        await communicator.disconnect()
