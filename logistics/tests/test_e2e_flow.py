"""
E2E Tests for the PeerCarrier matching flow

Requester submits over REST, carriers and the requester are connected
over WebSockets, and every ledger change travels through the real
broadcast path (post_save / ledger -> Celery task -> channel layer).
"""

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.test import TransactionTestCase, override_settings
from rest_framework.test import APIClient

from core.models import CarrierProfile, CarrierType
from logistics.models import DeliveryRequest, DeliveryStatus
from logistics.routing import websocket_urlpatterns
from logistics.tests.helpers import make_carrier, make_sender, receive_until, submission, token_for


application = URLRouter(websocket_urlpatterns)


@override_settings(
    MATCHING_POLL_INTERVAL=0.1,
    LOCATION_FIX_TIMEOUT=1.0,
    LOCATION_EMIT_INTERVAL=60.0,
    REQUEST_WAIT_SECONDS=30,
)
class E2EMatchingFlowTest(TransactionTestCase):
    """
    End-to-end tests for the request lifecycle.
    """

    def setUp(self):
        """Set up test data."""
        self.sender = make_sender(full_name='Test Requester')
        self.carrier_a = make_carrier(CarrierType.BIKE, is_online=True, full_name='Carrier A')
        self.carrier_b = make_carrier(CarrierType.BIKE, is_online=True, full_name='Carrier B')

    async def connect(self, path, user):
        communicator = WebsocketCommunicator(application, f'{path}?token={token_for(user)}')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def connect_carrier(self, user):
        communicator = await self.connect('/ws/carrier/', user)
        await receive_until(communicator, 'authenticated')
        return communicator

    def submit(self, **overrides):
        api = APIClient()
        api.force_authenticate(user=self.sender)
        response = api.post('/api/requests/', submission(**overrides), format='json')
        self.assertEqual(response.status_code, 201, response.data)
        return response.data['id']

    def stored(self, request_id):
        return DeliveryRequest.objects.get(pk=request_id)

    async def test_two_carriers_race_for_one_request(self):
        """
        Complete flow.

        Submit → both carriers see it → A wins → B loses and is told so →
        requester sees the assignment before the countdown ends.
        """
        # 1. BOTH CARRIERS ONLINE AND CONNECTED
        ws_a = await self.connect_carrier(self.carrier_a)
        ws_b = await self.connect_carrier(self.carrier_b)

        # 2. REQUESTER SUBMITS ("Bike" spelling from the app)
        request_id = await sync_to_async(self.submit)(carrier_type='Bike')
        ws_requester = await self.connect(f'/ws/requests/{request_id}/', self.sender)
        waiting = await receive_until(ws_requester, 'wait_state', state='waiting')
        self.assertEqual(waiting['online_carriers'], 2)

        # 3. BOTH ARE PRESENTED THE REQUEST
        presented_a = await receive_until(ws_a, 'request_presented')
        presented_b = await receive_until(ws_b, 'request_presented')
        self.assertEqual(presented_a['request']['id'], request_id)
        self.assertEqual(presented_b['request']['id'], request_id)

        # 4. A ACCEPTS FIRST
        await ws_a.send_json_to({'type': 'accept', 'request_id': request_id})
        result_a = await receive_until(ws_a, 'claim_result')
        self.assertEqual(result_a['outcome'], 'accepted')

        stored = await database_sync_to_async(self.stored)(request_id)
        self.assertEqual(stored.status, DeliveryStatus.ACCEPTED)
        self.assertEqual(stored.assigned_carrier_id, self.carrier_a.pk)

        # 5. B'S PROMPT IS WITHDRAWN, AND ITS LATE ACCEPT LOSES
        withdrawn = await receive_until(ws_b, 'request_withdrawn')
        self.assertEqual(withdrawn['reason'], 'no_longer_available')

        await ws_b.send_json_to({'type': 'accept', 'request_id': request_id})
        result_b = await receive_until(ws_b, 'claim_result')
        self.assertEqual(result_b['outcome'], 'no_longer_available')
        self.assertFalse(result_b['success'])

        stored = await database_sync_to_async(self.stored)(request_id)
        self.assertEqual(stored.assigned_carrier_id, self.carrier_a.pk)

        # 6. REQUESTER SEES THE ASSIGNMENT BEFORE THE DEADLINE
        assigned = await receive_until(ws_requester, 'wait_state', state='assigned')
        self.assertEqual(assigned['assigned_carrier_id'], str(self.carrier_a.pk))
        self.assertGreater(assigned['remaining'], 0)

        # 7. RETRY AFTER THE ASSIGNMENT WAS OBSERVED IS A NO-OP
        await ws_requester.send_json_to({'type': 'retry'})
        retry = await receive_until(ws_requester, 'retry_result')
        self.assertFalse(retry['success'])
        self.assertEqual(retry['state'], 'assigned')

        stored = await database_sync_to_async(self.stored)(request_id)
        self.assertEqual(stored.status, DeliveryStatus.ACCEPTED)
        self.assertEqual(stored.retry_count, 0)

        for communicator in (ws_a, ws_b, ws_requester):
            await communicator.disconnect()

    async def test_decline_leaves_request_for_others(self):
        """A carrier declining does not take the request away from anyone else."""
        ws_a = await self.connect_carrier(self.carrier_a)
        ws_b = await self.connect_carrier(self.carrier_b)

        request_id = await sync_to_async(self.submit)()
        await receive_until(ws_a, 'request_presented')
        await receive_until(ws_b, 'request_presented')

        await ws_a.send_json_to({'type': 'decline', 'request_id': request_id})
        await receive_until(ws_a, 'request_withdrawn', reason='declined')

        stored = await database_sync_to_async(self.stored)(request_id)
        self.assertEqual(stored.status, DeliveryStatus.PENDING)
        self.assertIsNone(stored.assigned_carrier_id)

        await ws_b.send_json_to({'type': 'accept', 'request_id': request_id})
        self.assertTrue((await receive_until(ws_b, 'claim_result'))['success'])

        await ws_a.disconnect()
        await ws_b.disconnect()

    async def test_offline_carrier_is_never_prompted(self):
        await database_sync_to_async(
            CarrierProfile.objects.filter(user=self.carrier_b).update
        )(is_online=False)
        ws_a = await self.connect_carrier(self.carrier_a)
        ws_b = await self.connect_carrier(self.carrier_b)

        request_id = await sync_to_async(self.submit)()
        await receive_until(ws_a, 'request_presented')

        self.assertTrue(await ws_b.receive_nothing(timeout=0.5))

        # Going online brings the open request up right away
        await ws_b.send_json_to({'type': 'go_online'})
        await receive_until(ws_b, 'location_request')
        await ws_b.send_json_to({'type': 'location', 'latitude': 6.5, 'longitude': 3.4})
        presented = await receive_until(ws_b, 'request_presented')
        self.assertEqual(presented['request']['id'], request_id)

        await ws_a.disconnect()
        await ws_b.disconnect()

    async def test_online_without_location_still_receives_requests(self):
        """Location permission denied: online, no coordinates, still matched."""
        carrier = await database_sync_to_async(make_carrier)(CarrierType.BICYCLE, is_online=False)
        ws = await self.connect_carrier(carrier)

        await ws.send_json_to({'type': 'go_online'})
        await receive_until(ws, 'location_request')
        await ws.send_json_to({'type': 'location', 'denied': True})
        presence = await receive_until(ws, 'presence')
        self.assertTrue(presence['is_online'])
        self.assertFalse(presence['has_location'])

        profile = await database_sync_to_async(CarrierProfile.objects.get)(user=carrier)
        self.assertTrue(profile.is_online)
        self.assertIsNone(profile.latitude)
        self.assertIsNone(profile.longitude)

        request_id = await sync_to_async(self.submit)(carrier_type='Bicycle')
        presented = await receive_until(ws, 'request_presented')
        self.assertEqual(presented['request']['id'], request_id)

        await ws.disconnect()
