"""
LOGISTICS App - WebSocket Consumers for Real-time Matching

Provides one live session per connected client:
- CarrierConsumer: presence toggle, location and the matching prompt
- DeliveryRequestConsumer: the requester's countdown for one request

Each consumer owns its controllers, periodic tasks and group
subscriptions, and tears all of them down in disconnect().
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

from core.presence import CarrierPresenceController, Position, PresenceWriteRejected
from logistics.events import (
    BroadcastSubscription,
    carrier_group,
    carrier_type_group,
    request_group,
)
from logistics.services.matching import MatchingEngine
from logistics.services.waiting import RequesterWaitController

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_for_token(token: str):
    """Resolve a SimpleJWT access token to an active user, or None."""
    from core.models import User

    if not token:
        return None
    try:
        user_id = AccessToken(token)['user_id']
    except (TokenError, KeyError) as e:
        logger.info(f"[WS] Rejected token: {e}")
        return None
    return User.objects.filter(pk=user_id, is_active=True).first()


async def resolve_scope_user(scope):
    """Session user from AuthMiddlewareStack, else ?token=<access token>."""
    user = scope.get('user')
    if user is not None and user.is_authenticated:
        return user
    query = parse_qs((scope.get('query_string') or b'').decode())
    token = (query.get('token') or [None])[0]
    return await get_user_for_token(token)


class CarrierConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for the carrier app.

    Clients connect to: ws://host/ws/carrier/

    Events sent by carrier:
    - authenticate: {'token': <access token>} when not authenticated on connect
    - go_online / go_offline: toggle presence
    - location: reply to a location_request ({'denied': true} when refused)
      or a device-pushed position
    - accept / decline: decision on the presented request
    - ping

    Events received by carrier:
    - location_request: the server needs a single position fix
    - presence: confirmed online flag after a toggle
    - request_presented / request_withdrawn / claim_result: matching prompt
    - presence_update: stored presence changed (any session)
    """

    user = None
    presence = None
    engine = None
    subscription = None

    async def connect(self):
        self._location_future: Optional[asyncio.Future] = None
        self._toggle_task: Optional[asyncio.Task] = None

        await self.accept()

        user = await resolve_scope_user(self.scope)
        if user is not None:
            await self.start_session(user)
        else:
            await self.send_json({
                'type': 'connection_established',
                'message': 'Send an authenticate message with your access token.',
            })

    async def disconnect(self, close_code):
        if self._toggle_task is not None and not self._toggle_task.done():
            self._toggle_task.cancel()
        if self._location_future is not None and not self._location_future.done():
            self._location_future.cancel()
        if self.engine is not None:
            await self.engine.stop()
        if self.presence is not None:
            await self.presence.shutdown()
        if self.subscription is not None:
            await self.subscription.close()

        logger.info(f"[WS] Carrier {self.user.phone_number if self.user else '-'} disconnected")

    async def start_session(self, user) -> bool:
        profile = await self.get_carrier_profile(user)
        if profile is None:
            await self.send_json({
                'type': 'error',
                'code': 'not_a_carrier',
                'message': 'No active carrier profile for this account.',
            })
            await self.close(code=4003)
            return False

        self.user = user
        self.presence = CarrierPresenceController(user, location_provider=self.request_location)
        self.engine = MatchingEngine(
            carrier=user,
            carrier_type=profile.carrier_type,
            presence=self.presence,
            emit=self.send_json,
        )
        self.subscription = BroadcastSubscription(self.channel_layer, self.channel_name)
        await self.subscription.subscribe(
            carrier_type_group(profile.carrier_type),
            carrier_group(user.pk),
        )

        is_online = await self.presence.restore()
        self.engine.start()

        await self.send_json({
            'type': 'authenticated',
            'carrier_id': str(user.pk),
            'name': profile.name,
            'carrier_type': profile.carrier_type,
            'is_online': is_online,
        })
        logger.info(f"[WS] Carrier {user.phone_number} connected ({profile.carrier_type})")
        return True

    async def receive_json(self, content):
        """Handle incoming messages from the carrier app."""
        message_type = content.get('type')

        if message_type == 'ping':
            await self.send_json({'type': 'pong'})
            return

        if message_type == 'authenticate':
            if self.user is not None:
                return
            user = await get_user_for_token(content.get('token'))
            if user is None:
                await self.send_json({
                    'type': 'error',
                    'code': 'not_authenticated',
                    'message': 'Invalid or expired token.',
                })
                return
            await self.start_session(user)
            return

        if self.user is None:
            await self.send_json({
                'type': 'error',
                'code': 'not_authenticated',
                'message': 'Authenticate first.',
            })
            return

        if message_type in ('go_online', 'go_offline'):
            if self._toggle_task is not None and not self._toggle_task.done():
                await self.send_json({'type': 'error', 'code': 'toggle_in_progress', 'message': 'Please wait.'})
                return
            # Runs beside the receive loop: going online waits for a later 'location' message
            self._toggle_task = asyncio.ensure_future(self.toggle_presence(message_type == 'go_online'))

        elif message_type == 'location':
            await self.handle_location(content)

        elif message_type == 'accept':
            await self.engine.accept(content.get('request_id'))

        elif message_type == 'decline':
            await self.engine.decline(content.get('request_id'))

    # ============================================
    # Presence
    # ============================================

    async def request_location(self) -> Optional[Position]:
        """Location provider for the presence controller: ask the device."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._location_future = future
        try:
            await self.send_json({'type': 'location_request'})
            return await future
        finally:
            if self._location_future is future:
                self._location_future = None

    async def handle_location(self, content):
        future = self._location_future
        if future is not None and not future.done():
            if content.get('denied'):
                future.set_result(None)
            else:
                future.set_result(Position.from_payload(content))
            return

        position = Position.from_payload(content)
        if position is None:
            await self.send_json({'type': 'error', 'code': 'invalid_location', 'message': 'Invalid coordinates.'})
            return
        written = await self.presence.report_position(position)
        await self.send_json({
            'type': 'location_confirmed',
            'latitude': position.latitude,
            'longitude': position.longitude,
            'written': written,
        })

    async def toggle_presence(self, online: bool):
        try:
            profile = await self.presence.set_online(online)
        except PresenceWriteRejected as e:
            await self.send_json({
                'type': 'error',
                'code': 'presence_rejected',
                'message': str(e),
                'is_online': self.presence.is_online,
            })
            return
        except Exception:
            logger.exception(f"[WS] Presence toggle failed for {self.user.phone_number}")
            await self.send_json({
                'type': 'error',
                'code': 'unavailable',
                'message': 'Could not update your status, try again.',
                'is_online': self.presence.is_online,
            })
            return

        await self.send_json({
            'type': 'presence',
            'is_online': self.presence.is_online,
            'has_location': profile.has_location,
        })
        # Offer (or withdraw) a request right away instead of at the next poll
        await self.engine.poll_once()

    # ============================================
    # Event Handlers (received from channel_layer)
    # ============================================

    async def delivery_request_event(self, event):
        """INSERT/UPDATE on a request of this carrier's type."""
        await self.engine.handle_event(event['event'], event['record'])

    async def presence_update(self, event):
        await self.send_json({
            'type': 'presence_update',
            'is_online': event['is_online'],
            'latitude': event.get('latitude'),
            'longitude': event.get('longitude'),
        })

    # ============================================
    # Database helpers
    # ============================================

    @database_sync_to_async
    def get_carrier_profile(self, user):
        from core.models import CarrierProfile

        if not user.is_carrier:
            return None
        return CarrierProfile.objects.filter(user=user, is_active=True).first()


class DeliveryRequestConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for a requester waiting on one request.

    Clients connect to: ws://host/ws/requests/<request_id>/

    Events sent by requester:
    - retry: re-broadcast after a timeout
    - ping

    Events received by requester:
    - wait_state: state, remaining seconds, assignee, online carriers
    - retry_result
    """

    controller = None
    subscription = None

    async def connect(self):
        self.request_id = str(self.scope['url_route']['kwargs']['request_id'])

        user = await resolve_scope_user(self.scope)
        if user is None:
            await self.close(code=4001)
            return

        if not await self.can_watch(user):
            await self.close(code=4004)
            return

        await self.accept()

        self.subscription = BroadcastSubscription(self.channel_layer, self.channel_name)
        await self.subscription.subscribe(request_group(self.request_id))

        self.controller = RequesterWaitController(
            self.request_id,
            requester=None if user.is_staff else user,
            emit=self.send_json,
        )
        await self.controller.start()

        logger.info(f"[WS] Requester connected to request {self.request_id[:8]}")

    async def disconnect(self, close_code):
        if self.controller is not None:
            await self.controller.stop()
        if self.subscription is not None:
            await self.subscription.close()
        logger.info(f"[WS] Requester disconnected from request {self.request_id[:8]}")

    async def receive_json(self, content):
        message_type = content.get('type')

        if message_type == 'retry':
            success = await self.controller.retry()
            await self.send_json({
                'type': 'retry_result',
                'success': success,
                'state': self.controller.state.value,
            })

        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})

    # ============================================
    # Event Handlers
    # ============================================

    async def delivery_request_event(self, event):
        await self.controller.observe(event['record'])

    # ============================================
    # Database helpers
    # ============================================

    @database_sync_to_async
    def can_watch(self, user) -> bool:
        from logistics.models import DeliveryRequest

        qs = DeliveryRequest.objects.filter(pk=self.request_id)
        if not user.is_staff:
            qs = qs.filter(requester=user)
        return qs.exists()
