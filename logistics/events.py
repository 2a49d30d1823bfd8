"""
LOGISTICS App - Real-time Event Broadcasting

Utility functions to broadcast ledger and presence changes via Django
Channels. Used by signals, the ledger and the presence store.

Groups:
- carrier_type_<TYPE>      carriers of one type (request INSERT/UPDATE)
- delivery_request_<id>    the requester waiting on one request
- carrier_<user_id>        one carrier's own presence changes
"""

import logging
from typing import Iterable, Set

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone
from kombu.exceptions import OperationalError

logger = logging.getLogger(__name__)


EVENT_INSERT = 'INSERT'
EVENT_UPDATE = 'UPDATE'


def carrier_type_group(carrier_type: str) -> str:
    return f'carrier_type_{carrier_type}'


def request_group(request_id) -> str:
    return f'delivery_request_{request_id}'


def carrier_group(user_id) -> str:
    return f'carrier_{user_id}'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group."""
    channel_layer = get_channel_layer()
    if not channel_layer:
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.error(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


# ============================================
# REQUEST EVENTS
# ============================================

def publish_request_event(record: dict, event: str) -> int:
    """
    Fan a request snapshot out to its carrier-type group and to the
    requester's request group.

    Returns:
        Number of groups reached
    """
    message = {
        'type': 'delivery_request_event',
        'event': event,
        'record': record,
        'timestamp': timezone.now().isoformat(),
    }
    sent = 0
    sent += _send_group_event(carrier_type_group(record['carrier_type']), message)
    sent += _send_group_event(request_group(record['id']), message)

    logger.debug(
        f"[EVENTS] {event} {record['id'][:8]} -> {record['carrier_type']} "
        f"status={record['status']}"
    )
    return sent


def publish_request_change(request_id, event: str = EVENT_UPDATE) -> None:
    """
    Schedule publication of the current snapshot once the surrounding
    transaction commits (immediately when not in a transaction).
    """
    request_id = str(request_id)
    transaction.on_commit(lambda: _dispatch_request_event(request_id, event))


def _dispatch_request_event(request_id: str, event: str) -> None:
    from logistics.tasks import broadcast_request_event

    try:
        broadcast_request_event.delay(request_id, event)
    except OperationalError as e:
        # Broker unreachable: publish inline rather than drop the event
        logger.warning(f"[EVENTS] Queueing {event} {request_id[:8]} failed ({e}), sending inline")
        broadcast_request_event(request_id, event)


# ============================================
# PRESENCE EVENTS
# ============================================

def publish_presence_change(profile) -> bool:
    """Notify the carrier's own sessions that their stored presence changed."""
    return _send_group_event(
        carrier_group(profile.user_id),
        {
            'type': 'presence_update',
            'is_online': profile.is_online,
            'carrier_type': profile.carrier_type,
            'latitude': profile.latitude,
            'longitude': profile.longitude,
            'timestamp': timezone.now().isoformat(),
        }
    )


# ============================================
# SUBSCRIPTIONS
# ============================================

class BroadcastSubscription:
    """
    Group membership of one consumer channel, as an explicit resource.

    subscribe() adds the channel to groups, close() removes it from all
    of them. close() is idempotent and called from consumer disconnect().
    """

    def __init__(self, channel_layer, channel_name: str):
        self.channel_layer = channel_layer
        self.channel_name = channel_name
        self.groups: Set[str] = set()
        self.closed = False

    async def subscribe(self, *groups: str) -> None:
        if self.closed:
            raise RuntimeError("Subscription is closed")
        for group in groups:
            if group in self.groups:
                continue
            await self.channel_layer.group_add(group, self.channel_name)
            self.groups.add(group)

    async def unsubscribe(self, *groups: str) -> None:
        await self._discard(groups)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._discard(list(self.groups))

    async def _discard(self, groups: Iterable[str]) -> None:
        for group in list(groups):
            if group not in self.groups:
                continue
            self.groups.discard(group)
            try:
                await self.channel_layer.group_discard(group, self.channel_name)
            except Exception as e:
                logger.warning(f"[EVENTS] group_discard {group} failed: {e}")
