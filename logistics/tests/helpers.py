"""
Shared builders and in-memory fakes for the logistics tests.
"""

import asyncio
import uuid
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from django.utils import timezone
from rest_framework_simplejwt.tokens import AccessToken

from core.models import CarrierProfile, CarrierType, User, UserRole
from logistics.models import DeliveryRequest, DeliveryStatus


_phone_counter = [0]


def next_phone() -> str:
    _phone_counter[0] += 1
    return f"+23480{_phone_counter[0]:08d}"


def make_sender(**extra) -> User:
    return User.objects.create_user(
        phone_number=extra.pop('phone_number', next_phone()),
        password='testpass123',
        role=UserRole.SENDER,
        full_name=extra.pop('full_name', 'Ada Sender'),
        **extra
    )


def make_carrier(carrier_type=CarrierType.BIKE, is_online=False, latitude=None, longitude=None, **extra) -> User:
    user = User.objects.create_user(
        phone_number=extra.pop('phone_number', next_phone()),
        password='testpass123',
        role=UserRole.CARRIER,
        full_name=extra.pop('full_name', 'Bayo Carrier'),
    )
    CarrierProfile.objects.create(
        user=user,
        carrier_type=carrier_type,
        display_name=user.full_name,
        is_online=is_online,
        latitude=latitude,
        longitude=longitude,
        **extra
    )
    return user


def make_request(requester: User, carrier_type=CarrierType.BIKE, **fields) -> DeliveryRequest:
    defaults = {
        'sender_name': 'Ada',
        'sender_contact': '+2348011111111',
        'sender_location': '12 Broad Street, Lagos',
        'sender_latitude': 6.4541,
        'sender_longitude': 3.3947,
        'receiver_name': 'Chidi',
        'receiver_contact': '+2348022222222',
        'receiver_location': '3 Allen Avenue, Ikeja',
        'receiver_latitude': 6.6018,
        'receiver_longitude': 3.3515,
        'item_type': 'Documents',
        'quantity': 1,
        'price': '4500.00',
    }
    defaults.update(fields)
    return DeliveryRequest.objects.create(requester=requester, carrier_type=carrier_type, **defaults)


def request_record(carrier_type='BIKE', created_at=None, **overrides) -> dict:
    """Event-shaped record, as produced by DeliveryRequest.to_event_payload()."""
    record = {
        'id': str(uuid.uuid4()),
        'requester_id': str(uuid.uuid4()),
        'carrier_type': carrier_type,
        'status': DeliveryStatus.PENDING.value,
        'assigned_carrier_id': None,
        'item_type': 'Documents',
        'price': '4500.00',
        'created_at': created_at or timezone.now().isoformat(),
        'retry_count': 0,
    }
    record.update(overrides)
    return record


class FakeCarrier:
    def __init__(self, pk=None):
        self.pk = pk or uuid.uuid4()


class FakePresence:
    def __init__(self, is_online=True):
        self.is_online = is_online


class Recorder:
    """Async emit callable that keeps every message."""

    def __init__(self):
        self.messages: List[dict] = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    def of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.messages if m['type'] == message_type]

    @property
    def last(self) -> Optional[dict]:
        return self.messages[-1] if self.messages else None


class FakeLedger:
    """
    In-memory stand-in for AsyncRequestLedger with the same conditioned
    claim / reopen semantics.
    """

    def __init__(self, records=(), online_count=0):
        self.records: Dict[str, dict] = {r['id']: dict(r) for r in records}
        self.online_count = online_count
        self.fail_claims = False
        self.fail_reads = False
        self.fail_reopen = False
        self.claims: List[tuple] = []
        self.reopens: List[str] = []

    def add(self, record: dict) -> dict:
        self.records[record['id']] = dict(record)
        return record

    async def snapshot(self, request_id):
        if self.fail_reads:
            raise ConnectionError("ledger unreachable")
        record = self.records.get(str(request_id))
        return dict(record) if record else None

    async def presentable(self, carrier_type, exclude_ids=()):
        if self.fail_reads:
            raise ConnectionError("ledger unreachable")
        rows = [
            dict(r) for r in self.records.values()
            if r['carrier_type'] == carrier_type
            and r['status'] == DeliveryStatus.PENDING
            and not r['assigned_carrier_id']
            and r['id'] not in set(exclude_ids)
        ]
        return sorted(rows, key=lambda r: r['created_at'], reverse=True)

    async def claim(self, request_id, carrier):
        self.claims.append((str(request_id), str(carrier.pk)))
        if self.fail_claims:
            raise ConnectionError("ledger unreachable")
        record = self.records.get(str(request_id))
        if record is None or record['assigned_carrier_id'] or record['status'] != DeliveryStatus.PENDING:
            return 0
        record['assigned_carrier_id'] = str(carrier.pk)
        record['status'] = DeliveryStatus.ACCEPTED.value
        return 1

    async def reopen(self, request_id, requester=None):
        self.reopens.append(str(request_id))
        if self.fail_reopen:
            raise ConnectionError("ledger unreachable")
        record = self.records.get(str(request_id))
        if record is None or record['status'] == DeliveryStatus.ACCEPTED:
            return 0
        record.update(
            status=DeliveryStatus.PENDING.value,
            assigned_carrier_id=None,
            retry_count=record.get('retry_count', 0) + 1,
        )
        return 1

    async def count_online(self, carrier_type):
        return self.online_count


def submission(**overrides) -> dict:
    """Request body as sent by the requester app."""
    data = {
        'carrier_type': 'Bike',
        'sender_name': 'Ada',
        'sender_contact': '+2348011111111',
        'sender_location': '12 Broad Street, Lagos',
        'sender_latitude': 6.4541,
        'sender_longitude': 3.3947,
        'receiver_name': 'Chidi',
        'receiver_contact': '+2348022222222',
        'receiver_location': '3 Allen Avenue, Ikeja',
        'receiver_latitude': 6.6018,
        'receiver_longitude': 3.3515,
        'item_type': 'Documents',
        'quantity': 2,
        'insurance': True,
        'delivery_method': 'HOME',
        'price': '4500.00',
    }
    data.update(overrides)
    return data


def directions_response(distance_m=4000, duration_s=720, status='OK'):
    """Mocked requests.Response for the Directions API."""
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {
        'status': status,
        'routes': [{
            'legs': [{
                'distance': {'value': distance_m},
                'duration': {'value': duration_s},
            }],
            'overview_polyline': {'points': 'abc123'},
        }] if status == 'OK' else [],
    }
    return response


# ==========================================
# WebSocket helpers
# ==========================================

def token_for(user) -> str:
    return str(AccessToken.for_user(user))


async def receive_until(communicator, message_type, timeout=3.0, **match):
    """Skip messages until one of the given type (and field values) arrives."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise AssertionError(f"No '{message_type}' message received")
        message = await communicator.receive_json_from(timeout=remaining)
        if message.get('type') == message_type and all(message.get(k) == v for k, v in match.items()):
            return message
