"""
Logistics App Views - Delivery Requests, Matching & Quotes API
"""

import logging
from datetime import timedelta

from rest_framework import mixins, viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView
from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from core.models import CarrierType, UserRole
from core.presence import presence_store
from core.serializers import OnlineCarrierSerializer
from core.views import IsCarrier
from .models import DeliveryRequest, DeliveryStatus
from .serializers import (
    ClaimResultSerializer,
    DeliveryRequestCreateSerializer,
    DeliveryRequestSerializer,
    QuoteRequestSerializer,
    QuoteResponseSerializer,
)
from .services.ledger import ClaimNotAllowed, LedgerError, request_ledger
from .services.matching import OUTCOME_MESSAGES, ClaimOutcome
from .services.pricing import PricingEngine

logger = logging.getLogger(__name__)


class IsRequester(permissions.BasePermission):
    """Senders (and admins) create and retry requests."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in (UserRole.SENDER, UserRole.ADMIN)


def _unavailable(message: str) -> Response:
    return Response(
        {'error': message, 'code': 'unavailable', 'retry': True},
        status=status.HTTP_503_SERVICE_UNAVAILABLE
    )


class DeliveryRequestViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    """
    ViewSet for delivery requests.

    Requester: create, list own, retrieve, retry.
    Carrier: presentable (poll), accept, decline.
    """

    queryset = DeliveryRequest.objects.all()
    serializer_class = DeliveryRequestSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ['status', 'carrier_type']
    lookup_value_regex = '[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}'
    ordering_fields = ['created_at']

    def get_permissions(self):
        if self.action in ['create', 'retry']:
            return [IsRequester()]
        if self.action in ['presentable', 'accept', 'decline']:
            return [IsCarrier()]
        return [permissions.IsAuthenticated()]

    def get_serializer_class(self):
        if self.action == 'create':
            return DeliveryRequestCreateSerializer
        return DeliveryRequestSerializer

    def get_queryset(self):
        user = self.request.user
        qs = DeliveryRequest.objects.select_related('requester', 'assigned_carrier')

        if user.role == UserRole.ADMIN:
            return qs
        elif user.role == UserRole.CARRIER:
            return qs.filter(
                Q(assigned_carrier=user) | Q(
                    status=DeliveryStatus.PENDING,
                    assigned_carrier__isnull=True,
                    carrier_type=self._carrier_type(user),
                )
            )
        return qs.filter(requester=user)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            delivery_request = serializer.save()
        except LedgerError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except DatabaseError:
            logger.exception(f"[API] Request submission failed for {request.user.phone_number}")
            return _unavailable("Could not submit your request, try again.")

        return Response(
            DeliveryRequestSerializer(delivery_request).data,
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'])
    def retry(self, request, pk=None):
        """
        Re-broadcast after the countdown expired.

        409 already_accepted once a carrier won; 409 still_waiting while the
        current broadcast is younger than REQUEST_WAIT_SECONDS.
        """
        delivery_request = self.get_object()
        cutoff = timezone.now() - timedelta(seconds=settings.REQUEST_WAIT_SECONDS)
        try:
            requester = None if request.user.role == UserRole.ADMIN else request.user
            reopened = request_ledger.reopen(delivery_request.pk, requester, broadcast_before=cutoff)
        except DatabaseError:
            logger.exception(f"[API] Retry of {str(pk)[:8]} failed")
            return _unavailable("Could not retry, try again.")

        delivery_request.refresh_from_db()
        data = DeliveryRequestSerializer(delivery_request).data
        if not reopened:
            if delivery_request.status == DeliveryStatus.ACCEPTED:
                return Response(
                    {'error': 'This request was already accepted.', 'code': 'already_accepted', 'request': data},
                    status=status.HTTP_409_CONFLICT
                )
            last_broadcast = delivery_request.reopened_at or delivery_request.created_at
            retry_in = max(1, int((last_broadcast - cutoff).total_seconds()) + 1)
            return Response(
                {
                    'error': 'Still looking for a carrier.',
                    'code': 'still_waiting',
                    'retry_in': retry_in,
                    'request': data,
                },
                status=status.HTTP_409_CONFLICT
            )
        return Response(data)

    @action(detail=False, methods=['get'])
    def presentable(self, request):
        """Carrier poll: open requests for the caller's carrier type, newest first."""
        carrier_type = self._carrier_type(request.user)
        if carrier_type is None:
            return Response(
                {'error': 'No active carrier profile for this account'},
                status=status.HTTP_403_FORBIDDEN
            )
        if not presence_store.is_online(request.user):
            return Response({'is_online': False, 'results': []})

        records = request_ledger.presentable(carrier_type)
        return Response({'is_online': True, 'results': records})

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        """Atomic claim. Losing the race answers 409 no_longer_available."""
        try:
            with transaction.atomic():
                rows = request_ledger.claim(pk, request.user)
        except ClaimNotAllowed as e:
            return Response({'error': str(e), 'code': e.code}, status=status.HTTP_403_FORBIDDEN)
        except DatabaseError:
            logger.exception(f"[API] Claim on {str(pk)[:8]} by {request.user.phone_number} failed")
            return _unavailable("Could not accept the request, try again.")

        outcome = ClaimOutcome.ACCEPTED if rows else ClaimOutcome.UNAVAILABLE
        result = {
            'outcome': outcome.value,
            'success': rows == 1,
            'message': OUTCOME_MESSAGES[outcome],
        }
        if not rows:
            return Response(
                {**ClaimResultSerializer(result).data, 'code': outcome.value},
                status=status.HTTP_409_CONFLICT
            )

        result['request'] = request_ledger.get(pk)
        return Response(ClaimResultSerializer(result).data)

    @action(detail=True, methods=['post'])
    def decline(self, request, pk=None):
        """Declining is local to the carrier's session; the ledger is not touched."""
        return Response({'declined': True, 'request_id': str(pk)})

    def _carrier_type(self, user):
        profile = presence_store.get_profile(user)
        if profile is None or not profile.is_active:
            return None
        return profile.carrier_type


class OnlineCarriersView(APIView):
    """
    Online carriers (map pins and count).

    GET /api/carriers/online/?carrier_type=BIKE
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        raw_type = request.query_params.get('carrier_type')
        carrier_type = CarrierType.normalize(raw_type) if raw_type else None
        if raw_type and carrier_type is None:
            return Response(
                {'carrier_type': [f"Unknown carrier type '{raw_type}'."]},
                status=status.HTTP_400_BAD_REQUEST
            )

        carriers = presence_store.online_carriers(carrier_type)
        return Response({
            'count': len(carriers),
            'results': OnlineCarrierSerializer(carriers, many=True).data,
        })


class QuoteAPIView(APIView):
    """
    Advisory price / ETA quote.

    POST /api/quote/
    {
        "sender_latitude": 6.45, "sender_longitude": 3.39,
        "receiver_latitude": 6.60, "receiver_longitude": 3.35,
        "carrier_type": "BIKE"      (optional: all types when omitted)
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        origin = (data['sender_latitude'], data['sender_longitude'])
        destination = (data['receiver_latitude'], data['receiver_longitude'])
        engine = PricingEngine()

        if data.get('carrier_type'):
            quotes = [engine.quote_route(data['carrier_type'], origin, destination)]
        else:
            quotes = engine.quote_all(origin, destination)

        return Response({'quotes': QuoteResponseSerializer(quotes, many=True).data})
