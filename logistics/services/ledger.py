"""
LOGISTICS App - Request Ledger Service for PeerCarrier

Handles request creation, the atomic carrier claim and the requester's
retry (reopen). Every mutation that races with other clients is a single
conditioned UPDATE; a request row is never read-then-written here.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from asgiref.sync import sync_to_async
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.models import CarrierProfile, CarrierType, User, UserRole
from logistics.models import DeliveryRequest, DeliveryStatus

logger = logging.getLogger(__name__)


class LedgerError(ValueError):
    """Base error for ledger operations."""


class RequestNotFound(LedgerError):
    pass


class ClaimNotAllowed(LedgerError):
    """The user is not allowed to claim (not an active, online carrier)."""

    def __init__(self, message, code='not_allowed'):
        super().__init__(message)
        self.code = code


class RequestLedger:
    """Synchronous ORM access to DeliveryRequest rows."""

    # ============================================
    # READS
    # ============================================

    def get(self, request_id) -> Optional[DeliveryRequest]:
        return DeliveryRequest.objects.filter(pk=request_id).first()

    def snapshot(self, request_id) -> Optional[dict]:
        """Event-shaped snapshot of one request, or None."""
        delivery_request = self.get(request_id)
        return delivery_request.to_event_payload() if delivery_request else None

    def presentable(
        self,
        carrier_type: str,
        exclude_ids: Iterable[str] = (),
        limit: int = 20,
    ) -> List[dict]:
        """
        Requests currently open for claim for a carrier type, newest first.

        Same predicate as the broadcast filter: status PENDING and no assignee.
        """
        qs = DeliveryRequest.objects.filter(
            carrier_type=carrier_type,
            status=DeliveryStatus.PENDING,
            assigned_carrier__isnull=True,
        )
        exclude_ids = [str(pk) for pk in exclude_ids]
        if exclude_ids:
            qs = qs.exclude(pk__in=exclude_ids)
        return [r.to_event_payload() for r in qs.order_by('-created_at')[:limit]]

    # ============================================
    # WRITES
    # ============================================

    def create(self, requester: User, **fields) -> DeliveryRequest:
        """
        Persist a new request, open for claim.

        Status and assignment are forced: a request is always born PENDING
        with no assignee. The INSERT event is published by the post_save
        signal once the transaction commits.
        """
        fields.pop('status', None)
        fields.pop('assigned_carrier', None)
        carrier_type = CarrierType.normalize(fields.pop('carrier_type', None))
        if carrier_type is None:
            raise LedgerError("Unknown carrier type")

        delivery_request = DeliveryRequest.objects.create(
            requester=requester,
            carrier_type=carrier_type,
            status=DeliveryStatus.PENDING,
            assigned_carrier=None,
            **fields,
        )
        logger.info(
            f"[LEDGER] Request {str(delivery_request.id)[:8]} created "
            f"by {requester.phone_number} for {carrier_type}"
        )
        return delivery_request

    def claim(self, request_id, carrier: User) -> int:
        """
        Atomic assignment claim.

        UPDATE ... SET assigned_carrier, status=ACCEPTED
        WHERE id=? AND assigned_carrier IS NULL AND status=PENDING
          AND carrier_type=<carrier's type>

        Returns:
            Number of rows affected: 1 if this carrier won, 0 if the request
            was already taken, reopened-then-taken, or never existed.

        Raises:
            ClaimNotAllowed: if the user is not an active carrier with an
                active profile, or is offline
        """
        if carrier.role != UserRole.CARRIER or not carrier.is_active:
            raise ClaimNotAllowed("Only active carriers can accept requests")

        profile = CarrierProfile.objects.filter(user=carrier).first()
        if profile is None or not profile.is_active:
            raise ClaimNotAllowed("No active carrier profile for this account", code='no_profile')
        if not profile.is_online:
            raise ClaimNotAllowed("Go online to accept requests", code='offline')

        updated = DeliveryRequest.objects.filter(
            pk=request_id,
            assigned_carrier__isnull=True,
            status=DeliveryStatus.PENDING,
            carrier_type=profile.carrier_type,
        ).update(
            assigned_carrier=carrier,
            status=DeliveryStatus.ACCEPTED,
            assigned_at=timezone.now(),
        )

        if updated:
            logger.info(
                f"[LEDGER] Request {str(request_id)[:8]} claimed by {carrier.phone_number}"
            )
            self._publish(request_id)
        else:
            logger.info(
                f"[LEDGER] Claim on {str(request_id)[:8]} by {carrier.phone_number} "
                f"lost (no longer available)"
            )
        return updated

    def reopen(
        self,
        request_id,
        requester: Optional[User] = None,
        broadcast_before: Optional[datetime] = None,
    ) -> int:
        """
        Re-broadcast a request after the requester's countdown expired.

        Clears any stale assignee and sets status back to PENDING, but never
        touches an ACCEPTED row: a concurrent winning claim is not undone.

        broadcast_before: when given, a PENDING request is only reopened if
        its last broadcast (reopened_at, else created_at) is older than this,
        i.e. the requester's countdown has run out.

        Returns:
            Number of rows affected (0 if the request was accepted meanwhile
            or does not belong to requester, or is still being broadcast).
        """
        qs = DeliveryRequest.objects.filter(pk=request_id).exclude(
            status=DeliveryStatus.ACCEPTED
        )
        if broadcast_before is not None:
            qs = qs.filter(
                ~Q(status=DeliveryStatus.PENDING)
                | Q(reopened_at__isnull=True, created_at__lte=broadcast_before)
                | Q(reopened_at__lte=broadcast_before)
            )
        if requester is not None:
            qs = qs.filter(requester=requester)

        updated = qs.update(
            status=DeliveryStatus.PENDING,
            assigned_carrier=None,
            assigned_at=None,
            reopened_at=timezone.now(),
            retry_count=F('retry_count') + 1,
        )
        if updated:
            logger.info(f"[LEDGER] Request {str(request_id)[:8]} reopened for broadcast")
            self._publish(request_id)
        else:
            logger.info(f"[LEDGER] Reopen of {str(request_id)[:8]} skipped (accepted, still broadcasting or not found)")
        return updated

    def _publish(self, request_id) -> None:
        # QuerySet.update() bypasses post_save, so the change is published here
        from logistics.events import publish_request_change
        publish_request_change(request_id, 'UPDATE')


request_ledger = RequestLedger()


# ============================================
# ASYNC ADAPTER
# ============================================

class AsyncRequestLedger:
    """
    Async facade used by the client-side engines.

    ORM calls run through sync_to_async so the event loop never blocks on
    the database.
    """

    def __init__(self, ledger: Optional[RequestLedger] = None):
        self.ledger = ledger or request_ledger

    async def snapshot(self, request_id) -> Optional[dict]:
        return await sync_to_async(self.ledger.snapshot)(request_id)

    async def presentable(self, carrier_type: str, exclude_ids: Iterable[str] = ()) -> List[dict]:
        return await sync_to_async(self.ledger.presentable)(carrier_type, list(exclude_ids))

    async def claim(self, request_id, carrier: User) -> int:
        return await sync_to_async(self._claim_in_transaction)(request_id, carrier)

    async def reopen(self, request_id, requester: Optional[User] = None) -> int:
        return await sync_to_async(self.ledger.reopen)(request_id, requester)

    async def count_online(self, carrier_type: str) -> int:
        from core.presence import presence_store
        return await sync_to_async(presence_store.count_online)(carrier_type)

    @transaction.atomic
    def _claim_in_transaction(self, request_id, carrier: User) -> int:
        return self.ledger.claim(request_id, carrier)
