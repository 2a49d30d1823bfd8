"""
LOGISTICS App - Matching Engine (carrier side)

One engine per connected carrier session. It presents at most one open
request at a time and turns the carrier's decision into a ledger claim.

Two producers feed the same reducer:
- push: broadcast events for the carrier's type (handle_event)
- poll: a periodic re-query of the ledger (reconcile), authoritative

Whichever arrives, the outcome goes through _present/_withdraw, so the
prompt shown to the carrier never depends on which producer was faster.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, Optional

from django.conf import settings

from core.periodic import PeriodicTask
from logistics.models import DeliveryStatus
from logistics.services.ledger import AsyncRequestLedger, ClaimNotAllowed

logger = logging.getLogger(__name__)


Emit = Callable[[dict], Awaitable[None]]


async def _discard(message: dict) -> None:
    return None


class ClaimOutcome(str, Enum):
    ACCEPTED = 'accepted'
    UNAVAILABLE = 'no_longer_available'
    FAILED = 'failed'


OUTCOME_MESSAGES = {
    ClaimOutcome.ACCEPTED: "Delivery accepted!",
    ClaimOutcome.UNAVAILABLE: "Request already taken by another carrier.",
    ClaimOutcome.FAILED: "Could not reach the server, the request will be offered again.",
}

WITHDRAW_MESSAGES = {
    'accepted': "You are assigned to this delivery.",
    'no_longer_available': "This request is no longer available.",
    'offline': "You are offline.",
    'declined': "",
}


def is_presentable(record: Optional[dict]) -> bool:
    """Open for claim: PENDING (or its deprecated alias) and nobody assigned."""
    if not record:
        return False
    return (
        DeliveryStatus.normalize(record.get('status')) == DeliveryStatus.PENDING
        and not record.get('assigned_carrier_id')
    )


def _is_newer(candidate: dict, current: dict) -> bool:
    return (candidate.get('created_at') or '') > (current.get('created_at') or '')


class MatchingEngine:
    """
    Carrier-side matching state machine.

    Args:
        carrier: the carrier User
        carrier_type: the carrier's type (broadcast filter)
        presence: anything with an `is_online` attribute (CarrierPresenceController)
        ledger: AsyncRequestLedger or a compatible fake
        emit: async callable receiving every prompt change
        poll_interval: seconds between reconciliation polls
    """

    def __init__(
        self,
        carrier,
        carrier_type: str,
        presence,
        ledger: Optional[AsyncRequestLedger] = None,
        emit: Optional[Emit] = None,
        poll_interval: Optional[float] = None,
    ):
        self.carrier = carrier
        self.carrier_id = str(carrier.pk)
        self.carrier_type = carrier_type
        self.presence = presence
        self.ledger = ledger or AsyncRequestLedger()
        self.emit = emit or _discard
        self.poll_interval = poll_interval if poll_interval is not None else settings.MATCHING_POLL_INTERVAL

        self.presented: Optional[dict] = None
        self.notice: Optional[str] = None
        # request id -> retry_count at decline time; a re-broadcast is offered again
        self.declined: Dict[str, int] = {}

        self._lock = asyncio.Lock()
        self._poller = PeriodicTask(
            f'matching-{self.carrier_id[:8]}', self.poll_interval, self.poll_once,
            run_immediately=True,
        )

    @property
    def is_online(self) -> bool:
        return bool(self.presence.is_online)

    # ============================================
    # LIFECYCLE
    # ============================================

    def start(self) -> None:
        self._poller.start()

    async def stop(self) -> None:
        await self._poller.stop()

    @property
    def polling(self) -> bool:
        return self._poller.running

    # ============================================
    # PRODUCERS
    # ============================================

    async def handle_event(self, event: str, record: dict) -> None:
        """Push producer: INSERT/UPDATE event from the broadcast channel."""
        if event not in ('INSERT', 'UPDATE') or not record:
            return
        async with self._lock:
            if not self.is_online:
                await self._withdraw('offline')
                return
            if record.get('carrier_type') != self.carrier_type:
                return

            current = self.presented
            if is_presentable(record):
                if self._was_declined(record):
                    return
                if current is None or current['id'] == record['id'] or _is_newer(record, current):
                    await self._present(record)
            elif current is not None and current['id'] == record['id']:
                await self._withdraw(self._withdraw_reason(record))

    async def poll_once(self) -> None:
        """Poll producer: re-query the ledger (fallback for missed pushes)."""
        if not self.is_online:
            async with self._lock:
                await self._withdraw('offline')
            return
        try:
            records = await self.ledger.presentable(self.carrier_type)
        except Exception as e:
            # Read path: keep the current prompt until the next tick
            logger.warning(f"[MATCHING] Poll failed for carrier {self.carrier_id[:8]}: {e}")
            return
        await self.reconcile(records)

    async def reconcile(self, records: Iterable[dict]) -> None:
        """Apply an authoritative list of open requests (newest first)."""
        async with self._lock:
            if not self.is_online:
                await self._withdraw('offline')
                return
            candidates = [
                r for r in records
                if is_presentable(r)
                and r.get('carrier_type') == self.carrier_type
                and not self._was_declined(r)
            ]
            if not candidates:
                await self._withdraw('no_longer_available')
                return
            await self._present(candidates[0])

    # ============================================
    # DECISIONS
    # ============================================

    async def accept(self, request_id) -> ClaimOutcome:
        """
        Try to win the assignment with the ledger's conditioned update.

        Losing the race is an expected outcome (UNAVAILABLE), not an error.
        Backend failures yield FAILED; the prompt is cleared either way and
        the next poll offers the request again if it is still open.
        """
        request_id = str(request_id)
        try:
            rows = await self.ledger.claim(request_id, self.carrier)
        except ClaimNotAllowed as e:
            logger.warning(f"[MATCHING] Claim refused for {self.carrier_id[:8]}: {e}")
            outcome = ClaimOutcome.FAILED
        except Exception:
            logger.exception(f"[MATCHING] Claim on {request_id[:8]} failed")
            outcome = ClaimOutcome.FAILED
        else:
            outcome = ClaimOutcome.ACCEPTED if rows else ClaimOutcome.UNAVAILABLE

        async with self._lock:
            if self.presented is not None and self.presented['id'] == request_id:
                self.presented = None
            self.notice = outcome.value

        logger.info(f"[MATCHING] Carrier {self.carrier_id[:8]} accept {request_id[:8]}: {outcome.value}")
        await self.emit({
            'type': 'claim_result',
            'request_id': request_id,
            'outcome': outcome.value,
            'success': outcome == ClaimOutcome.ACCEPTED,
            'message': OUTCOME_MESSAGES[outcome],
        })
        return outcome

    async def decline(self, request_id) -> bool:
        """Local only: hide the prompt, leave the ledger untouched."""
        request_id = str(request_id)
        async with self._lock:
            current = self.presented
            retry_count = 0
            if current is not None and current['id'] == request_id:
                retry_count = current.get('retry_count') or 0
            self.declined[request_id] = retry_count
            if current is not None and current['id'] == request_id:
                await self._withdraw('declined')
                return True
        return False

    # ============================================
    # REDUCER PRIMITIVES (call with the lock held)
    # ============================================

    async def _present(self, record: dict) -> None:
        if self.presented == record:
            return
        self.presented = record
        self.notice = None
        logger.debug(f"[MATCHING] Presenting {record['id'][:8]} to {self.carrier_id[:8]}")
        await self.emit({'type': 'request_presented', 'request': record})

    async def _withdraw(self, reason: str) -> None:
        if self.presented is None:
            return
        request_id = self.presented['id']
        self.presented = None
        if reason in ('accepted', 'no_longer_available'):
            self.notice = reason
        await self.emit({
            'type': 'request_withdrawn',
            'request_id': request_id,
            'reason': reason,
            'message': WITHDRAW_MESSAGES.get(reason, ''),
        })

    def _withdraw_reason(self, record: dict) -> str:
        if record.get('assigned_carrier_id') == self.carrier_id:
            return 'accepted'
        return 'no_longer_available'

    def _was_declined(self, record: dict) -> bool:
        declined_at = self.declined.get(record['id'])
        if declined_at is None:
            return False
        return (record.get('retry_count') or 0) <= declined_at
