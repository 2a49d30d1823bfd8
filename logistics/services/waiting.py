"""
LOGISTICS App - Requester wait (countdown) controller

Drives the requester's screen after a request is created:
WAITING --(assignee observed)--> ASSIGNED
WAITING --(countdown hits 0)--> TIMED_OUT --(retry)--> WAITING

The countdown and the ledger poll are both PeriodicTasks owned by the
controller; stop() tears both down.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from django.conf import settings

from core.periodic import PeriodicTask
from logistics.services.ledger import AsyncRequestLedger

logger = logging.getLogger(__name__)


class WaitState(str, Enum):
    IDLE = 'idle'
    WAITING = 'waiting'
    ASSIGNED = 'assigned'
    TIMED_OUT = 'timed_out'


async def _discard(message: dict) -> None:
    return None


class RequesterWaitController:
    """
    Countdown for one request.

    An assignment observed before the deadline always wins; after the
    deadline the requester may retry, which reopens the request in the
    ledger unless a carrier accepted it in the meantime.
    """

    def __init__(
        self,
        request_id,
        requester=None,
        ledger: Optional[AsyncRequestLedger] = None,
        emit: Optional[Callable[[dict], Awaitable[None]]] = None,
        wait_seconds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        tick_interval: float = 1.0,
    ):
        self.request_id = str(request_id)
        self.requester = requester
        self.ledger = ledger or AsyncRequestLedger()
        self.emit = emit or _discard
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.REQUEST_WAIT_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.MATCHING_POLL_INTERVAL

        self.state = WaitState.IDLE
        self.remaining = 0
        self.assigned_carrier_id: Optional[str] = None
        self.carrier_type: Optional[str] = None
        self.online_carrier_count: Optional[int] = None

        short_id = self.request_id[:8]
        self._countdown = PeriodicTask(f'countdown-{short_id}', tick_interval, self.tick)
        self._poller = PeriodicTask(f'wait-poll-{short_id}', self.poll_interval, self.poll_once)

    def as_message(self) -> dict:
        return {
            'type': 'wait_state',
            'request_id': self.request_id,
            'state': self.state.value,
            'remaining': self.remaining,
            'assigned_carrier_id': self.assigned_carrier_id,
            'online_carriers': self.online_carrier_count,
            'can_retry': self.state == WaitState.TIMED_OUT,
        }

    # ============================================
    # LIFECYCLE
    # ============================================

    def begin(self) -> None:
        """Enter WAITING with a full countdown (no timers)."""
        self.state = WaitState.WAITING
        self.remaining = self.wait_seconds

    async def start(self) -> None:
        """Read the current ledger state, then start the countdown and poll."""
        self.begin()
        await self.poll_once()
        if self.state == WaitState.WAITING:
            self._countdown.start()
            self._poller.start()
        await self.emit(self.as_message())

    async def stop(self) -> None:
        await self._countdown.stop()
        await self._poller.stop()

    # ============================================
    # TRANSITIONS
    # ============================================

    async def tick(self) -> WaitState:
        """One countdown second."""
        if self.state != WaitState.WAITING:
            return self.state
        self.remaining = max(self.remaining - 1, 0)
        if self.remaining == 0:
            self.state = WaitState.TIMED_OUT
            logger.info(f"[WAIT] Request {self.request_id[:8]} timed out without a carrier")
        await self.emit(self.as_message())
        if self.state == WaitState.TIMED_OUT:
            # Keep polling: an acceptance landing after the deadline still shows up
            self._countdown.cancel()
        return self.state

    async def observe(self, record: Optional[dict]) -> WaitState:
        """Apply a ledger snapshot (from a push event or a poll)."""
        if not record:
            return self.state
        if record.get('carrier_type'):
            self.carrier_type = record['carrier_type']
        assignee = record.get('assigned_carrier_id')
        if assignee and self.state in (WaitState.WAITING, WaitState.TIMED_OUT):
            self.state = WaitState.ASSIGNED
            self.assigned_carrier_id = assignee
            logger.info(
                f"[WAIT] Request {self.request_id[:8]} assigned to {assignee[:8]} "
                f"with {self.remaining}s left"
            )
            await self.emit(self.as_message())
            self._countdown.cancel()
            self._poller.cancel()
        return self.state

    async def poll_once(self) -> WaitState:
        try:
            record = await self.ledger.snapshot(self.request_id)
            if record and record.get('carrier_type'):
                self.online_carrier_count = await self.ledger.count_online(record['carrier_type'])
        except Exception as e:
            logger.warning(f"[WAIT] Poll of request {self.request_id[:8]} failed: {e}")
            return self.state
        return await self.observe(record)

    async def retry(self) -> bool:
        """
        Re-broadcast after a timeout.

        Returns False when not timed out, when the request was accepted in
        the meantime (state moves to ASSIGNED instead) or on a write failure
        (state stays TIMED_OUT so the requester can retry again).
        """
        if self.state != WaitState.TIMED_OUT:
            return False
        try:
            reopened = await self.ledger.reopen(self.request_id, self.requester)
        except Exception:
            logger.exception(f"[WAIT] Reopen of request {self.request_id[:8]} failed")
            await self.emit({**self.as_message(), 'error': "Could not reach the server, try again."})
            return False

        if not reopened:
            await self.poll_once()
            return False

        await self._countdown.stop()
        self.begin()
        self._countdown.start()
        self._poller.start()
        logger.info(f"[WAIT] Request {self.request_id[:8]} re-broadcast")
        await self.emit(self.as_message())
        return True
