"""
Tests for the requester's countdown controller.
"""

import asyncio

from django.test import SimpleTestCase

from logistics.services.waiting import RequesterWaitController, WaitState
from logistics.tests.helpers import FakeCarrier, FakeLedger, Recorder, request_record


class WaitTestCase(SimpleTestCase):

    def setUp(self):
        self.record = request_record()
        self.ledger = FakeLedger([self.record], online_count=3)
        self.emitted = Recorder()

    def make_controller(self, wait_seconds=3, tick_interval=10.0, poll_interval=10.0):
        return RequesterWaitController(
            self.record['id'],
            ledger=self.ledger,
            emit=self.emitted,
            wait_seconds=wait_seconds,
            poll_interval=poll_interval,
            tick_interval=tick_interval,
        )

    async def expire(self, controller):
        for _ in range(controller.remaining):
            await controller.tick()


class TestCountdown(WaitTestCase):

    async def test_start_enters_waiting(self):
        controller = self.make_controller()
        await controller.start()

        self.assertEqual(controller.state, WaitState.WAITING)
        self.assertEqual(controller.remaining, 3)
        self.assertEqual(controller.online_carrier_count, 3)
        self.assertEqual(controller.carrier_type, 'BIKE')
        message = self.emitted.last
        self.assertEqual(message['type'], 'wait_state')
        self.assertEqual(message['state'], 'waiting')
        self.assertFalse(message['can_retry'])
        await controller.stop()

    async def test_countdown_reaches_timeout(self):
        controller = self.make_controller()
        controller.begin()

        await controller.tick()
        self.assertEqual(controller.remaining, 2)
        await controller.tick()
        await controller.tick()

        self.assertEqual(controller.state, WaitState.TIMED_OUT)
        self.assertTrue(self.emitted.last['can_retry'])

        await controller.tick()
        self.assertEqual(controller.remaining, 0)

    async def test_zero_wait_is_kept_and_times_out_on_first_tick(self):
        controller = self.make_controller(wait_seconds=0)
        self.assertEqual(controller.wait_seconds, 0)
        controller.begin()

        await controller.tick()

        self.assertEqual(controller.state, WaitState.TIMED_OUT)
        self.assertTrue(self.emitted.last['can_retry'])

    async def test_countdown_runs_on_its_own(self):
        controller = self.make_controller(wait_seconds=2, tick_interval=0.01)
        await controller.start()

        await asyncio.sleep(0.1)

        self.assertEqual(controller.state, WaitState.TIMED_OUT)
        await controller.stop()

    async def test_start_on_already_assigned_request(self):
        self.ledger.records[self.record['id']]['assigned_carrier_id'] = 'carrier-1'
        controller = self.make_controller()

        await controller.start()

        self.assertEqual(controller.state, WaitState.ASSIGNED)
        self.assertEqual(self.emitted.last['assigned_carrier_id'], 'carrier-1')
        await controller.stop()


class TestAssignment(WaitTestCase):

    async def test_assignment_before_deadline_wins(self):
        controller = self.make_controller()
        controller.begin()
        await controller.tick()

        await controller.observe({**self.record, 'assigned_carrier_id': 'carrier-1', 'status': 'ACCEPTED'})

        self.assertEqual(controller.state, WaitState.ASSIGNED)
        self.assertEqual(controller.assigned_carrier_id, 'carrier-1')
        self.assertEqual(controller.remaining, 2)

        await controller.tick()
        self.assertEqual(controller.state, WaitState.ASSIGNED)

    async def test_late_acceptance_still_observed(self):
        """A carrier accepting after the countdown ended is shown to the requester."""
        controller = self.make_controller()
        controller.begin()
        await self.expire(controller)
        self.assertEqual(controller.state, WaitState.TIMED_OUT)

        await controller.observe({**self.record, 'assigned_carrier_id': 'carrier-1', 'status': 'ACCEPTED'})

        self.assertEqual(controller.state, WaitState.ASSIGNED)

    async def test_poller_picks_up_late_acceptance(self):
        controller = self.make_controller(wait_seconds=1, tick_interval=0.01, poll_interval=0.01)
        await controller.start()
        await asyncio.sleep(0.05)
        self.assertEqual(controller.state, WaitState.TIMED_OUT)

        await self.ledger.claim(self.record['id'], FakeCarrier())
        await asyncio.sleep(0.05)

        self.assertEqual(controller.state, WaitState.ASSIGNED)
        await controller.stop()

    async def test_observe_without_assignee_keeps_waiting(self):
        controller = self.make_controller()
        controller.begin()
        await controller.observe(dict(self.record))
        await controller.observe(None)
        self.assertEqual(controller.state, WaitState.WAITING)


class TestRetry(WaitTestCase):

    async def test_retry_after_timeout_rebroadcasts(self):
        controller = self.make_controller()
        controller.begin()
        await self.expire(controller)

        self.assertTrue(await controller.retry())

        self.assertEqual(controller.state, WaitState.WAITING)
        self.assertEqual(controller.remaining, 3)
        self.assertEqual(self.ledger.records[self.record['id']]['retry_count'], 1)
        await controller.stop()

    async def test_retry_only_after_timeout(self):
        controller = self.make_controller()
        controller.begin()

        self.assertFalse(await controller.retry())
        self.assertEqual(self.ledger.reopens, [])

    async def test_retry_after_acceptance_shows_assignment(self):
        """A claim that won before the retry is kept and reported."""
        controller = self.make_controller()
        controller.begin()
        await self.expire(controller)
        winner = FakeCarrier()
        await self.ledger.claim(self.record['id'], winner)

        self.assertFalse(await controller.retry())

        self.assertEqual(controller.state, WaitState.ASSIGNED)
        self.assertEqual(controller.assigned_carrier_id, str(winner.pk))
        self.assertEqual(self.ledger.records[self.record['id']]['status'], 'ACCEPTED')

    async def test_retry_write_failure_can_be_retried(self):
        controller = self.make_controller()
        controller.begin()
        await self.expire(controller)
        self.ledger.fail_reopen = True

        self.assertFalse(await controller.retry())
        self.assertEqual(controller.state, WaitState.TIMED_OUT)
        self.assertIn('error', self.emitted.last)

        self.ledger.fail_reopen = False
        self.assertTrue(await controller.retry())
        await controller.stop()
