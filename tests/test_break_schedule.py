"""
Tests for core/break_schedule.py - the work/break timer driven by a
VirtualClock, its commands, counters and sleep handling.
"""

import asyncio
import sys
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.break_schedule import BreakSchedule, EmptyScheduleError, ScheduleState
from core.clock import VirtualClock
from core.work_cycle import Phase, WorkCycle
from monitors.inactivity import InactivityGate
from monitors.notifications import SCREEN_LOCKED, SCREEN_UNLOCKED, NotificationCenter
from monitors.system_sleep import SystemSleepMonitor
from monitors.user_activity import ActivityThreshold, UserActivityMonitor

WORK_1 = 10
BREAK_1 = 6
WORK_2 = 20
BREAK_2 = 10


class ScheduleTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: a VirtualClock and a helper that starts a schedule."""

    async def asyncSetUp(self):
        self.clock = VirtualClock()
        self.schedules = []

    async def asyncTearDown(self):
        for schedule in self.schedules:
            await schedule.stop()

    def make_schedule(self, cycles=None, start=True, **kwargs) -> BreakSchedule:
        if cycles is None:
            cycles = [WorkCycle(WORK_1, BREAK_1), WorkCycle(WORK_2, BREAK_2)]
        schedule = BreakSchedule(cycles, clock=self.clock, tick_interval=1.0, **kwargs)
        self.schedules.append(schedule)
        if start:
            schedule.start()
        return schedule


class TestBreakScheduleInit(ScheduleTestCase):
    """Test construction and default state."""

    async def test_init_defaults(self):
        schedule = self.make_schedule(start=False)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, WORK_1)
        self.assertEqual(schedule.phase_length, WORK_1)
        self.assertEqual(schedule.index, 0)
        self.assertEqual((schedule.completed, schedule.delayed, schedule.skipped), (0, 0, 0))
        self.assertFalse(schedule.is_paused)
        self.assertFalse(schedule.is_running)
        self.assertIsNone(schedule.on_state_change)
        self.assertIsNone(schedule.on_break_start)

    async def test_empty_schedule_rejected(self):
        with self.assertRaises(EmptyScheduleError):
            BreakSchedule([], clock=self.clock)

    async def test_empty_schedule_is_value_error(self):
        self.assertTrue(issubclass(EmptyScheduleError, ValueError))

    async def test_bad_tick_interval_rejected(self):
        with self.assertRaises(ValueError):
            BreakSchedule([WorkCycle(1, 1)], clock=self.clock, tick_interval=0)

    async def test_nothing_moves_before_start(self):
        schedule = self.make_schedule(start=False)
        await self.clock.advance(30)
        self.assertEqual(schedule.remaining_time, WORK_1)

    async def test_start_twice_warns(self):
        schedule = self.make_schedule()
        with self.assertLogs("core.break_schedule", level="WARNING"):
            schedule.start()
        await self.clock.advance(1)
        # Still a single tick task counting down
        self.assertEqual(schedule.remaining_time, WORK_1 - 1)


class TestCountdown(ScheduleTestCase):
    """Test ticking through phases."""

    async def test_work_runs_into_break(self):
        """One cycle of 10s/5s: after 10s the break starts with 5s left."""
        schedule = self.make_schedule([WorkCycle(10, 5)])
        await self.clock.advance(10)

        self.assertEqual(schedule.current_phase, Phase.BREAKING)
        self.assertEqual(schedule.remaining_time, 5)
        self.assertEqual(schedule.phase_length, 5)
        self.assertTrue(schedule.is_blocking)

    async def test_counts_down_each_tick(self):
        schedule = self.make_schedule()
        await self.clock.advance(3)
        self.assertEqual(schedule.remaining_time, WORK_1 - 3)

    async def test_break_end_moves_to_next_cycle(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + BREAK_1)

        self.assertEqual(schedule.index, 1)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, WORK_2)
        self.assertEqual(schedule.completed, 1)

    async def test_schedule_wraps(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + BREAK_1 + WORK_2 + BREAK_2)

        self.assertEqual(schedule.index, 0)
        self.assertEqual(schedule.remaining_time, WORK_1)
        self.assertEqual(schedule.completed, 2)

    async def test_break_start_callback(self):
        schedule = self.make_schedule()
        schedule.on_break_start = MagicMock()
        await self.clock.advance(WORK_1)

        schedule.on_break_start.assert_called_once()
        state = schedule.on_break_start.call_args[0][0]
        self.assertIsInstance(state, ScheduleState)
        self.assertEqual(state.phase, Phase.BREAKING)
        self.assertEqual(state.remaining_time, BREAK_1)

    async def test_break_end_callback(self):
        schedule = self.make_schedule()
        schedule.on_break_end = MagicMock()
        await self.clock.advance(WORK_1 + BREAK_1)
        schedule.on_break_end.assert_called_once()

    async def test_state_change_every_tick(self):
        schedule = self.make_schedule()
        schedule.on_state_change = MagicMock()
        await self.clock.advance(3)

        remaining = [c[0][0].remaining_time for c in schedule.on_state_change.call_args_list]
        self.assertEqual(remaining, [9, 8, 7])

    async def test_callback_exception_swallowed(self):
        """A broken UI callback doesn't stop the timer."""
        schedule = self.make_schedule()
        schedule.on_state_change = MagicMock(side_effect=RuntimeError("boom"))
        schedule.on_break_start = MagicMock(side_effect=RuntimeError("boom"))
        await self.clock.advance(WORK_1 + 2)

        self.assertEqual(schedule.current_phase, Phase.BREAKING)
        self.assertEqual(schedule.remaining_time, BREAK_1 - 2)


class TestDelay(ScheduleTestCase):
    """Test delay() in both phases."""

    async def test_delay_during_break(self):
        """delay(30) with 5s of break left gives 35s, phase unchanged."""
        schedule = self.make_schedule([WorkCycle(10, 5)])
        await self.clock.advance(10)
        schedule.delay(30)

        self.assertEqual(schedule.remaining_time, 35)
        self.assertEqual(schedule.phase_length, 35)
        self.assertEqual(schedule.delayed, 1)
        self.assertEqual(schedule.current_phase, Phase.BREAKING)

    async def test_delayed_break_keeps_counting(self):
        schedule = self.make_schedule([WorkCycle(10, 5)])
        await self.clock.advance(10)
        schedule.delay(30)
        await self.clock.advance(34)
        self.assertEqual(schedule.remaining_time, 1)
        await self.clock.advance(1)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.completed, 1)

    async def test_delay_during_work_is_noop(self):
        schedule = self.make_schedule()
        await self.clock.advance(2)
        schedule.delay(30)

        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, WORK_1 - 2)
        self.assertEqual(schedule.delayed, 0)

    async def test_negative_delay_rejected(self):
        schedule = self.make_schedule()
        schedule.start_break()
        with self.assertRaises(ValueError):
            schedule.delay(-1)
        self.assertEqual(schedule.delayed, 0)


class TestSkip(ScheduleTestCase):
    """Test skip() in both phases."""

    async def test_skip_break(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + 1)
        schedule.skip()

        self.assertEqual(schedule.index, 1)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, WORK_2)
        self.assertEqual(schedule.skipped, 1)
        self.assertEqual(schedule.completed, 0)

    async def test_skip_work_touches_no_counter(self):
        schedule = self.make_schedule()
        await self.clock.advance(3)
        schedule.skip()

        self.assertEqual(schedule.index, 1)
        self.assertEqual(schedule.remaining_time, WORK_2)
        self.assertEqual((schedule.completed, schedule.delayed, schedule.skipped), (0, 0, 0))

    async def test_skip_applies_before_next_tick(self):
        """The new cycle counts down from the next tick on."""
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1)
        schedule.skip()
        await self.clock.advance(1)
        self.assertEqual(schedule.remaining_time, WORK_2 - 1)


class TestPause(ScheduleTestCase):
    """Test pause/resume."""

    async def test_pause_freezes_countdown(self):
        schedule = self.make_schedule()
        await self.clock.advance(3)
        self.assertEqual(schedule.remaining_time, 7)

        schedule.pause()
        await self.clock.advance(6)
        self.assertEqual(schedule.remaining_time, 7)

        schedule.resume()
        await self.clock.advance(1)
        self.assertEqual(schedule.remaining_time, 6)

    async def test_pause_idempotent(self):
        schedule = self.make_schedule()
        await self.clock.advance(2)
        schedule.pause()
        once = schedule.state
        schedule.pause()
        self.assertEqual(schedule.state, once)

    async def test_resume_idempotent(self):
        schedule = self.make_schedule()
        schedule.pause()
        schedule.resume()
        once = schedule.state
        schedule.resume()
        self.assertEqual(schedule.state, once)

    async def test_toggle_paused(self):
        schedule = self.make_schedule()
        schedule.toggle_paused()
        self.assertTrue(schedule.is_paused)
        schedule.toggle_paused()
        self.assertFalse(schedule.is_paused)

    async def test_commands_work_while_paused(self):
        schedule = self.make_schedule()
        schedule.pause()
        schedule.skip()
        self.assertTrue(schedule.is_paused)
        self.assertEqual(schedule.index, 1)
        await self.clock.advance(5)
        self.assertEqual(schedule.remaining_time, WORK_2)


class TestManualCommands(ScheduleTestCase):
    """Test start_break, restarts and set_schedule."""

    async def test_start_break_now(self):
        schedule = self.make_schedule()
        schedule.on_break_start = MagicMock()
        await self.clock.advance(2)
        schedule.start_break()

        self.assertEqual(schedule.current_phase, Phase.BREAKING)
        self.assertEqual(schedule.remaining_time, BREAK_1)
        schedule.on_break_start.assert_called_once()

    async def test_start_break_with_duration(self):
        schedule = self.make_schedule()
        schedule.start_break(42)
        self.assertEqual(schedule.remaining_time, 42)
        self.assertEqual(schedule.phase_length, 42)
        with self.assertRaises(ValueError):
            schedule.start_break(-1)

    async def test_restart_work_cycle(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + BREAK_1 + 5)
        schedule.restart_work_cycle()

        self.assertEqual(schedule.index, 1)
        self.assertEqual(schedule.remaining_time, WORK_2)

    async def test_restart_schedule_keeps_counters(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + BREAK_1 + 5)
        schedule.restart_schedule()

        self.assertEqual(schedule.index, 0)
        self.assertEqual(schedule.remaining_time, WORK_1)
        self.assertEqual(schedule.completed, 1)

    async def test_set_schedule(self):
        schedule = self.make_schedule()
        await self.clock.advance(WORK_1 + BREAK_1)
        schedule.pause()
        schedule.set_schedule([WorkCycle(30, 3)])

        self.assertEqual(len(schedule.schedule), 1)
        self.assertEqual(schedule.index, 0)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, 30)
        self.assertEqual(schedule.completed, 1)
        self.assertTrue(schedule.is_paused)

    async def test_set_empty_schedule_keeps_previous(self):
        schedule = self.make_schedule()
        await self.clock.advance(4)
        before = schedule.state
        with self.assertRaises(EmptyScheduleError):
            schedule.set_schedule([])

        self.assertEqual(schedule.state, before)
        self.assertEqual(len(schedule.schedule), 2)


class TestInvariants(ScheduleTestCase):
    """Counters never go down and remaining stays within the phase."""

    async def test_command_sequence(self):
        schedule = self.make_schedule()
        last = (0, 0, 0)
        steps = [
            lambda: self.clock.advance(4),
            schedule.pause,
            lambda: self.clock.advance(3),
            schedule.resume,
            lambda: self.clock.advance(8),
            lambda: schedule.delay(15),
            lambda: self.clock.advance(2),
            schedule.skip,
            lambda: schedule.delay(5),
            schedule.start_break,
            lambda: schedule.delay(5),
            lambda: self.clock.advance(30),
            schedule.restart_schedule,
            lambda: self.clock.advance(11),
            schedule.skip,
        ]
        for step in steps:
            result = step()
            if result is not None:
                await result
            state = schedule.state
            self.assertGreaterEqual(state.remaining_time, 0)
            self.assertLessEqual(state.remaining_time, state.phase_length)
            counters = (state.completed, state.delayed, state.skipped)
            for now, before in zip(counters, last):
                self.assertGreaterEqual(now, before)
            last = counters


class TestStop(ScheduleTestCase):
    """Test teardown."""

    async def test_stop_cancels_everything(self):
        schedule = self.make_schedule()
        schedule.on_state_change = MagicMock()
        await self.clock.advance(2)
        await schedule.stop()
        schedule.on_state_change.reset_mock()

        self.assertEqual(self.clock.pending, 0)
        self.assertFalse(schedule.is_running)
        await self.clock.advance(20)
        schedule.on_state_change.assert_not_called()
        self.assertEqual(schedule.remaining_time, WORK_1 - 2)

    async def test_stop_twice(self):
        schedule = self.make_schedule()
        await schedule.stop()
        await schedule.stop()
        self.assertFalse(schedule.is_running)


class TestInactivityGate(ScheduleTestCase):
    """Test that a due break waits for the user to be idle."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.idle_seconds = 0.0
        self.user_monitor = UserActivityMonitor(
            thresholds=[ActivityThreshold("keyUp", 5)],
            seconds_since_last_event=lambda event: self.idle_seconds,
            clock=self.clock,
            poll_interval=1.0,
        )
        self.gate = InactivityGate(self.user_monitor)

    async def test_break_waits_for_inactivity(self):
        schedule = self.make_schedule([WorkCycle(10, 5)], inactivity_gate=self.gate)
        schedule.on_break_start = MagicMock()
        await self.clock.advance(10)

        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, 0)
        self.assertTrue(schedule.is_waiting)
        self.assertTrue(schedule.state.is_waiting)

        await self.clock.advance(5)
        schedule.on_break_start.assert_not_called()

        self.idle_seconds = 10.0
        await self.clock.advance(1)
        self.assertEqual(schedule.current_phase, Phase.BREAKING)
        self.assertEqual(schedule.remaining_time, 5)
        self.assertFalse(schedule.is_waiting)
        schedule.on_break_start.assert_called_once()

    async def test_pause_cancels_wait_and_resume_rearms(self):
        schedule = self.make_schedule([WorkCycle(10, 5)], inactivity_gate=self.gate)
        await self.clock.advance(10)
        schedule.pause()
        self.assertFalse(schedule.is_waiting)

        self.idle_seconds = 10.0
        await self.clock.advance(3)
        self.assertEqual(schedule.current_phase, Phase.WORKING)

        schedule.resume()
        await self.clock.tick()
        self.assertEqual(schedule.current_phase, Phase.BREAKING)

    async def test_skip_while_waiting(self):
        schedule = self.make_schedule([WorkCycle(10, 5), WorkCycle(20, 5)], inactivity_gate=self.gate)
        await self.clock.advance(10)
        schedule.skip()

        self.assertFalse(schedule.is_waiting)
        self.assertEqual(schedule.index, 1)
        self.idle_seconds = 10.0
        await self.clock.advance(2)
        self.assertEqual(schedule.current_phase, Phase.WORKING)
        self.assertEqual(schedule.remaining_time, 18)

    async def test_failing_gate_still_starts_break(self):
        gate = MagicMock()

        async def broken_wait():
            raise OSError("no idle source")

        gate.wait = broken_wait
        schedule = self.make_schedule([WorkCycle(10, 5)], inactivity_gate=gate)
        with self.assertLogs("core.break_schedule", level="WARNING"):
            await self.clock.advance(10)
        self.assertEqual(schedule.current_phase, Phase.BREAKING)


class TestSystemSleep(ScheduleTestCase):
    """Test pausing on sleep and restarting on a new day."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.center = NotificationCenter()
        self.sleep_monitor = SystemSleepMonitor(self.center)
        self.today = datetime(2025, 3, 4, 9, 0)

    def make_sleepy_schedule(self) -> BreakSchedule:
        return self.make_schedule(sleep_monitor=self.sleep_monitor, now=lambda: self.today)

    async def test_sleep_pauses_and_wake_resumes(self):
        schedule = self.make_sleepy_schedule()
        await self.clock.advance(3)

        self.center.post(SCREEN_LOCKED, timestamp=self.today)
        self.assertTrue(schedule.is_paused)
        await self.clock.advance(100)
        self.assertEqual(schedule.remaining_time, WORK_1 - 3)

        self.center.post(SCREEN_UNLOCKED, timestamp=self.today)
        self.assertFalse(schedule.is_paused)
        await self.clock.advance(1)
        self.assertEqual(schedule.remaining_time, WORK_1 - 4)

    async def test_wake_on_new_day_restarts(self):
        schedule = self.make_sleepy_schedule()
        await self.clock.advance(WORK_1 + BREAK_1 + 2)
        self.assertEqual(schedule.index, 1)

        self.center.post(SCREEN_LOCKED, timestamp=datetime(2025, 3, 3, 23, 0))
        self.center.post(SCREEN_UNLOCKED, timestamp=self.today)

        self.assertEqual(schedule.index, 0)
        self.assertEqual(schedule.remaining_time, WORK_1)
        self.assertFalse(schedule.is_paused)
        self.assertEqual(schedule.completed, 1)

    async def test_wake_does_not_undo_user_pause(self):
        schedule = self.make_sleepy_schedule()
        schedule.pause()
        self.center.post(SCREEN_LOCKED, timestamp=self.today)
        self.center.post(SCREEN_UNLOCKED, timestamp=self.today)
        self.assertTrue(schedule.is_paused)

    async def test_stop_unsubscribes(self):
        schedule = self.make_sleepy_schedule()
        self.assertEqual(self.center.subscriber_count, 2)
        await schedule.stop()
        self.assertEqual(self.center.subscriber_count, 0)

        self.center.post(SCREEN_LOCKED)
        self.assertFalse(schedule.is_paused)


class TestEventStream(ScheduleTestCase):
    """Test the bounded state stream."""

    async def consume(self, schedule, received, **kwargs):
        async for state in schedule.events(**kwargs):
            received.append(state)

    async def test_streams_until_stop(self):
        schedule = self.make_schedule()
        received = []
        task = asyncio.create_task(self.consume(schedule, received))
        await self.clock.tick()

        schedule.start_break()
        schedule.skip()
        await self.clock.tick()
        await schedule.stop()
        await asyncio.wait_for(task, timeout=1.0)

        self.assertEqual([s.phase for s in received], [Phase.BREAKING, Phase.WORKING])
        self.assertEqual(received[-1].skipped, 1)
        self.assertEqual(schedule._queues, [])

    async def test_slow_consumer_keeps_newest(self):
        schedule = self.make_schedule()
        received = []
        task = asyncio.create_task(self.consume(schedule, received, maxsize=2))
        await self.clock.tick()

        schedule.pause()
        schedule.resume()
        schedule.pause()
        schedule.resume()
        await self.clock.tick()

        self.assertEqual([s.is_paused for s in received], [True, False])
        await schedule.stop()
        await asyncio.wait_for(task, timeout=1.0)

    async def test_stream_after_stop_is_empty(self):
        schedule = self.make_schedule()
        await schedule.stop()
        received = []
        await asyncio.wait_for(self.consume(schedule, received), timeout=1.0)
        self.assertEqual(received, [])


if __name__ == "__main__":
    unittest.main()
