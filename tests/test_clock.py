"""
Tests for core/clock.py - the deterministic VirtualClock and SystemClock.
"""

import asyncio
import sys
import unittest
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.clock import SystemClock, VirtualClock


class TestVirtualClock(unittest.IsolatedAsyncioTestCase):
    """Test that time only moves when driven."""

    async def asyncSetUp(self):
        self.clock = VirtualClock()
        self.woken = []

    async def _sleeper(self, label, seconds):
        await self.clock.sleep(seconds)
        self.woken.append((label, self.clock.now()))

    async def test_starts_at_given_time(self):
        self.assertEqual(VirtualClock().now(), 0.0)
        self.assertEqual(VirtualClock(start=42).now(), 42.0)

    async def test_sleep_waits_for_advance(self):
        """A sleeper is not released before its deadline."""
        task = asyncio.create_task(self._sleeper("a", 5))
        await self.clock.advance(4.5)
        self.assertFalse(task.done())
        self.assertEqual(self.clock.pending, 1)

        await self.clock.advance(0.5)
        self.assertTrue(task.done())
        self.assertEqual(self.woken, [("a", 5.0)])

    async def test_released_in_deadline_order(self):
        """Sleepers wake in deadline order and see their own deadline as now()."""
        for label, seconds in (("c", 3), ("a", 1), ("b", 2)):
            asyncio.create_task(self._sleeper(label, seconds))
        await self.clock.advance(10)

        self.assertEqual(self.woken, [("a", 1.0), ("b", 2.0), ("c", 3.0)])
        self.assertEqual(self.clock.now(), 10.0)

    async def test_ties_in_registration_order(self):
        for label in ("first", "second", "third"):
            asyncio.create_task(self._sleeper(label, 2))
        await self.clock.advance(2)

        self.assertEqual([label for label, _ in self.woken], ["first", "second", "third"])

    async def test_woken_task_runs_before_next_deadline(self):
        """A task that re-sleeps inside the advanced window is woken again."""
        ticks = []

        async def ticker():
            while True:
                await self.clock.sleep(1)
                ticks.append(self.clock.now())

        task = asyncio.create_task(ticker())
        await self.clock.advance(3)
        self.assertEqual(ticks, [1.0, 2.0, 3.0])

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def test_cancelled_sleep_has_no_side_effects(self):
        task = asyncio.create_task(self._sleeper("a", 5))
        await self.clock.tick()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        self.assertTrue(task.cancelled())
        self.assertEqual(self.clock.pending, 0)
        await self.clock.advance(10)
        self.assertEqual(self.woken, [])

    async def test_advance_backwards_rejected(self):
        with self.assertRaises(ValueError):
            await self.clock.advance(-1)

    async def test_tick_releases_zero_sleeps(self):
        task = asyncio.create_task(self._sleeper("now", 0))
        await self.clock.tick()
        self.assertTrue(task.done())
        self.assertEqual(self.clock.now(), 0.0)

    async def test_run_drains_sleepers(self):
        asyncio.create_task(self._sleeper("a", 7))
        asyncio.create_task(self._sleeper("b", 3))
        await self.clock.run()

        self.assertEqual(self.woken, [("b", 3.0), ("a", 7.0)])
        self.assertEqual(self.clock.pending, 0)


class TestSystemClock(unittest.IsolatedAsyncioTestCase):
    """Test the real clock."""

    async def test_now_never_decreases(self):
        clock = SystemClock()
        readings = [clock.now() for _ in range(100)]
        self.assertEqual(readings, sorted(readings))

    async def test_sleep_returns(self):
        clock = SystemClock()
        start = clock.now()
        await clock.sleep(0.01)
        self.assertGreaterEqual(clock.now(), start)

    async def test_negative_sleep_returns_immediately(self):
        await asyncio.wait_for(SystemClock().sleep(-5), timeout=1.0)


if __name__ == "__main__":
    unittest.main()
