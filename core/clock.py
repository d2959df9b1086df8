"""
Clock abstraction for the timer engine.

The break schedule and the activity monitors never call time.monotonic()
or asyncio.sleep() directly. They go through a Clock so tests can swap in
a VirtualClock and move time forward deterministically.
"""

import asyncio
import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Tuple

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of monotonic time and cancellable sleeps."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds. Never decreases."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """
        Suspend the calling task until `seconds` have elapsed on this clock.

        Cancelling the awaiting task raises asyncio.CancelledError and leaves
        the clock untouched.
        """


class SystemClock(Clock):
    """Real time, backed by time.monotonic() and asyncio.sleep()."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock(Clock):
    """
    Manually driven clock for tests.

    Time only moves when advance(), tick() or run() is awaited. Sleepers are
    released in deadline order (registration order for ties), and the event
    loop gets a chance to run the woken task before the next one is released.
    """

    # Yields per settle. Enough for a woken task to run through a few awaits
    # (e.g. sleep returns, callback fires, the task re-sleeps).
    SETTLE_ROUNDS = 20

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds < 0:
            seconds = 0.0
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        """Number of sleepers still waiting on this clock."""
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def _settle(self) -> None:
        for _ in range(self.SETTLE_ROUNDS):
            await asyncio.sleep(0)

    def _discard_cancelled(self) -> None:
        while self._sleepers and self._sleepers[0][2].done():
            heapq.heappop(self._sleepers)

    async def advance(self, seconds: float) -> None:
        """
        Move time forward, waking every sleeper whose deadline is reached.

        Args:
            seconds: How far to move. Must not be negative.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot move a clock backwards ({seconds})")

        target = self._now + seconds
        # Let tasks scheduled before this call reach their first sleep
        await self._settle()

        while True:
            self._discard_cancelled()
            if not self._sleepers or self._sleepers[0][0] > target:
                break
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            future.set_result(None)
            await self._settle()

        self._now = target

    async def tick(self) -> None:
        """Release sleepers that are already due without moving time."""
        await self.advance(0)

    async def run(self, max_steps: int = 10000) -> None:
        """
        Keep jumping to the next deadline until nobody is sleeping.

        Args:
            max_steps: Upper bound on jumps so a task that sleeps forever
                in a loop can't hang the test.
        """
        for _ in range(max_steps):
            await self._settle()
            self._discard_cancelled()
            if not self._sleepers:
                return
            await self.advance(self._sleepers[0][0] - self._now)
        logger.warning(f"VirtualClock.run() stopped after {max_steps} steps with sleepers left")
