"""
BreakSchedule drives the work/break timer for LookAway.

Owns an ordered list of WorkCycles and counts down the active one with a
single asyncio task. When the work period runs out the break starts (after
an optional inactivity wait), and when the break runs out the next cycle
begins working.

All state lives on the event loop thread. Commands (skip, delay, pause,
resume, ...) are plain methods that apply immediately; other threads must
go through loop.call_soon_threadsafe.

Callbacks:
    on_state_change(state: ScheduleState)  after every change
    on_break_start(state: ScheduleState)   when a break begins
    on_break_end(state: ScheduleState)     when a break completes or is skipped

Consumers that prefer a stream can iterate `events()` instead of setting
on_state_change.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, List, Optional, Tuple

import config
from core.clock import Clock, SystemClock
from core.time_span import format_time
from core.work_cycle import Phase, WorkCycle
from monitors.inactivity import InactivityGate
from monitors.system_sleep import SleepState, SystemSleepMonitor

logger = logging.getLogger(__name__)


class EmptyScheduleError(ValueError):
    """Raised when a schedule without any work cycles is given."""


@dataclass(frozen=True)
class ScheduleState:
    """Immutable snapshot of a BreakSchedule for presentation."""

    phase: Phase
    remaining_time: float
    phase_length: float
    index: int
    cycle_count: int
    completed: int
    delayed: int
    skipped: int
    is_paused: bool
    is_waiting: bool

    @property
    def is_blocking(self) -> bool:
        """True while the break is showing."""
        return self.phase is Phase.BREAKING

    @property
    def progress(self) -> float:
        """Fraction of the current phase already elapsed, in [0, 1]."""
        if self.phase_length <= 0:
            return 1.0
        return 1.0 - self.remaining_time / self.phase_length

    @property
    def label(self) -> str:
        return format_time(self.remaining_time)


class BreakSchedule:
    """
    Work/break timer over a repeating list of WorkCycles.

    Handles:
    - Countdown of the active cycle (one tick task on the injected Clock)
    - Skip, delay, pause/resume and manual break commands
    - Deferring a due break until the user is inactive (InactivityGate)
    - Pausing while the system sleeps and restarting on a new day
    """

    def __init__(
        self,
        schedule: Iterable[WorkCycle],
        clock: Optional[Clock] = None,
        tick_interval: float = config.TICK_INTERVAL_SECONDS,
        sleep_monitor: Optional[SystemSleepMonitor] = None,
        inactivity_gate: Optional[InactivityGate] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            schedule: Work cycles to repeat, in order. Must not be empty.
            clock: Time source for the tick loop. Defaults to SystemClock.
            tick_interval: Seconds between countdown ticks.
            sleep_monitor: Optional SystemSleepMonitor to pause on sleep.
            inactivity_gate: Optional InactivityGate awaited before a break.
            now: Wall clock used to tell whether a sleep crossed midnight.

        Raises:
            EmptyScheduleError: If `schedule` has no cycles.
            ValueError: If tick_interval is not positive.
        """
        cycles = list(schedule)
        if not cycles:
            raise EmptyScheduleError("A break schedule needs at least one work cycle")
        if tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive (got {tick_interval})")

        self.clock = clock or SystemClock()
        self.tick_interval = tick_interval
        self.sleep_monitor = sleep_monitor
        self.inactivity_gate = inactivity_gate
        self._now = now

        self._schedule: List[WorkCycle] = cycles
        self._index = 0

        # Counters only ever go up
        self.completed = 0
        self.delayed = 0
        self.skipped = 0

        self._paused = False
        self._paused_for_sleep = False
        self._slept_at: Optional[datetime] = None

        self._tick_task: Optional[asyncio.Task] = None
        self._gate_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._last_tick = self.clock.now()
        self._stopped = False

        # Callbacks (set by the UI)
        self.on_state_change: Optional[Callable[[ScheduleState], None]] = None
        self.on_break_start: Optional[Callable[[ScheduleState], None]] = None
        self.on_break_end: Optional[Callable[[ScheduleState], None]] = None
        self._queues: List[asyncio.Queue] = []

        for cycle in self._schedule:
            cycle.reset()
        logger.info(f"Initialized with {len(self._schedule)} work cycles")
        self._log_schedule()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def schedule(self) -> Tuple[WorkCycle, ...]:
        return tuple(self._schedule)

    @property
    def index(self) -> int:
        return self._index

    @property
    def cycle(self) -> WorkCycle:
        return self._schedule[self._index]

    @property
    def current_phase(self) -> Phase:
        return self.cycle.phase

    @property
    def remaining_time(self) -> float:
        return self.cycle.remaining

    @property
    def phase_length(self) -> float:
        return self.cycle.phase_length

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_blocking(self) -> bool:
        return self.cycle.is_breaking

    @property
    def is_waiting(self) -> bool:
        """True while a due break is held back by the inactivity gate."""
        return self._gate_task is not None

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    @property
    def state(self) -> ScheduleState:
        cycle = self.cycle
        return ScheduleState(
            phase=cycle.phase,
            remaining_time=cycle.remaining,
            phase_length=cycle.phase_length,
            index=self._index,
            cycle_count=len(self._schedule),
            completed=self.completed,
            delayed=self.delayed,
            skipped=self.skipped,
            is_paused=self._paused,
            is_waiting=self.is_waiting,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start counting down. Must be called from the event loop thread.

        A second call while running logs a warning and does nothing.
        """
        if self._tick_task is not None:
            logger.warning("Break schedule already started, ignoring start request")
            return

        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._last_tick = self.clock.now()

        if self.sleep_monitor is not None:
            self.sleep_monitor.start_listening(self._on_sleep_state_change)

        logger.info(f"Starting work cycle {self._index + 1}/{len(self._schedule)}: {self.cycle}")
        self._tick_task = self._loop.create_task(self._run())
        self._publish()

    async def stop(self) -> None:
        """Cancel the tick task and any inactivity wait, and stop listening."""
        if self._stopped:
            return

        logger.info("Stopping break schedule")
        self._stopped = True

        if self.sleep_monitor is not None:
            self.sleep_monitor.stop_listening()

        for queue in list(self._queues):
            self._offer(queue, None)

        tasks = [task for task in (self._tick_task, self._gate_task) if task is not None]
        self._tick_task = None
        self._gate_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await self.clock.sleep(self.tick_interval)
            now = self.clock.now()
            elapsed = now - self._last_tick
            self._last_tick = now
            self._on_tick(elapsed)

    def _on_tick(self, elapsed: float) -> None:
        if self._paused or self._stopped:
            return

        cycle = self.cycle
        if cycle.is_working:
            if self._gate_task is not None:
                return
            if cycle.count_down(elapsed):
                self._request_break()
            else:
                self._publish()
        else:
            if cycle.count_down(elapsed):
                self._finish_break()
            else:
                self._publish()

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def _request_break(self) -> None:
        if self.inactivity_gate is None or self._loop is None:
            self._enter_break()
            return
        if self._gate_task is not None:
            return

        logger.info("Break is due, waiting for the user to be inactive")
        self._gate_task = self._loop.create_task(self.inactivity_gate.wait())
        self._gate_task.add_done_callback(self._on_gate_done)
        self._publish()

    def _on_gate_done(self, task: asyncio.Task) -> None:
        if self._gate_task is not task:
            # Cancelled by a command that already moved on
            return
        self._gate_task = None

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Inactivity wait failed, starting the break anyway: {error}")

        if self._stopped or self._paused:
            return
        cycle = self.cycle
        if cycle.is_working and cycle.is_expired:
            self._enter_break()

    def _cancel_gate(self) -> None:
        task = self._gate_task
        self._gate_task = None
        if task is not None and not task.done():
            logger.debug("Cancelling inactivity wait")
            task.cancel()

    def _enter_break(self, duration: Optional[float] = None) -> None:
        self._cancel_gate()
        self.cycle.start_break(duration)
        self._last_tick = self.clock.now()
        logger.info(f"Break started ({format_time(self.cycle.remaining)})")
        self._publish()
        self._notify(self.on_break_start, "on_break_start")

    def _finish_break(self) -> None:
        self.completed += 1
        logger.info(f"Break completed ({self.completed} so far)")
        self._notify(self.on_break_end, "on_break_end")
        self._advance()

    def _advance(self) -> None:
        """Move to the next cycle (wrapping) and start its work period."""
        self._cancel_gate()
        self._index = (self._index + 1) % len(self._schedule)
        for cycle in self._schedule:
            cycle.reset()
        self._last_tick = self.clock.now()
        logger.info(f"Starting work cycle {self._index + 1}/{len(self._schedule)}: {self.cycle}")
        logger.info(f"Skipped: {self.skipped}, Delayed: {self.delayed}, Completed: {self.completed}")
        self._publish()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def skip(self) -> None:
        """
        End the current phase and start the next cycle's work period.

        Skipping a break counts towards `skipped`. Skipping a work period
        (ending it early) doesn't touch any counter.
        """
        if self.cycle.is_breaking:
            self.skipped += 1
            logger.info("Break skipped")
            self._notify(self.on_break_end, "on_break_end")
        else:
            logger.info("Work period skipped")
        self._advance()

    def delay(self, seconds: float) -> None:
        """
        Add time to the running break.

        Only meaningful during a break; during a work period this is a
        no-op.

        Args:
            seconds: Seconds to add.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot delay by a negative duration ({seconds})")
        if not self.cycle.is_breaking:
            logger.info("Not on a break, nothing to delay")
            return

        self.cycle.extend(seconds)
        self.delayed += 1
        logger.info(f"Break delayed by {seconds:g}s ({self.delayed} delays so far)")
        self._publish()

    def pause(self) -> None:
        """Freeze the countdown. Does nothing if already paused."""
        if self._paused:
            return
        self._paused = True
        self._cancel_gate()
        logger.info("Break schedule paused")
        self._publish()

    def resume(self) -> None:
        """Unfreeze the countdown. Does nothing if not paused."""
        if not self._paused:
            return
        self._paused = False
        self._paused_for_sleep = False
        self._last_tick = self.clock.now()
        logger.info("Break schedule resumed")

        cycle = self.cycle
        if self.is_running and cycle.is_working and cycle.is_expired:
            self._request_break()
        self._publish()

    def toggle_paused(self) -> None:
        if self._paused:
            self.resume()
        else:
            self.pause()

    def start_break(self, duration: Optional[float] = None) -> None:
        """
        Start the break of the current cycle right now.

        Args:
            duration: Break length in seconds. Defaults to the cycle's break length.

        Raises:
            ValueError: If duration is negative.
        """
        if duration is not None and duration < 0:
            raise ValueError(f"Break duration must not be negative (got {duration})")
        self._enter_break(duration)

    def restart_work_cycle(self) -> None:
        """Rewind the current cycle to the start of its work period."""
        self._cancel_gate()
        self.cycle.start_working()
        self._last_tick = self.clock.now()
        logger.info(f"Restarted work cycle {self._index + 1}: {self.cycle}")
        self._publish()

    def restart_schedule(self) -> None:
        """Go back to the first cycle's work period. Counters are kept."""
        self._cancel_gate()
        self._index = 0
        for cycle in self._schedule:
            cycle.reset()
        self._last_tick = self.clock.now()
        logger.info("Restarted the break schedule")
        self._publish()

    def set_schedule(self, schedule: Iterable[WorkCycle]) -> None:
        """
        Replace the work cycles and start over at the first one.

        Counters and the paused flag are kept.

        Raises:
            EmptyScheduleError: If `schedule` is empty. The current schedule
                stays in place.
        """
        cycles = list(schedule)
        if not cycles:
            raise EmptyScheduleError("A break schedule needs at least one work cycle")

        self._schedule = cycles
        logger.info(f"Schedule replaced with {len(cycles)} work cycles")
        self._log_schedule()
        self.restart_schedule()

    # ------------------------------------------------------------------
    # System sleep
    # ------------------------------------------------------------------

    def _on_sleep_state_change(self, state: SleepState) -> None:
        if self._stopped:
            return

        if state is SleepState.SLEEPING:
            logger.info("System is going to sleep, pausing the work cycle")
            slept_at = getattr(self.sleep_monitor, "slept_at", None)
            self._slept_at = slept_at or self._now()
            if not self._paused:
                self.pause()
                self._paused_for_sleep = True
            return

        logger.info("System woke up from sleep")
        if self._slept_at is not None and self._slept_at.date() < self._now().date():
            logger.info("Different day, restarting the break schedule")
            self.restart_schedule()
        else:
            logger.info("Same day, continuing the last work cycle")
        if self._paused_for_sleep:
            self.resume()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def events(self, maxsize: int = 16) -> AsyncIterator[ScheduleState]:
        """
        Stream state snapshots as they are published.

        Each consumer gets its own bounded queue. A consumer that falls
        behind loses the oldest snapshots, never the newest. The stream
        ends when the schedule is stopped.

        Args:
            maxsize: Snapshots buffered for this consumer.
        """
        if self._stopped:
            return

        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        try:
            while True:
                state = await queue.get()
                if state is None:
                    return
                yield state
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    @staticmethod
    def _offer(queue: asyncio.Queue, item: Optional[ScheduleState]) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(item)

    def _publish(self) -> None:
        if not self._stopped:
            state = self.state
            for queue in self._queues:
                self._offer(queue, state)
        self._notify(self.on_state_change, "on_state_change")

    def _notify(self, callback: Optional[Callable[[ScheduleState], None]], name: str) -> None:
        if self._stopped or callback is None:
            return
        try:
            callback(self.state)
        except Exception as e:
            logger.debug(f"{name} callback error: {e}")

    def _log_schedule(self) -> None:
        for position, cycle in enumerate(self._schedule, start=1):
            logger.debug(f"  {position}: {cycle}")
