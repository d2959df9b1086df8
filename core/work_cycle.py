"""
A single work/break cycle.

WorkCycle holds the countdown for one entry of the schedule. It is a plain
state machine: it never sleeps or schedules anything itself. BreakSchedule
feeds it elapsed time and decides what happens when a phase runs out.
"""

import math
from enum import Enum
from typing import Optional


class Phase(Enum):
    """Which half of the cycle is counting down."""

    WORKING = "working"
    BREAKING = "breaking"


def _check_length(name: str, seconds: float) -> float:
    if not math.isfinite(seconds):
        raise ValueError(f"{name} must be a finite number of seconds (got {seconds})")
    if seconds < 0:
        raise ValueError(f"{name} must not be negative (got {seconds})")
    return float(seconds)


class WorkCycle:
    """
    Countdown state for one work period followed by one break.

    Invariant: 0 <= remaining <= phase_length.
    """

    def __init__(self, work_length: float, break_length: float):
        """
        Args:
            work_length: Seconds of work before the break is due.
            break_length: Seconds the break lasts.

        Raises:
            ValueError: If either length is negative or not finite.
        """
        self.work_length = _check_length("work_length", work_length)
        self.break_length = _check_length("break_length", break_length)
        self.phase = Phase.WORKING
        self.phase_length = self.work_length
        self.remaining = self.work_length

    def __repr__(self) -> str:
        return (
            f"WorkCycle(work={self.work_length:g}s, break={self.break_length:g}s, "
            f"phase={self.phase.value}, remaining={self.remaining:g})"
        )

    @property
    def is_working(self) -> bool:
        return self.phase is Phase.WORKING

    @property
    def is_breaking(self) -> bool:
        return self.phase is Phase.BREAKING

    @property
    def is_expired(self) -> bool:
        return self.remaining <= 0

    def start_working(self, duration: Optional[float] = None) -> None:
        """Enter the working phase with a full (or given) countdown."""
        length = self.work_length if duration is None else _check_length("duration", duration)
        self.phase = Phase.WORKING
        self.phase_length = length
        self.remaining = length

    def start_break(self, duration: Optional[float] = None) -> None:
        """Enter the break phase with a full (or given) countdown."""
        length = self.break_length if duration is None else _check_length("duration", duration)
        self.phase = Phase.BREAKING
        self.phase_length = length
        self.remaining = length

    def count_down(self, elapsed: float) -> bool:
        """
        Subtract elapsed time from the current phase.

        Args:
            elapsed: Seconds since the previous tick.

        Returns:
            True if the phase has run out.
        """
        if elapsed > 0:
            self.remaining = max(0.0, self.remaining - elapsed)
        return self.is_expired

    def extend(self, seconds: float) -> None:
        """
        Add time to the current phase without changing it.

        phase_length grows by the same amount so progress stays in [0, 1].
        """
        seconds = _check_length("seconds", seconds)
        self.remaining += seconds
        self.phase_length += seconds

    def reset(self) -> None:
        """Back to the start of the working phase."""
        self.start_working()
