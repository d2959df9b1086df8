"""
Core timer package for LookAway.

Contains the clock abstraction, time spans and the per-cycle state
machine. BreakSchedule lives in core.break_schedule and is imported from
there, since it depends on the monitors package.
"""

from core.clock import Clock, SystemClock, VirtualClock
from core.time_span import TimeSpan, TimeUnit, format_time
from core.work_cycle import Phase, WorkCycle

__all__ = [
    "Clock",
    "SystemClock",
    "VirtualClock",
    "TimeSpan",
    "TimeUnit",
    "format_time",
    "Phase",
    "WorkCycle",
]
