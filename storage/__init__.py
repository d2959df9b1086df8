"""Schedule persistence for LookAway."""

from storage.schedule_store import (
    DEFAULT_SCHEDULE,
    ScheduleStore,
    WorkCycleConfig,
    build_work_cycles,
)

__all__ = ["DEFAULT_SCHEDULE", "ScheduleStore", "WorkCycleConfig", "build_work_cycles"]
