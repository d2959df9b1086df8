"""
Persistence for the break schedule.

The schedule is stored as a JSON list of work cycle configs under the
"schedule" key of schedule.json in the user data directory. Anything
missing or unreadable falls back to DEFAULT_SCHEDULE.
"""

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import config
from core.time_span import TimeSpan
from core.work_cycle import WorkCycle

logger = logging.getLogger(__name__)

SCHEDULE_KEY = "schedule"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class WorkCycleConfig:
    """User-editable settings for one work cycle."""

    work_length: TimeSpan
    break_length: TimeSpan
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "work_length": self.work_length.to_dict(),
            "break_length": self.break_length.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkCycleConfig":
        """
        Decode one config.

        Raises:
            KeyError: If a length is missing.
            ValueError: If a length is malformed or negative.
            TypeError: If the entry isn't a mapping.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Work cycle entry must be an object, got {type(data).__name__}")

        work_length = TimeSpan.from_dict(data["work_length"])
        break_length = TimeSpan.from_dict(data["break_length"])
        if work_length.seconds < 0 or break_length.seconds < 0:
            raise ValueError("Work cycle lengths must not be negative")

        return cls(
            work_length=work_length,
            break_length=break_length,
            id=str(data.get("id") or _new_id()),
        )

    def to_work_cycle(self) -> WorkCycle:
        return WorkCycle(self.work_length.seconds, self.break_length.seconds)


def default_schedule() -> List[WorkCycleConfig]:
    """Three short eye breaks followed by a longer one."""
    short = [
        WorkCycleConfig(TimeSpan.of_minutes(15), TimeSpan.of_seconds(10))
        for _ in range(3)
    ]
    return short + [WorkCycleConfig(TimeSpan.of_minutes(15), TimeSpan.of_minutes(5))]


DEFAULT_SCHEDULE: List[WorkCycleConfig] = default_schedule()


def build_work_cycles(configs: Iterable[WorkCycleConfig]) -> List[WorkCycle]:
    return [cycle_config.to_work_cycle() for cycle_config in configs]


def encode_schedule(configs: Iterable[WorkCycleConfig]) -> Dict[str, Any]:
    return {SCHEDULE_KEY: [cycle_config.to_dict() for cycle_config in configs]}


def decode_schedule(data: Any) -> List[WorkCycleConfig]:
    """
    Decode the JSON document written by encode_schedule().

    Raises:
        KeyError, ValueError, TypeError: On any malformed content.
    """
    if not isinstance(data, dict):
        raise TypeError("Schedule document must be an object")
    entries = data[SCHEDULE_KEY]
    if not isinstance(entries, list):
        raise TypeError("Schedule must be a list")
    configs = [WorkCycleConfig.from_dict(entry) for entry in entries]
    if not configs:
        raise ValueError("Stored schedule is empty")
    return configs


class ScheduleStore:
    """
    Loads and saves the schedule JSON file.

    Writes are atomic (temp file + os.replace) so a crash mid-save never
    leaves a half written file behind.
    """

    def __init__(self, data_file: Optional[Path] = None):
        """
        Args:
            data_file: Path to the JSON file. Defaults to config.SCHEDULE_FILE.
        """
        self.data_file = Path(data_file) if data_file else config.SCHEDULE_FILE

    def load_schedule(self) -> List[WorkCycleConfig]:
        """
        Read the stored schedule.

        Returns:
            The stored configs, or a fresh copy of DEFAULT_SCHEDULE if the
            file is missing or can't be decoded.
        """
        if not self.data_file.exists():
            logger.info("No saved schedule, using the default schedule")
            return default_schedule()

        try:
            with open(self.data_file, "r") as f:
                configs = decode_schedule(json.load(f))
            logger.debug(f"Loaded schedule with {len(configs)} work cycles")
            return configs
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, IOError, OSError) as e:
            logger.warning(f"Failed to load schedule: {e}. Using the default schedule.")
            return default_schedule()

    def save_schedule(self, configs: Iterable[WorkCycleConfig]) -> bool:
        """
        Write the schedule to disk atomically.

        Args:
            configs: Work cycle configs to store. Must not be empty.

        Returns:
            True if saved, False if the schedule was empty or the write failed.
        """
        configs = list(configs)
        if not configs:
            logger.error("Refusing to save an empty schedule")
            return False

        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                suffix=".tmp",
                prefix="schedule_",
                dir=self.data_file.parent,
            )
            try:
                with os.fdopen(temp_fd, "w") as f:
                    json.dump(encode_schedule(configs), f, indent=2)
                os.replace(temp_path, self.data_file)
            except (IOError, OSError, TypeError, ValueError):
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

            logger.info(f"Saved schedule with {len(configs)} work cycles")
            return True
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save schedule: {e}")
            return False
