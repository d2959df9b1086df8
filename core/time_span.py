"""
Time spans and countdown labels.

A TimeSpan is a value with a unit (seconds, minutes or hours) used by the
persisted schedule. Everything at runtime works in plain seconds.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union


class TimeUnit(Enum):
    """Units a schedule length can be expressed in."""

    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"

    @property
    def factor(self) -> int:
        """Number of seconds in one unit."""
        return _UNIT_FACTORS[self]

    def to_seconds(self, value: float) -> float:
        return value * self.factor

    def from_seconds(self, seconds: float) -> float:
        return seconds / self.factor

    def pluralized(self, value: float) -> str:
        """
        Unit name with a plural suffix where needed.

        Args:
            value: The amount the unit is attached to.

        Returns:
            "second" for exactly one, "seconds" otherwise.
        """
        return self.value if value == 1 else f"{self.value}s"


_UNIT_FACTORS = {
    TimeUnit.SECOND: 1,
    TimeUnit.MINUTE: 60,
    TimeUnit.HOUR: 3600,
}


@dataclass(frozen=True, eq=False)
class TimeSpan:
    """
    A length of time in a specific unit.

    Two spans are equal when they cover the same number of seconds,
    so 1 minute == 60 seconds.
    """

    value: float
    unit: TimeUnit = TimeUnit.SECOND

    @property
    def seconds(self) -> float:
        return self.unit.to_seconds(self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeSpan):
            return NotImplemented
        return self.seconds == other.seconds

    def __hash__(self) -> int:
        return hash(self.seconds)

    def __str__(self) -> str:
        value = int(self.value) if float(self.value).is_integer() else self.value
        return f"{value} {self.unit.pluralized(self.value)}"

    def to_dict(self) -> Dict[str, Union[float, str]]:
        return {"value": self.value, "unit": self.unit.value}

    @classmethod
    def from_dict(cls, data: Dict) -> "TimeSpan":
        """
        Build a span from its JSON form.

        Args:
            data: Mapping with "value" and an optional "unit" (defaults to seconds).

        Returns:
            The decoded TimeSpan.

        Raises:
            KeyError: If "value" is missing.
            ValueError: If the value is not a finite number or the unit is unknown.
        """
        value = data["value"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Invalid time span value: {value!r}")
        if not math.isfinite(value):
            raise ValueError(f"Time span value must be finite: {value!r}")
        return cls(value=value, unit=TimeUnit(data.get("unit", TimeUnit.SECOND.value)))

    @classmethod
    def of_seconds(cls, seconds: float) -> "TimeSpan":
        return cls(value=seconds, unit=TimeUnit.SECOND)

    @classmethod
    def of_minutes(cls, minutes: float) -> "TimeSpan":
        return cls(value=minutes, unit=TimeUnit.MINUTE)

    @classmethod
    def of_hours(cls, hours: float) -> "TimeSpan":
        return cls(value=hours, unit=TimeUnit.HOUR)


def format_time(seconds: float) -> str:
    """
    Format a countdown as a zero-padded MM:SS label.

    Fractional seconds are truncated and negative input shows as 00:00.
    Minutes are not wrapped into hours, so 3600 renders as "60:00".

    Args:
        seconds: Remaining time in seconds.

    Returns:
        Label such as "01:35".
    """
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"
