"""
User input inactivity detection.

The monitor asks a sampler "how many seconds since the last event of this
kind?" for each configured threshold and waits until every one of them is
over its limit. Sampling is polled on the injected clock.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set

import config
from core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Event kinds the platform samplers understand
KEY_UP = "keyUp"
LEFT_MOUSE_UP = "leftMouseUp"
RIGHT_MOUSE_UP = "rightMouseUp"
OTHER_MOUSE_UP = "otherMouseUp"


@dataclass(frozen=True)
class ActivityThreshold:
    """Seconds of silence required for one kind of input event."""

    event: str
    threshold: float


def default_thresholds() -> List[ActivityThreshold]:
    return [
        ActivityThreshold(event, seconds)
        for event, seconds in config.DEFAULT_ACTIVITY_THRESHOLDS.items()
    ]


class UserActivityMonitor:
    """
    Waits until the user has stopped typing and clicking.

    The sampler is a callable taking an event kind and returning the seconds
    since that kind of event last happened. By default it is the platform
    idle-time source from monitors.idle_time.
    """

    def __init__(
        self,
        thresholds: Optional[Iterable[ActivityThreshold]] = None,
        seconds_since_last_event: Optional[Callable[[str], float]] = None,
        clock: Optional[Clock] = None,
        poll_interval: float = config.TICK_INTERVAL_SECONDS,
    ):
        """
        Args:
            thresholds: Limits to wait for. Defaults to config.DEFAULT_ACTIVITY_THRESHOLDS.
                An explicit empty list means "no conditions".
            seconds_since_last_event: Sampler callable. Defaults to the platform source.
            clock: Clock used for the polling sleep.
            poll_interval: Seconds between samples.
        """
        if thresholds is None:
            thresholds = default_thresholds()
        self.thresholds: List[ActivityThreshold] = list(thresholds)

        if seconds_since_last_event is None:
            from monitors.idle_time import get_idle_sampler
            seconds_since_last_event = get_idle_sampler()
        self._sample = seconds_since_last_event
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self._failing: Set[str] = set()

    def _sample_event(self, event: str) -> Optional[float]:
        try:
            seconds = self._sample(event)
        except OSError as e:
            if event in self._failing:
                logger.debug(f"Could not read idle time for {event}: {e}")
            else:
                logger.warning(f"Could not read idle time for {event}: {e}")
                self._failing.add(event)
            return None
        self._failing.discard(event)
        return seconds

    def sample(self) -> Dict[str, Optional[float]]:
        """Current seconds-since-last-event for every threshold (None if unreadable)."""
        return {t.event: self._sample_event(t.event) for t in self.thresholds}

    def is_inactive(self) -> bool:
        """
        Check every threshold once.

        A threshold whose sampler fails counts as inactive so one broken
        source can't hold the break back forever.

        Returns:
            True if all thresholds are at or over their limit.
        """
        inactive = True
        # Walk the full set each poll, no short-circuit
        for threshold in self.thresholds:
            seconds = self._sample_event(threshold.event)
            if seconds is not None and seconds < threshold.threshold:
                inactive = False
        return inactive

    async def wait_for_inactivity(self) -> None:
        """
        Return once the user has been idle long enough on every threshold.

        With no thresholds configured this returns immediately without
        sampling anything.
        """
        if not self.thresholds:
            logger.warning("No activity thresholds configured, not waiting for inactivity")
            return

        logger.debug("Waiting for user inactivity")
        while not self.is_inactive():
            await self.clock.sleep(self.poll_interval)
        logger.debug("User is inactive")
