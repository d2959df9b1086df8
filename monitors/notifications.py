"""
Notification sources for SystemSleepMonitor.

Sources share one small interface:

    token = source.subscribe(name, handler)
    source.unsubscribe(token)

where handler receives a Notification. Three sources live here:

- NotificationCenter: in-process center. Used by tests and as the sink for
  SuspendDetector.
- SuspendDetector: notices a suspend/resume by comparing the monotonic clock
  (stops while suspended) with the wall clock (keeps going) and posts a
  lock/unlock pair to a NotificationCenter.
- DistributedNotificationSource: macOS screen lock/unlock through
  NSDistributedNotificationCenter (PyObjC).
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import config
from core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

SCREEN_LOCKED = "com.apple.screenIsLocked"
SCREEN_UNLOCKED = "com.apple.screenIsUnlocked"


@dataclass(frozen=True)
class Notification:
    name: str
    timestamp: datetime = field(default_factory=datetime.now)
    info: Optional[Dict[str, Any]] = None


NotificationHandler = Callable[[Notification], None]


class NotificationCenter:
    """Thread-safe in-process publish/subscribe by notification name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[int, Tuple[str, NotificationHandler]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, name: str, handler: NotificationHandler) -> int:
        with self._lock:
            token = next(self._tokens)
            self._handlers[token] = (name, handler)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._handlers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def post(self, name: str, timestamp: Optional[datetime] = None, info: Optional[Dict[str, Any]] = None) -> None:
        """
        Deliver a notification to every handler subscribed to `name`.

        Handlers run synchronously on the caller's thread. A handler that
        raises is logged and does not stop delivery to the others.
        """
        notification = Notification(name=name, timestamp=timestamp or datetime.now(), info=info)
        with self._lock:
            handlers = [handler for (n, handler) in self._handlers.values() if n == name]

        for handler in handlers:
            try:
                handler(notification)
            except Exception as e:
                logger.warning(f"Notification handler for {name} failed: {e}")


class SuspendDetector:
    """
    Detects system suspension from clock discontinuities.

    The monotonic clock pauses while the machine is suspended and the wall
    clock doesn't. When the wall clock moved more than the threshold past
    what the monotonic clock accounts for, the machine was asleep: a lock
    notification (stamped with the last time we saw it awake) and an unlock
    notification are posted.
    """

    def __init__(
        self,
        center: NotificationCenter,
        suspend_threshold_seconds: float = config.SUSPEND_THRESHOLD_SECONDS,
        poll_interval_seconds: float = config.SUSPEND_POLL_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            center: Where lock/unlock notifications are posted.
            suspend_threshold_seconds: Minimum unexplained wall clock jump
                treated as a suspend.
            poll_interval_seconds: How often the clocks are compared.
            clock: Clock used for the polling sleep.
            monotonic: Monotonic time source.
            wall_clock: Wall time source (epoch seconds).
        """
        self.center = center
        self.suspend_threshold_seconds = suspend_threshold_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock or SystemClock()
        self._monotonic = monotonic
        self._wall_clock = wall_clock
        self.last_monotonic: Optional[float] = None
        self.last_wall_clock: Optional[float] = None

    def check(self) -> float:
        """
        Compare both clocks with the previous reading and post on a suspend.

        Returns:
            The unexplained wall clock jump in seconds (negative if the wall
            clock was set back).
        """
        current_mono = self._monotonic()
        current_wall = self._wall_clock()

        if self.last_monotonic is None or self.last_wall_clock is None:
            self.last_monotonic = current_mono
            self.last_wall_clock = current_wall
            return 0.0

        expected_wall = self.last_wall_clock + (current_mono - self.last_monotonic)
        wall_jump = current_wall - expected_wall

        if wall_jump > self.suspend_threshold_seconds:
            logger.info(f"System was suspended for about {wall_jump:.0f}s")
            self.center.post(SCREEN_LOCKED, timestamp=datetime.fromtimestamp(self.last_wall_clock))
            self.center.post(SCREEN_UNLOCKED, timestamp=datetime.fromtimestamp(current_wall))
        elif wall_jump < -self.suspend_threshold_seconds:
            logger.info(f"Wall clock moved back by {-wall_jump:.0f}s")

        self.last_monotonic = current_mono
        self.last_wall_clock = current_wall
        return wall_jump

    async def watch(self) -> None:
        """Poll until cancelled."""
        self.check()
        while True:
            await self.clock.sleep(self.poll_interval_seconds)
            self.check()

    def subscribe(self, name: str, handler: NotificationHandler) -> int:
        return self.center.subscribe(name, handler)

    def unsubscribe(self, token: int) -> None:
        self.center.unsubscribe(token)


class DistributedNotificationSource:
    """
    macOS screen lock/unlock notifications.

    Observers are delivered on the main run loop, so the app must run one
    (PyObjCTools.AppHelper.runConsoleEventLoop) for anything to arrive.
    Handlers go through `dispatch` to get back onto the event loop thread.
    """

    def __init__(self, dispatch: Optional[Callable[..., Any]] = None):
        from Foundation import NSDistributedNotificationCenter  # type: ignore[import-not-found]

        self._center = NSDistributedNotificationCenter.defaultCenter()
        self.dispatch = dispatch
        self._observers: Dict[int, Any] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, name: str, handler: NotificationHandler) -> int:
        def on_notification(ns_notification) -> None:
            notification = Notification(name=str(ns_notification.name()), timestamp=datetime.now())
            if self.dispatch:
                self.dispatch(handler, notification)
            else:
                handler(notification)

        observer = self._center.addObserverForName_object_queue_usingBlock_(
            name, None, None, on_notification
        )
        token = next(self._tokens)
        self._observers[token] = observer
        return token

    def unsubscribe(self, token: int) -> None:
        observer = self._observers.pop(token, None)
        if observer is not None:
            self._center.removeObserver_(observer)
