"""
System sleep / screen lock detection.

SystemSleepMonitor turns raw lock/unlock notifications into a debounced
two-valued SleepState. Repeated notifications of the same kind are
dropped by comparing against the current state.
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from monitors.notifications import (
    SCREEN_LOCKED,
    SCREEN_UNLOCKED,
    DistributedNotificationSource,
    Notification,
    NotificationCenter,
)

logger = logging.getLogger(__name__)


class SleepState(Enum):
    AWAKE = "awake"
    SLEEPING = "sleeping"


class SystemSleepMonitor:
    """
    Emits SleepState changes driven by screen lock notifications.

    Screen lock covers the screensaver and system sleep as well, since
    macOS locks the screen before sleeping.
    """

    def __init__(self, notification_source: Any = None):
        """
        Args:
            notification_source: Object with subscribe(name, handler) -> token
                and unsubscribe(token). Defaults to the platform source
                (see get_default_notification_source).
        """
        if notification_source is None:
            notification_source = get_default_notification_source()
        self.notification_source = notification_source

        self._callback: Optional[Callable[[SleepState], None]] = None
        self._tokens: List[Any] = []
        self._state = SleepState.AWAKE
        self._listening = False
        self.slept_at: Optional[datetime] = None

    @property
    def state(self) -> SleepState:
        return self._state

    @property
    def is_sleeping(self) -> bool:
        return self._state is SleepState.SLEEPING

    @property
    def is_listening(self) -> bool:
        return self._listening

    def start_listening(self, callback: Callable[[SleepState], None]) -> None:
        """
        Subscribe to lock and unlock notifications.

        A subscription that fails is logged and skipped; the other one is
        still registered.

        Args:
            callback: Called with the new SleepState on every change.
        """
        self.stop_listening()
        logger.info("Starting system sleep listener")
        self._callback = callback
        self._listening = True

        for name, handler in ((SCREEN_LOCKED, self._on_locked), (SCREEN_UNLOCKED, self._on_unlocked)):
            try:
                self._tokens.append(self.notification_source.subscribe(name, handler))
            except (OSError, RuntimeError, ValueError) as e:
                logger.warning(f"Could not subscribe to {name}: {e}")

    def stop_listening(self) -> None:
        """Unsubscribe from both notifications. Safe to call more than once."""
        if not self._listening:
            return

        logger.info("Stopping system sleep listener")
        self._listening = False
        self._callback = None
        for token in self._tokens:
            try:
                self.notification_source.unsubscribe(token)
            except (OSError, RuntimeError, KeyError) as e:
                logger.debug(f"Could not unsubscribe {token}: {e}")
        self._tokens = []
        # No notifications arrive while stopped, so the last state is stale
        self._state = SleepState.AWAKE

    def _on_locked(self, notification: Notification) -> None:
        logger.debug(f"Received {notification.name}")
        if self._set_state(SleepState.SLEEPING):
            self.slept_at = notification.timestamp
            self._emit()

    def _on_unlocked(self, notification: Notification) -> None:
        logger.debug(f"Received {notification.name}")
        if self._set_state(SleepState.AWAKE):
            self._emit()

    def _set_state(self, next_state: SleepState) -> bool:
        if not self._listening:
            return False
        if next_state is self._state:
            logger.debug(f"System sleep state unchanged: {next_state.value}")
            return False
        logger.info(f"System sleep state changed: {next_state.value}")
        self._state = next_state
        return True

    def _emit(self) -> None:
        if self._callback:
            try:
                self._callback(self._state)
            except Exception as e:
                logger.debug(f"Sleep state callback error: {e}")


def get_default_notification_source(dispatch: Optional[Callable[..., Any]] = None) -> Any:
    """
    Pick the lock/unlock notification source for the current platform.

    macOS uses the distributed notification center. Elsewhere, or if PyObjC
    is missing, an in-process center is returned; pair it with a
    SuspendDetector to get suspend/resume events.

    Args:
        dispatch: Delivery callable for sources that call back from another thread.
    """
    if sys.platform == "darwin":
        try:
            return DistributedNotificationSource(dispatch=dispatch)
        except ImportError:
            logger.warning("Foundation not available - screen lock detection disabled")
    return NotificationCenter()
