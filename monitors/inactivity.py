"""
Combined "the user is away from the keyboard and not on a call" wait.

BreakSchedule awaits InactivityGate.wait() before starting a break so a
break never pops up in the middle of typing or a video call.
"""

import asyncio
import logging
from typing import Optional

from monitors.camera_activity import CameraActivityMonitor, ConnectedState
from monitors.user_activity import UserActivityMonitor

logger = logging.getLogger(__name__)


class InactivityGate:
    """Waits for every camera to be off and then for user input to stop."""

    def __init__(
        self,
        user_monitor: UserActivityMonitor,
        camera_monitor: Optional[CameraActivityMonitor] = None,
    ):
        self.user_monitor = user_monitor
        self.camera_monitor = camera_monitor

    @property
    def camera_in_use(self) -> bool:
        return bool(self.camera_monitor and self.camera_monitor.is_connected)

    async def wait(self) -> None:
        """
        Return once no camera is running and the user is inactive.

        The camera is checked again after the user wait since a call may
        have started in the meantime. Camera listening only lasts for the
        duration of this call, including when it is cancelled.
        """
        if self.camera_monitor is None:
            await self.user_monitor.wait_for_inactivity()
            return

        camera_off = asyncio.Event()

        def on_camera_change(state: ConnectedState) -> None:
            if state is ConnectedState.DISCONNECTED:
                camera_off.set()
            else:
                camera_off.clear()

        self.camera_monitor.start_listening(on_camera_change)
        try:
            if not self.camera_monitor.is_connected:
                camera_off.set()
            else:
                logger.info("Camera in use, holding the break")

            while True:
                await camera_off.wait()
                await self.user_monitor.wait_for_inactivity()
                if not self.camera_monitor.is_connected:
                    logger.info("User is inactive and all cameras are off")
                    return
                logger.debug("Camera turned on while waiting for inactivity")
        finally:
            self.camera_monitor.stop_listening()
