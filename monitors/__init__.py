"""
Activity monitors for LookAway.

Signals the break schedule consumes: user input inactivity, camera usage
and system sleep. Platform backends are imported lazily by each monitor.
"""

from monitors.camera_activity import CameraActivityMonitor, CameraInfo, ConnectedState
from monitors.inactivity import InactivityGate
from monitors.system_sleep import SleepState, SystemSleepMonitor
from monitors.user_activity import ActivityThreshold, UserActivityMonitor

__all__ = [
    "ActivityThreshold",
    "CameraActivityMonitor",
    "CameraInfo",
    "ConnectedState",
    "InactivityGate",
    "SleepState",
    "SystemSleepMonitor",
    "UserActivityMonitor",
]
