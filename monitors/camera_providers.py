"""
Platform camera backends for CameraActivityMonitor.

Neither macOS (through PyObjC) nor Linux gives Python a push notification
for "camera started capturing", so both backends poll the running flag in
a background thread and report changes through listener callbacks.

Callbacks are handed to `dispatch` rather than called on the poll thread.
The app passes loop.call_soon_threadsafe so the monitor is only touched on
the event loop thread.
"""

import asyncio
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import config
from monitors.camera_activity import (
    PROP_CATEGORY,
    PROP_IS_RUNNING,
    PROP_IS_VIRTUAL,
    PROP_MANUFACTURER,
    PROP_MODEL_ID,
    PROP_NAME,
    PROP_TYPE,
    PROP_UUID,
)

logger = logging.getLogger(__name__)


def _call_now(callback: Callable, *args: Any) -> None:
    callback(*args)


def _in_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True

class PollingDeviceProvider:
    """
    Base class for providers that detect changes by polling.

    Subclasses implement list_devices(), get_property() and is_running().
    """

    def __init__(
        self,
        poll_interval: float = config.CAMERA_POLL_INTERVAL_SECONDS,
        dispatch: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            poll_interval: Seconds between running-flag checks.
            dispatch: Callable(callback, *args) that delivers events. Defaults
                to calling the callback directly on the poll thread.
        """
        self.poll_interval = poll_interval
        self.dispatch = dispatch or _call_now

        self._lock = threading.Lock()
        self._listeners: Dict[Any, Callable[[bool], None]] = {}
        self._running_flags: Dict[Any, bool] = {}
        self._devices_listeners: List[Callable[[], None]] = []
        self._known_devices: List[Any] = []

        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    # --- Subclass hooks ---

    def list_devices(self) -> List[Any]:
        raise NotImplementedError

    def get_property(self, device_id: Any, key: str) -> Optional[Any]:
        raise NotImplementedError

    def is_running(self, device_id: Any) -> bool:
        return bool(self.get_property(device_id, PROP_IS_RUNNING))

    # --- Listener registry ---

    def add_listener(self, device_id: Any, on_change: Callable[[bool], None]) -> None:
        running = self.is_running(device_id)
        with self._lock:
            self._listeners[device_id] = on_change
            self._running_flags[device_id] = running
        self._ensure_polling()

    def remove_listener(self, device_id: Any) -> None:
        with self._lock:
            self._listeners.pop(device_id, None)
            self._running_flags.pop(device_id, None)
        self._stop_if_idle()

    def add_devices_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback not in self._devices_listeners:
                self._devices_listeners.append(callback)
            self._known_devices = self.list_devices()
        self._ensure_polling()

    def remove_devices_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._devices_listeners:
                self._devices_listeners.remove(callback)
        self._stop_if_idle()

    def stop_listening(self) -> None:
        """Drop every listener and stop the poll thread."""
        with self._lock:
            self._listeners.clear()
            self._running_flags.clear()
            self._devices_listeners.clear()
        self._stop_polling()

    # --- Poll thread ---

    def _ensure_polling(self) -> None:
        if self._poll_thread and self._poll_thread.is_alive():
            return
        # Each thread gets its own event so an unjoined old thread still stops
        self._stop_event = threading.Event()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, args=(self._stop_event,), daemon=True
        )
        self._poll_thread.start()
        logger.debug(f"Camera poll thread started ({self.poll_interval}s interval)")

    def _stop_if_idle(self) -> None:
        with self._lock:
            idle = not self._listeners and not self._devices_listeners
        if idle:
            self._stop_polling()

    def _stop_polling(self) -> None:
        self._stop_event.set()
        thread = self._poll_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            if _in_event_loop():
                # Never block the loop; the daemon thread exits after its current poll
                logger.debug("Camera poll thread signalled to stop")
                self._poll_thread = None
                return
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Camera poll thread did not stop within timeout")
        self._poll_thread = None

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except OSError as e:
                logger.warning(f"Camera poll failed: {e}")

    def poll_once(self) -> None:
        """Check every watched device once and dispatch changes."""
        with self._lock:
            watched = list(self._listeners.items())
            watch_topology = bool(self._devices_listeners)

        # Device reads can be slow (procfs scans), so the lock isn't held
        readings = [(device_id, listener, self.is_running(device_id)) for device_id, listener in watched]
        devices = self.list_devices() if watch_topology else None

        changes = []
        topology_changed = False
        with self._lock:
            for device_id, listener, running in readings:
                if self._listeners.get(device_id) is not listener:
                    continue
                if running != self._running_flags.get(device_id):
                    self._running_flags[device_id] = running
                    changes.append((listener, running))

            if devices is not None and self._devices_listeners and devices != self._known_devices:
                self._known_devices = devices
                topology_changed = True
            devices_listeners = list(self._devices_listeners)

        for listener, running in changes:
            self.dispatch(listener, running)
        if topology_changed:
            for callback in devices_listeners:
                self.dispatch(callback)


class AVFoundationDeviceProvider(PollingDeviceProvider):
    """macOS cameras through AVCaptureDevice (PyObjC)."""

    # AVMediaTypeVideo
    MEDIA_TYPE_VIDEO = "vide"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        import AVFoundation  # type: ignore[import-not-found]
        self._av = AVFoundation
        self._devices: Dict[str, Any] = {}

    def list_devices(self) -> List[str]:
        devices = self._av.AVCaptureDevice.devicesWithMediaType_(self.MEDIA_TYPE_VIDEO) or []
        self._devices = {str(device.uniqueID()): device for device in devices}
        return list(self._devices.keys())

    def get_property(self, device_id: str, key: str) -> Optional[Any]:
        device = self._devices.get(device_id)
        if device is None:
            return None

        if key == PROP_IS_RUNNING:
            return bool(device.isInUseByAnotherApplication())
        if key == PROP_NAME:
            return str(device.localizedName())
        if key == PROP_MANUFACTURER:
            return str(device.manufacturer())
        if key == PROP_UUID:
            return str(device.uniqueID())
        if key == PROP_MODEL_ID:
            return str(device.modelID())
        if key == PROP_TYPE:
            return str(device.deviceType())
        if key == PROP_IS_VIRTUAL:
            # Camera extensions and virtual cams report as external unknown devices
            return "virtual" in str(device.localizedName()).lower()
        return None


class V4L2DeviceProvider(PollingDeviceProvider):
    """
    Linux cameras through /sys/class/video4linux.

    A device counts as running when some process holds its /dev node open.
    Only processes we are allowed to inspect are seen, which covers the
    user's own video call apps.
    """

    def __init__(
        self,
        sysfs_root: Path = Path("/sys/class/video4linux"),
        proc_root: Path = Path("/proc"),
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.sysfs_root = sysfs_root
        self.proc_root = proc_root

    def list_devices(self) -> List[str]:
        if not self.sysfs_root.exists():
            return []
        return sorted(entry.name for entry in self.sysfs_root.iterdir() if entry.name.startswith("video"))

    def _read_sysfs(self, device_id: str, name: str) -> Optional[str]:
        try:
            return (self.sysfs_root / device_id / name).read_text().strip()
        except OSError:
            return None

    def _open_device_nodes(self) -> set:
        nodes = set()
        try:
            pids = [entry for entry in os.listdir(self.proc_root) if entry.isdigit()]
        except OSError as e:
            logger.debug(f"Could not list processes: {e}")
            return nodes

        for pid in pids:
            fd_dir = self.proc_root / pid / "fd"
            try:
                for fd in os.listdir(fd_dir):
                    target = os.readlink(fd_dir / fd)
                    if target.startswith("/dev/video"):
                        nodes.add(target)
            except OSError:
                # Process exited or belongs to another user
                continue
        return nodes

    def is_running(self, device_id: str) -> bool:
        return f"/dev/{device_id}" in self._open_device_nodes()

    def get_property(self, device_id: str, key: str) -> Optional[Any]:
        if key == PROP_IS_RUNNING:
            return self.is_running(device_id)
        if key == PROP_NAME:
            return self._read_sysfs(device_id, "name")
        if key == PROP_UUID:
            return device_id
        if key == PROP_MODEL_ID:
            return self._read_sysfs(device_id, "device/modalias")
        if key == PROP_CATEGORY:
            return "video4linux"
        if key == PROP_IS_VIRTUAL:
            name = self._read_sysfs(device_id, "name") or ""
            return "loopback" in name.lower() or "virtual" in name.lower()
        return None


class NullDeviceProvider:
    """Provider for platforms without camera detection. Reports no devices."""

    def list_devices(self) -> List[Any]:
        return []

    def add_listener(self, device_id: Any, on_change: Callable[[bool], None]) -> None:
        raise OSError(f"No camera backend for device {device_id}")

    def remove_listener(self, device_id: Any) -> None:
        return None

    def get_property(self, device_id: Any, key: str) -> Optional[Any]:
        return None


def get_default_device_provider(dispatch: Optional[Callable[..., Any]] = None):
    """
    Pick the camera backend for the current platform.

    Args:
        dispatch: Event delivery callable passed to polling providers.

    Returns:
        A device provider. Falls back to NullDeviceProvider if the platform
        backend can't be loaded.
    """
    if sys.platform == "darwin":
        try:
            return AVFoundationDeviceProvider(dispatch=dispatch)
        except ImportError:
            logger.warning("AVFoundation not available - camera detection disabled")
            return NullDeviceProvider()
    if sys.platform.startswith("linux"):
        return V4L2DeviceProvider(dispatch=dispatch)

    logger.info(f"No camera backend for {sys.platform} - camera detection disabled")
    return NullDeviceProvider()
