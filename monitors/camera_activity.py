"""
Camera usage detection.

CameraActivityMonitor keeps a snapshot of every video device the provider
knows about and reports when the aggregate "some camera is running" flag
flips. A break is held back while a camera is in use (video calls).
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

# Property keys understood by device providers
PROP_NAME = "name"
PROP_MANUFACTURER = "manufacturer"
PROP_UUID = "uuid"
PROP_IS_RUNNING = "isRunning"
PROP_IS_VIRTUAL = "isVirtual"
PROP_CREATOR = "creator"
PROP_CATEGORY = "category"
PROP_TYPE = "type"
PROP_MODEL_ID = "modelID"


class ConnectedState(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class CameraDeviceProvider(Protocol):
    """What the monitor needs from a platform camera backend."""

    def list_devices(self) -> List[Any]:
        ...

    def add_listener(self, device_id: Any, on_change: Callable[[bool], None]) -> None:
        ...

    def remove_listener(self, device_id: Any) -> None:
        ...

    def get_property(self, device_id: Any, key: str) -> Optional[Any]:
        ...


@dataclass(frozen=True)
class CameraInfo:
    """Read-only snapshot of one video device."""

    id: Any
    unique_id: str = UNKNOWN
    name: str = UNKNOWN
    manufacturer: str = UNKNOWN
    is_running: bool = False
    is_virtual: bool = False
    creator: str = UNKNOWN
    category: str = UNKNOWN
    type: str = UNKNOWN
    model_id: str = UNKNOWN

    @property
    def identifier(self) -> str:
        return f"{self.name}[{self.id}]"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "unique_id": self.unique_id,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "is_running": self.is_running,
            "is_virtual": self.is_virtual,
            "creator": self.creator,
            "category": self.category,
            "type": self.type,
            "model_id": self.model_id,
        }


class CameraActivityMonitor:
    """
    Aggregates per-device running flags into a connected/disconnected signal.

    The device list is read once at construction so is_connected is valid
    before start_listening() is ever called. Listeners are only registered
    by start_listening().
    """

    def __init__(self, device_provider: Optional[CameraDeviceProvider] = None):
        """
        Args:
            device_provider: Platform backend. Defaults to the provider for
                the current OS (see monitors.camera_providers).
        """
        if device_provider is None:
            from monitors.camera_providers import get_default_device_provider
            device_provider = get_default_device_provider()
        self.device_provider = device_provider

        self._devices: List[CameraInfo] = []
        self._callback: Optional[Callable[[ConnectedState], None]] = None
        self._last_state: Optional[ConnectedState] = None
        self._registered: List[Any] = []
        self._listening = False

        logger.info("Initializing camera state")
        self._devices = self._read_devices()
        logger.info(f"Initial active cameras: {self.active_camera_count}")

    # --- Read-only state ---

    @property
    def devices(self) -> Tuple[CameraInfo, ...]:
        return tuple(self._devices)

    @property
    def active_camera_count(self) -> int:
        return sum(1 for device in self._devices if device.is_running)

    @property
    def is_connected(self) -> bool:
        return self.active_camera_count > 0

    @property
    def state(self) -> ConnectedState:
        return ConnectedState.CONNECTED if self.is_connected else ConnectedState.DISCONNECTED

    @property
    def is_listening(self) -> bool:
        return self._listening

    # --- Snapshot ---

    def _get_string(self, device_id: Any, key: str) -> str:
        value = self.device_provider.get_property(device_id, key)
        return UNKNOWN if value is None else str(value)

    def _get_bool(self, device_id: Any, key: str) -> bool:
        return bool(self.device_provider.get_property(device_id, key))

    def _read_device(self, device_id: Any) -> CameraInfo:
        return CameraInfo(
            id=device_id,
            unique_id=self._get_string(device_id, PROP_UUID),
            name=self._get_string(device_id, PROP_NAME),
            manufacturer=self._get_string(device_id, PROP_MANUFACTURER),
            is_running=self._get_bool(device_id, PROP_IS_RUNNING),
            is_virtual=self._get_bool(device_id, PROP_IS_VIRTUAL),
            creator=self._get_string(device_id, PROP_CREATOR),
            category=self._get_string(device_id, PROP_CATEGORY),
            type=self._get_string(device_id, PROP_TYPE),
            model_id=self._get_string(device_id, PROP_MODEL_ID),
        )

    def _read_devices(self) -> List[CameraInfo]:
        try:
            device_ids = list(self.device_provider.list_devices())
        except OSError as e:
            logger.warning(f"Could not list camera devices: {e}")
            return []

        logger.info(f"Found {len(device_ids)} camera devices: {device_ids}")
        devices = [self._read_device(device_id) for device_id in device_ids]
        for device in devices:
            logger.debug(f"Camera {device.identifier}: {device.to_dict()}")
        return devices

    # --- Listening ---

    def start_listening(self, callback: Callable[[ConnectedState], None]) -> None:
        """
        Register a change listener on every device and report aggregate flips.

        The state at the time of this call is the baseline: the callback only
        fires when is_connected changes from it. Calling this again replaces
        the callback and re-subscribes.

        Args:
            callback: Called with the new ConnectedState on every flip.
        """
        logger.info("Starting camera monitoring")
        self.stop_listening()
        self._callback = callback
        self._listening = True

        add_devices_listener = getattr(self.device_provider, "add_devices_listener", None)
        if add_devices_listener is not None:
            add_devices_listener(self.refresh)

        self._devices = self._read_devices()
        self._register_devices()
        self._last_state = self.state

    def _register_devices(self) -> None:
        for index, device in enumerate(self._devices):
            logger.debug(f"Registering for '{device.identifier}' notifications")
            try:
                self.device_provider.add_listener(device.id, self._make_listener(device.id))
                self._registered.append(device.id)
            except (OSError, RuntimeError) as e:
                logger.warning(f"Could not listen to camera {device.identifier}: {e}")
                # Never hears a stop either, so don't let it hold the state
                self._devices[index] = replace(device, is_running=False)

    def _unsubscribe_all(self) -> None:
        for device_id in self._registered:
            try:
                self.device_provider.remove_listener(device_id)
            except (OSError, RuntimeError, KeyError) as e:
                logger.debug(f"Could not remove camera listener {device_id}: {e}")
        self._registered = []

    def _make_listener(self, device_id: Any) -> Callable[[bool], None]:
        def on_change(is_running: bool) -> None:
            self._on_device_change(device_id, is_running)
        return on_change

    def _on_device_change(self, device_id: Any, is_running: bool) -> None:
        if not self._listening:
            logger.debug(f"Ignoring camera event for {device_id} after stop")
            return

        for index, device in enumerate(self._devices):
            if device.id == device_id:
                self._devices[index] = replace(device, is_running=bool(is_running))
                break
        else:
            logger.debug(f"Event for unknown camera {device_id}")
            return

        logger.info(f"Active cameras: {self.active_camera_count}")
        self._emit_if_changed()

    def _emit_if_changed(self) -> None:
        next_state = self.state
        if next_state == self._last_state:
            logger.debug(f"Camera connection state unchanged: {next_state.value}")
            return

        logger.info(f"Camera connection state changed: {next_state.value}")
        self._last_state = next_state
        if self._callback:
            try:
                self._callback(next_state)
            except Exception as e:
                logger.debug(f"Camera state callback error: {e}")

    def refresh(self) -> None:
        """
        Re-read the device list and re-subscribe.

        Providers that notice devices being plugged in or out call this.
        Outside of listening it only refreshes the snapshot.
        """
        if not self._listening:
            self._devices = self._read_devices()
            return

        logger.info("Camera devices changed, re-subscribing")
        # _last_state is kept, so a device that appears already running is a flip
        self._unsubscribe_all()
        self._devices = self._read_devices()
        self._register_devices()
        self._emit_if_changed()

    def stop_listening(self) -> None:
        """Remove every device listener. Safe to call more than once."""
        if not self._listening:
            return

        logger.info("Removing all camera listeners")
        self._listening = False
        remove_devices_listener = getattr(self.device_provider, "remove_devices_listener", None)
        if remove_devices_listener is not None:
            remove_devices_listener(self.refresh)
        self._unsubscribe_all()
        self._callback = None
        self._last_state = None
