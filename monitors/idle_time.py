"""
Platform sources for "seconds since the last input event".

macOS can answer per event kind through Quartz. Windows and Linux only
expose a single last-input time, which is used for every kind.

Every sampler raises OSError when the platform can't be queried; the
activity monitor treats that threshold as idle.
"""

import ctypes
import logging
import shutil
import subprocess
import sys
from typing import Callable

from monitors.user_activity import KEY_UP, LEFT_MOUSE_UP, OTHER_MOUSE_UP, RIGHT_MOUSE_UP

logger = logging.getLogger(__name__)

# CGEventType values, used if Quartz doesn't export the constant
_CG_EVENT_TYPES = {
    KEY_UP: ("kCGEventKeyUp", 11),
    LEFT_MOUSE_UP: ("kCGEventLeftMouseUp", 2),
    RIGHT_MOUSE_UP: ("kCGEventRightMouseUp", 4),
    OTHER_MOUSE_UP: ("kCGEventOtherMouseUp", 26),
}
_CG_ANY_INPUT_EVENT = 0xFFFFFFFF


def _macos_sampler() -> Callable[[str], float]:
    import Quartz

    state = Quartz.kCGEventSourceStateCombinedSessionState

    def seconds_since(event: str) -> float:
        name, fallback = _CG_EVENT_TYPES.get(event, (None, _CG_ANY_INPUT_EVENT))
        event_type = getattr(Quartz, name, fallback) if name else fallback
        return float(Quartz.CGEventSourceSecondsSinceLastEventType(state, event_type))

    return seconds_since


def _windows_sampler() -> Callable[[str], float]:
    class LASTINPUTINFO(ctypes.Structure):
        _fields_ = [("cbSize", ctypes.c_uint), ("dwTime", ctypes.c_uint)]

    user32 = ctypes.windll.user32
    kernel32 = ctypes.windll.kernel32
    kernel32.GetTickCount.restype = ctypes.c_uint

    def seconds_since(event: str) -> float:
        info = LASTINPUTINFO()
        info.cbSize = ctypes.sizeof(LASTINPUTINFO)
        if not user32.GetLastInputInfo(ctypes.byref(info)):
            raise OSError("GetLastInputInfo failed")
        # Both are 32-bit millisecond tick counts and wrap together
        idle_ms = (kernel32.GetTickCount() - info.dwTime) & 0xFFFFFFFF
        return idle_ms / 1000.0

    return seconds_since


def _linux_sampler() -> Callable[[str], float]:
    if shutil.which("xprintidle") is None:
        raise OSError("xprintidle is not installed")

    def seconds_since(event: str) -> float:
        try:
            result = subprocess.run(
                ["xprintidle"], capture_output=True, text=True, timeout=2, check=True
            )
            return int(result.stdout.strip()) / 1000.0
        except subprocess.TimeoutExpired as e:
            raise OSError(f"xprintidle timed out: {e}") from e
        except subprocess.CalledProcessError as e:
            raise OSError(f"xprintidle failed with exit code {e.returncode}") from e
        except ValueError as e:
            raise OSError(f"Unexpected xprintidle output: {e}") from e

    return seconds_since


def _unavailable(event: str) -> float:
    raise OSError("Idle time is not available on this platform")


def get_idle_sampler() -> Callable[[str], float]:
    """
    Pick the idle-time sampler for the current platform.

    Returns:
        Callable mapping an event kind to seconds since its last occurrence.
        If the platform source can't be loaded, the returned sampler always
        raises OSError.
    """
    try:
        if sys.platform == "darwin":
            return _macos_sampler()
        if sys.platform == "win32":
            return _windows_sampler()
        return _linux_sampler()
    except (ImportError, AttributeError, OSError) as e:
        logger.warning(f"Idle time detection unavailable: {e}")
        return _unavailable
