"""Configuration settings for LookAway."""

import logging
import os
import sys
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

APP_NAME = "LookAway"


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_base_dir() -> Path:
    """
    Get the base directory for bundled resources.

    Returns:
        _MEIPASS when bundled, otherwise the directory containing this file.
    """
    if is_bundled():
        meipass = getattr(sys, '_MEIPASS', None)
        if meipass:
            return Path(meipass)
    return Path(__file__).parent


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (schedule, log file).

    LOOKAWAY_DATA_DIR overrides everything. Bundled apps use the
    platform's application data folder so settings survive updates;
    development runs use BASE_DIR/data.

    Returns:
        Path to the user data directory. Not created here; writers create
        it on first save.
    """
    override = os.getenv("LOOKAWAY_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if not is_bundled():
        return Path(__file__).parent / "data"

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/LookAway
        return Path.home() / "Library" / "Application Support" / APP_NAME
    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / APP_NAME
        return Path.home() / "AppData" / "Roaming" / APP_NAME
    # Linux: ~/.local/share/LookAway
    return Path.home() / ".local" / "share" / APP_NAME


def _get_float(env_var: str, default: float) -> float:
    """Read a positive float from the environment, falling back to default."""
    raw = os.getenv(env_var, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{env_var}={raw!r} is not a number, using {default}")
        return default
    return value if value > 0 else default


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# Base directory (for bundled resources)
BASE_DIR = get_base_dir()

# User data directory (schedule, logs)
USER_DATA_DIR = get_user_data_dir()

# Persisted schedule
SCHEDULE_FILE = USER_DATA_DIR / "schedule.json"

# Timer Configuration
TICK_INTERVAL_SECONDS = _get_float("LOOKAWAY_TICK_INTERVAL", 1.0)  # Countdown cadence

# Delay choices offered while on a break (seconds)
DELAY_OPTIONS = [60, 300, 600]
DEFAULT_DELAY_SECONDS = DELAY_OPTIONS[0]

# Seconds of silence required per input event kind before a break may start
DEFAULT_ACTIVITY_THRESHOLDS: Dict[str, float] = {
    "keyUp": 5,
    "leftMouseUp": 4,
    "rightMouseUp": 4,
    "otherMouseUp": 4,
}

# Camera Configuration
CAMERA_POLL_INTERVAL_SECONDS = _get_float("LOOKAWAY_CAMERA_POLL_INTERVAL", 2.0)

# Suspend detection (non-macOS sleep source)
SUSPEND_THRESHOLD_SECONDS = 30.0  # Unexplained wall clock jump treated as a suspend
SUSPEND_POLL_INTERVAL_SECONDS = 5.0

# Short schedule for trying things out (--test)
TEST_WORK_SECONDS = 20
TEST_BREAK_SECONDS = 10

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = USER_DATA_DIR / "app.log"
