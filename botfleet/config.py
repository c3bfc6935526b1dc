"""
Settings for botfleet.

Backoff and connection constants, plus environment-driven paths:

    BOTFLEET_DATA       data directory (default ~/.botfleet)
    BOTFLEET_LOG        log file path (default: stderr)
    BOTFLEET_LOG_LEVEL  logging level name (default WARNING)
"""

import os
from pathlib import Path

# Reconnect backoff
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 30000
BACKOFF_MAX_EXPONENT = 5

# Targets
DEFAULT_PORT = 25565
CONNECT_TIMEOUT = 15.0

# Managed identities
DEFAULT_AUTH_SERVER = "https://login.microsoftonline.com/consumers"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def data_dir() -> Path:
    """Directory holding the store and credential caches."""
    return Path(os.environ.get("BOTFLEET_DATA", "~/.botfleet")).expanduser()


def data_path(*parts: str) -> Path:
    """Path under the data directory, creating the directory if needed."""
    base = data_dir()
    base.mkdir(parents=True, exist_ok=True)
    return base.joinpath(*parts)


def log_file() -> str:
    return os.environ.get("BOTFLEET_LOG", "")


def log_level() -> str:
    return os.environ.get("BOTFLEET_LOG_LEVEL", "WARNING").upper()
