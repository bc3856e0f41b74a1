"""Locations of cadence-ext's per-user state."""

from __future__ import annotations

import os
from pathlib import Path

# Settings and logs live outside the project tree
_USER_STATE_ENV = os.environ.get("CADENCE_EXT_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".cadence_ext")
CONFIG_PATH = USER_STATE_DIR / "config.txt"
LOGS_DIR = USER_STATE_DIR / "logs"
MASTER_LOG_FILE = LOGS_DIR / "cadence_ext.log"

# Name of the Flow project configuration file looked up in the workspace
FLOW_CONFIG_FILENAME = "flow.json"


def ensure_directories() -> None:
    """Create the state and log directories if they don't exist."""
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    'USER_STATE_DIR',
    'CONFIG_PATH',
    'LOGS_DIR',
    'MASTER_LOG_FILE',
    'FLOW_CONFIG_FILENAME',
    'ensure_directories',
]
