"""
Where the monitor keeps its files.

PERFCOUNTER_HOME points config and logs at one directory (portable installs,
tests). Otherwise they live under %APPDATA% on Windows and the home directory
elsewhere.
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "PerfCounterMonitor"
HOME_ENV_VAR = "PERFCOUNTER_HOME"
CONFIG_FILE_NAME = "config.json"
LOG_FILE_NAME = "perfcounter.log"


def app_data_dir() -> Path:
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser()
    base = os.environ.get("APPDATA") or Path.home()
    return Path(base) / APP_NAME


def config_path() -> Path:
    return app_data_dir() / CONFIG_FILE_NAME


def logs_dir() -> Path:
    return app_data_dir() / "logs"


def log_path() -> Path:
    return logs_dir() / LOG_FILE_NAME


def ensure_app_dirs() -> Path:
    """Create the app and log directories, return the app directory."""
    logs = logs_dir()
    logs.mkdir(parents=True, exist_ok=True)
    return logs.parent
