"""Config and data directory resolution."""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_NAME = "hookfeed"


def _user_dir(override_var: str, xdg_var: str, xdg_default: str, windows_var: str) -> Path:
    override = os.environ.get(override_var)
    if override:
        return Path(override)

    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get(windows_var) or home / "AppData" / "Roaming") / APP_NAME
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_NAME
    return Path(os.environ.get(xdg_var) or home / xdg_default) / APP_NAME


def get_config_dir() -> Path:
    """Where config.yaml, feeds.yaml and middleware/ live by default."""
    return _user_dir("HOOKFEED_CONFIG_DIR", "XDG_CONFIG_HOME", ".config", "APPDATA")


def get_data_dir() -> Path:
    """Where the message database lives by default."""
    return _user_dir("HOOKFEED_DATA_DIR", "XDG_DATA_HOME", ".local/share", "LOCALAPPDATA")
