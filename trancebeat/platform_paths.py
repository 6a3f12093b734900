"""Platform-specific paths for user data.

Goal: keep user settings and logs out of temp / install folders.

Resolved from standard environment variables only; ``TRANCEBEAT_HOME``
overrides everything.
"""

from __future__ import annotations

import os
from pathlib import Path


APP_NAME = "TranceBeat"
SETTINGS_FILENAME = "settings.json"


def is_windows() -> bool:
    return os.name == "nt"


def get_user_data_dir(app_name: str = APP_NAME) -> Path:
    """Return a persistent per-user data directory.

    Windows: %APPDATA%\\TranceBeat
    Elsewhere: $XDG_CONFIG_HOME/trancebeat, or ~/.trancebeat
    """
    override = os.getenv("TRANCEBEAT_HOME")
    if override:
        return Path(override)

    if is_windows():
        base = os.getenv("APPDATA")
        if base:
            return Path(base) / app_name
        return Path.home() / "AppData" / "Roaming" / app_name

    xdg = os.getenv("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name.lower()
    return Path.home() / f".{app_name.lower()}"


def get_settings_path(app_name: str = APP_NAME) -> Path:
    return get_user_data_dir(app_name) / SETTINGS_FILENAME


def ensure_dir(path: Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
