"""File path resolution using platformdirs.

PINEGATE_DATA_DIR overrides everything (containers mount a volume there).
Otherwise data lives in the platform user data dir:
  macOS: ~/Library/Application Support/pinegate/
  Linux: ~/.local/share/pinegate/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "pinegate"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, vault key)."""
    override = os.environ.get("PINEGATE_DATA_DIR", "").strip()
    if override:
        return Path(override)
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "pinegate.db"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    get_data_dir().mkdir(parents=True, exist_ok=True)
