"""File path resolution using platformdirs.

The database lives in the platform-appropriate per-user data directory:
  macOS: ~/Library/Application Support/mediasync/
  Linux: ~/.local/share/mediasync/
  Windows: %LOCALAPPDATA%/mediasync/
"""

from pathlib import Path

import platformdirs

APP_NAME = "mediasync"

def get_data_dir() -> Path:
    """Return the directory for persistent data (DB)."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))

def get_default_db_path() -> Path:
    """Return the default SQLite database file path, creating its directory."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "mediasync.db"
