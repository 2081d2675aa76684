"""Canonical filesystem paths for plugin-ops configuration and state."""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_DATA_DIR = Path.home() / ".config" / "plugin-ops"
DB_FILENAME = "ops.db"
LOG_FILENAME = "ops.log"


def get_data_dir() -> Path:
    env_dir = os.environ.get("OPS_DATA_DIR")
    return Path(env_dir).expanduser() if env_dir else DEFAULT_DATA_DIR


def ensure_data_dir() -> Path:
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    return data_dir


def get_db_path() -> Path:
    """Database file, honouring ``OPS_DB_PATH`` over the data directory."""
    env_db = os.environ.get("OPS_DB_PATH")
    if env_db:
        db_path = Path(env_db).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        return db_path
    return ensure_data_dir() / DB_FILENAME


def get_log_path() -> Path:
    return ensure_data_dir() / LOG_FILENAME


def get_project_dir() -> Path:
    """Base directory for exports and detection (``PROJECT_DIR`` or the cwd)."""
    env_dir = os.environ.get("PROJECT_DIR")
    return Path(env_dir).expanduser() if env_dir else Path.cwd()
