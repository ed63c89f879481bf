"""
Utility helpers for filesystem paths and configuration-driven resources.

Centralizes logic for resolving the data directory, the database connection
string and the log file location so the CLI and tests stay in sync.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR_NAME = "data"
_DEFAULT_DB_FILENAME = "budgets.db"
CONNECTION_ENV_VAR = "DB_CONNECTION_STRING"


def get_project_root() -> Path:
    """Return the repository root directory."""
    return _PROJECT_ROOT


def _coerce_path(path_value: str | Path) -> Path:
    """Convert a string/Path into an absolute, project-root based Path."""
    path = Path(path_value)
    if path.is_absolute():
        return path
    return get_project_root() / path


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the data directory path without creating it.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Path to the data directory (may not exist yet).
    """
    db_config = (config or {}).get("database") or {}
    return _coerce_path(db_config.get("data_dir", _DEFAULT_DATA_DIR_NAME))


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Ensure the data directory exists and return its Path."""
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create data directory '%s': %s", data_dir, exc)
        raise
    return data_dir


def _ensure_sqlite_parent_dir(connection_string: str) -> None:
    """Ensure the parent directory for a file-backed SQLite database exists."""
    url = make_url(connection_string)
    if not url.drivername.startswith("sqlite"):
        return

    database = url.database
    if not database or database == ":memory:":
        return

    db_path = Path(database)
    if not db_path.is_absolute():
        # sqlite opens relative paths from the working directory
        db_path = Path.cwd() / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve the database connection string using env var, config, or defaults.

    Order of precedence:
        1. DB_CONNECTION_STRING environment variable
        2. config['database']['connection_string']
        3. sqlite file built from data_dir/path

    Args:
        config: Optional configuration dictionary.

    Returns:
        SQLAlchemy connection string.
    """
    config = config or {}
    env_conn = os.environ.get(CONNECTION_ENV_VAR)
    if env_conn:
        _ensure_sqlite_parent_dir(env_conn)
        return env_conn

    db_config = config.get("database") or {}
    config_conn = db_config.get("connection_string")
    if config_conn:
        _ensure_sqlite_parent_dir(config_conn)
        return config_conn

    data_dir = ensure_data_dir(config)
    db_path = Path(db_config.get("path", _DEFAULT_DB_FILENAME))
    if not db_path.is_absolute():
        db_path = data_dir / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path.as_posix()}"


def resolve_log_path(log_path: str) -> Path:
    """
    Convert a log file path to an absolute path under the project root when needed.

    Args:
        log_path: Configured log file path (relative or absolute).

    Returns:
        Absolute Path for logging output.
    """
    resolved = _coerce_path(log_path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved
