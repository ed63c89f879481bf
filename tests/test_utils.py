"""
Tests for utility helpers used for data directory and connection resolution.
"""

from pathlib import Path

from sqlalchemy.engine import make_url

from utils import ensure_data_dir, resolve_connection_string, resolve_log_path


def test_ensure_data_dir_creates_directory(tmp_path):
    """ensure_data_dir should create the configured directory when missing."""
    config = {"database": {"data_dir": str(tmp_path / "budget_data")}}
    data_dir = ensure_data_dir(config)

    assert data_dir.exists()
    assert data_dir.is_dir()
    assert data_dir == Path(tmp_path / "budget_data")


def test_resolve_connection_string_default(monkeypatch, tmp_path):
    """resolve_connection_string should build a sqlite URL under the data dir."""
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    data_dir = tmp_path / "app_data"
    config = {"database": {"data_dir": str(data_dir), "path": "budget.db"}}

    connection_string = resolve_connection_string(config)
    url = make_url(connection_string)

    assert url.drivername.startswith("sqlite")
    assert Path(url.database) == data_dir / "budget.db"
    assert data_dir.exists()


def test_resolve_connection_string_config_value(monkeypatch):
    """An explicit connection string in config is used as-is."""
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    config = {"database": {"connection_string": "sqlite://"}}
    assert resolve_connection_string(config) == "sqlite://"


def test_resolve_connection_string_env_override(monkeypatch, tmp_path):
    """Environment variable should take precedence over config/defaults."""
    db_path = tmp_path / "env_override" / "budgets.db"
    env_connection = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DB_CONNECTION_STRING", env_connection)

    connection_string = resolve_connection_string({"database": {"connection_string": "sqlite://"}})

    assert connection_string == env_connection
    assert db_path.parent.exists()


def test_resolve_log_path_creates_parent(tmp_path):
    """Log paths get their parent directory created."""
    log_path = resolve_log_path(str(tmp_path / "logs" / "app.log"))
    assert log_path.parent.exists()
    assert log_path.name == "app.log"


def test_relative_sqlite_path_is_created_from_working_directory(monkeypatch, tmp_path):
    """Relative sqlite paths get their directory where sqlite will open them."""
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    monkeypatch.setenv("DB_CONNECTION_STRING", "sqlite:///nested/dir/budgets.db")

    resolve_connection_string({})

    assert (workdir / "nested" / "dir").is_dir()
