"""Shared test fixtures - template DB for fast per-test isolation."""

import logging
import shutil
import sqlite3
import tempfile
from pathlib import Path

import pytest

from plugin_ops.db import close_db, open_connection
from plugin_ops.logs import PACKAGE_LOGGER, JsonLinesHandler
from plugin_ops.projects import ProjectRow, create_project


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point every path lookup at a per-test data dir and drop shared state afterwards."""
    monkeypatch.setenv("OPS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("OPS_DB_PATH", raising=False)
    monkeypatch.delenv("PROJECT_DIR", raising=False)
    monkeypatch.delenv("OPS_LOG_LEVEL", raising=False)
    yield
    close_db()
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, JsonLinesHandler):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture(scope="session")
def _db_template_path() -> Path:
    """Create a single template DB with the full schema applied once."""
    fd, path_str = tempfile.mkstemp(suffix=".db")
    path = Path(path_str)
    try:
        conn = open_connection(path)
        conn.close()
        yield path
    finally:
        path.unlink(missing_ok=True)


@pytest.fixture()
def db_conn(tmp_path: Path, _db_template_path: Path) -> sqlite3.Connection:
    """Per-test DB connection with the schema pre-applied."""
    db_path = tmp_path / "test.db"
    shutil.copy2(_db_template_path, db_path)
    conn = open_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def db_path(tmp_path: Path, _db_template_path: Path) -> Path:
    """Path to a fresh copy of the template DB (for tests that open it themselves)."""
    path = tmp_path / "test.db"
    shutil.copy2(_db_template_path, path)
    return path


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "demo-plugin"
    root.mkdir()
    return root


@pytest.fixture()
def project(db_conn: sqlite3.Connection, project_dir: Path) -> ProjectRow:
    return create_project(db_conn, name="demo-plugin", path=str(project_dir), version="1.0.0")
