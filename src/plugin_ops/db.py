"""SQLite store for plugin-ops: schema, migrations and the shared connection handle."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from plugin_ops.paths import get_db_path

log = logging.getLogger(__name__)

VALID_PROJECT_TYPES = {"skill-only", "mcp", "full"}
VALID_HEALTH_STATUSES = {"pass", "warning", "fail"}
VALID_ISSUE_STATUSES = {"open", "in_progress", "closed"}
VALID_ISSUE_PRIORITIES = {"critical", "high", "medium", "low"}
VALID_ISSUE_CATEGORIES = {"bug", "dependency", "quality", "structure", "feature", "tech-debt"}
VALID_ISSUE_SOURCES = {"manual", "health-scan"}
VALID_RELEASE_TYPES = {"major", "minor", "patch"}
VALID_RUNBOOK_STATUSES = {"running", "completed", "failed"}
RUNBOOK_TERMINAL_STATUSES = {"completed", "failed"}

CONNECTION_TTL_SECONDS = 5.0


def utcnow() -> str:
    """ISO 8601 UTC timestamp with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


# Bump when adding migrations. 0 = baseline tables only.
SCHEMA_VERSION = 1

SCHEMA = """\
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'skill-only' CHECK (type IN ('skill-only', 'mcp', 'full')),
    path TEXT,
    version TEXT,
    description TEXT NOT NULL DEFAULT '',
    has_skills INTEGER NOT NULL DEFAULT 0 CHECK (has_skills IN (0, 1)),
    has_mcp INTEGER NOT NULL DEFAULT 0 CHECK (has_mcp IN (0, 1)),
    has_hooks INTEGER NOT NULL DEFAULT 0 CHECK (has_hooks IN (0, 1)),
    has_agents INTEGER NOT NULL DEFAULT 0 CHECK (has_agents IN (0, 1)),
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS health_checks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    status TEXT NOT NULL DEFAULT 'pass' CHECK (status IN ('pass', 'warning', 'fail')),
    score INTEGER NOT NULL DEFAULT 100,
    checks TEXT NOT NULL DEFAULT '[]',
    summary TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    health_check_id TEXT REFERENCES health_checks(id) ON DELETE SET NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'in_progress', 'closed')),
    priority TEXT NOT NULL DEFAULT 'medium'
        CHECK (priority IN ('critical', 'high', 'medium', 'low')),
    category TEXT NOT NULL DEFAULT 'bug'
        CHECK (category IN ('bug', 'dependency', 'quality', 'structure', 'feature', 'tech-debt')),
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('manual', 'health-scan')),
    resolution TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS releases (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    version TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'patch' CHECK (type IN ('major', 'minor', 'patch')),
    changelog TEXT NOT NULL DEFAULT '',
    files_bumped TEXT NOT NULL DEFAULT '[]',
    git_tag TEXT,
    commit_sha TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS runbook_executions (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    runbook_name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running' CHECK (status IN ('running', 'completed', 'failed')),
    steps_completed INTEGER NOT NULL DEFAULT 0,
    total_steps INTEGER NOT NULL DEFAULT 0,
    log TEXT NOT NULL DEFAULT '[]',
    error TEXT,
    started_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    completed_at TEXT
);
"""


def _create_indexes(conn: sqlite3.Connection) -> None:
    """Create foreign-key and filter indexes. Idempotent."""
    conn.executescript("""
        CREATE INDEX IF NOT EXISTS idx_health_checks_project ON health_checks(project_id);
        CREATE INDEX IF NOT EXISTS idx_issues_project ON issues(project_id);
        CREATE INDEX IF NOT EXISTS idx_issues_health_check ON issues(health_check_id);
        CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
        CREATE INDEX IF NOT EXISTS idx_releases_project ON releases(project_id);
        CREATE INDEX IF NOT EXISTS idx_runbook_executions_project
            ON runbook_executions(project_id);
    """)


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _add_column_if_missing(
    conn: sqlite3.Connection, table: str, column: str, col_def: str, cols: set[str]
) -> None:
    if column not in cols:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_def}")


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """Add publish stamps (published_at, file_path) to health_checks and releases."""
    for table in ("health_checks", "releases"):
        cols = _table_columns(conn, table)
        _add_column_if_missing(conn, table, "published_at", "TEXT", cols)
        _add_column_if_missing(conn, table, "file_path", "TEXT", cols)


_MIGRATIONS: list[tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (1, _migrate_to_v1),
]


def _migrate(conn: sqlite3.Connection, from_version: int) -> None:
    """Run schema migrations from from_version to SCHEMA_VERSION.

    Each migration checks live column lists before altering anything, so it
    is a no-op on stores that already have the column. Commit is handled by
    the caller.
    """
    for version, migration_fn in _MIGRATIONS:
        if from_version < version:
            migration_fn(conn)


def apply_schema(conn: sqlite3.Connection) -> None:
    """Ensure tables, indexes and additive columns exist. Safe on every open."""
    conn.executescript(SCHEMA)
    _create_indexes(conn)
    current_version = conn.execute("PRAGMA user_version").fetchone()[0]
    if current_version < SCHEMA_VERSION:
        _migrate(conn, current_version)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
        log.info(
            "Schema migrated",
            extra={"data": {"from": current_version, "to": SCHEMA_VERSION}},
        )


def open_connection(db_path: Path | None = None) -> sqlite3.Connection:
    """Open a new handle on the store and bring its schema up to date."""
    if db_path is None:
        db_path = get_db_path()
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=10000")
    apply_schema(conn)
    return conn


def _close_quietly(conn: sqlite3.Connection) -> None:
    with contextlib.suppress(sqlite3.Error):
        conn.close()


class ConnectionCache:
    """Owns at most one open handle, recycled once it is ``ttl`` seconds old.

    ``get()`` and ``close()`` hold a lock so overlapping callers never race
    on the staleness check.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        ttl: float = CONNECTION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db_path = db_path
        self.ttl = ttl
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def get(self) -> sqlite3.Connection:
        with self._lock:
            now = self._clock()
            if self._conn is not None and now - self._opened_at < self.ttl:
                return self._conn
            if self._conn is not None:
                _close_quietly(self._conn)
                self._conn = None
            path = Path(self.db_path) if self.db_path is not None else get_db_path()
            self._conn = open_connection(path)
            self._opened_at = now
            log.info("Database connected", extra={"data": {"path": str(path)}})
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                _close_quietly(self._conn)
                self._conn = None


_default_cache = ConnectionCache()


def get_db() -> sqlite3.Connection:
    """Return the process-wide live connection."""
    return _default_cache.get()


def close_db() -> None:
    _default_cache.close()


# -- row helpers --


def encode_json(value: Any) -> str:
    return json.dumps(value)


def decode_json(value: str | None, default: Any) -> Any:
    """Decode a JSON text column, falling back to ``default`` for NULL or bad data."""
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        log.warning("Undecodable JSON column value", extra={"data": {"value": value}})
        return default


def build_update(
    table: str,
    allowed: Iterable[str],
    updates: Mapping[str, Any],
    *,
    always: Mapping[str, Any] | None = None,
) -> tuple[str, list[Any]]:
    """Build ``UPDATE <table> SET ... WHERE id = ?`` from an allow-list of columns.

    Keys outside ``allowed`` raise ValueError; column names never come from
    caller input unchecked. ``always`` columns are appended after the caller's
    and win over any caller-supplied value. The caller appends the row id to
    the returned params.
    """
    allowed_set = set(allowed)
    unknown = sorted(set(updates) - allowed_set - set(always or {}))
    if unknown:
        raise ValueError(
            f"Unknown field(s) for {table}: {', '.join(unknown)}. "
            f"Allowed: {sorted(allowed_set)}"
        )
    assignments: list[str] = []
    params: list[Any] = []
    for column, value in updates.items():
        if always and column in always:
            continue
        assignments.append(f"{column} = ?")
        params.append(value)
    for column, value in (always or {}).items():
        assignments.append(f"{column} = ?")
        params.append(value)
    if not assignments:
        raise ValueError(f"No fields to update for {table}")
    return f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?", params
