"""Registered plugin projects."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TypedDict, cast

from plugin_ops.db import build_update, decode_json, encode_json, new_id, utcnow
from plugin_ops.detect import detect_project

log = logging.getLogger(__name__)

FLAG_FIELDS = ("has_skills", "has_mcp", "has_hooks", "has_agents")
PROJECT_MUTABLE_FIELDS = frozenset(
    {"name", "type", "path", "version", "description", "metadata", *FLAG_FIELDS}
)


class ProjectRow(TypedDict):
    id: str
    name: str
    type: str
    path: str | None
    version: str | None
    description: str
    has_skills: int
    has_mcp: int
    has_hooks: int
    has_agents: int
    metadata: dict[str, Any]
    created_at: str
    updated_at: str


def _flag(value: object) -> int:
    if isinstance(value, bool) or value in (0, 1):
        return int(value)  # type: ignore[call-overload]
    raise ValueError(f"Flag must be a boolean or 0/1, got {value!r}")


def _metadata_json(value: object) -> str:
    """Normalize metadata (dict or JSON-object text) to its stored form."""
    if value is None:
        return "{}"
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"metadata is not valid JSON: {exc}") from exc
    if not isinstance(value, Mapping):
        raise ValueError("metadata must be a JSON object")
    return encode_json(dict(value))


def _to_project(row: sqlite3.Row) -> ProjectRow:
    data = dict(row)
    data["metadata"] = decode_json(data.get("metadata"), {})
    return cast(ProjectRow, data)


def create_project(
    conn: sqlite3.Connection,
    *,
    name: str,
    type: str = "skill-only",
    path: str | None = None,
    version: str | None = None,
    description: str = "",
    has_skills: int | bool = 0,
    has_mcp: int | bool = 0,
    has_hooks: int | bool = 0,
    has_agents: int | bool = 0,
    metadata: Mapping[str, Any] | str | None = None,
) -> ProjectRow:
    project_id = new_id()
    now = utcnow()
    conn.execute(
        "INSERT INTO projects (id, name, type, path, version, description, has_skills, "
        "has_mcp, has_hooks, has_agents, metadata, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            project_id,
            name,
            type,
            path,
            version,
            description,
            _flag(has_skills),
            _flag(has_mcp),
            _flag(has_hooks),
            _flag(has_agents),
            _metadata_json(metadata),
            now,
            now,
        ),
    )
    conn.commit()
    log.info("Project created", extra={"data": {"id": project_id, "name": name}})
    return cast(ProjectRow, get_project(conn, project_id))


def get_project(conn: sqlite3.Connection, project_id: str) -> ProjectRow | None:
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return _to_project(row) if row else None


def list_projects(conn: sqlite3.Connection) -> list[ProjectRow]:
    rows = conn.execute("SELECT * FROM projects ORDER BY created_at DESC, rowid DESC").fetchall()
    return [_to_project(row) for row in rows]


def update_project(
    conn: sqlite3.Connection, project_id: str, updates: Mapping[str, Any]
) -> ProjectRow | None:
    """Apply a sparse update. ``updated_at`` is always bumped; other keys must be mutable."""
    if get_project(conn, project_id) is None:
        return None
    values: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "updated_at":
            continue
        if key in FLAG_FIELDS:
            value = _flag(value)
        elif key == "metadata":
            value = _metadata_json(value)
        values[key] = value
    sql, params = build_update(
        "projects", PROJECT_MUTABLE_FIELDS, values, always={"updated_at": utcnow()}
    )
    conn.execute(sql, [*params, project_id])
    conn.commit()
    return get_project(conn, project_id)


def delete_project(conn: sqlite3.Connection, project_id: str) -> bool:
    """Delete a project; dependent rows go with it via ON DELETE CASCADE."""
    cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    conn.commit()
    if cur.rowcount > 0:
        log.info("Project deleted", extra={"data": {"id": project_id}})
    return cur.rowcount > 0


def register_detected_project(
    conn: sqlite3.Connection, path: str | Path, *, name: str | None = None
) -> ProjectRow:
    """Scan ``path`` and register a project from what was found there."""
    root = Path(path).expanduser().resolve()
    detected = detect_project(root)
    return create_project(
        conn,
        name=name or detected["name"] or root.name,
        type=detected["type"],
        path=str(root),
        version=detected["version"],
        description=detected["description"] or "",
        has_skills=detected["has_skills"],
        has_mcp=detected["has_mcp"],
        has_hooks=detected["has_hooks"],
        has_agents=detected["has_agents"],
    )
