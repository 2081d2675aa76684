"""Health-check snapshots recorded against a project."""

from __future__ import annotations

import sqlite3
from collections.abc import Mapping, Sequence
from typing import Any, NotRequired, TypedDict, cast

from plugin_ops.db import decode_json, encode_json, new_id, utcnow


class CheckResult(TypedDict):
    name: str
    status: str
    message: str
    details: NotRequired[str]


class HealthCheckRow(TypedDict):
    id: str
    project_id: str
    status: str
    score: int
    checks: list[CheckResult]
    summary: str
    published_at: str | None
    file_path: str | None
    created_at: str


def _normalize_check(check: Mapping[str, Any]) -> CheckResult:
    missing = [key for key in ("name", "status", "message") if key not in check]
    if missing:
        raise ValueError(f"Check entry is missing {', '.join(missing)}: {dict(check)!r}")
    normalized = CheckResult(
        name=str(check["name"]),
        status=str(check["status"]),
        message=str(check["message"]),
    )
    if check.get("details") is not None:
        normalized["details"] = str(check["details"])
    return normalized


def _to_health_check(row: sqlite3.Row) -> HealthCheckRow:
    data = dict(row)
    data["checks"] = decode_json(data.get("checks"), [])
    return cast(HealthCheckRow, data)


def create_health_check(
    conn: sqlite3.Connection,
    *,
    project_id: str,
    status: str,
    score: int,
    checks: Sequence[Mapping[str, Any]],
    summary: str,
) -> HealthCheckRow:
    if not 0 <= int(score) <= 100:
        raise ValueError(f"Health score must be between 0 and 100, got {score}")
    normalized = [_normalize_check(check) for check in checks]
    check_id = new_id()
    conn.execute(
        "INSERT INTO health_checks (id, project_id, status, score, checks, summary, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (check_id, project_id, status, int(score), encode_json(normalized), summary, utcnow()),
    )
    conn.commit()
    return cast(HealthCheckRow, get_health_check(conn, check_id))


def get_health_check(conn: sqlite3.Connection, check_id: str) -> HealthCheckRow | None:
    row = conn.execute("SELECT * FROM health_checks WHERE id = ?", (check_id,)).fetchone()
    return _to_health_check(row) if row else None


def list_health_checks(conn: sqlite3.Connection, project_id: str) -> list[HealthCheckRow]:
    rows = conn.execute(
        "SELECT * FROM health_checks WHERE project_id = ? ORDER BY created_at DESC, rowid DESC",
        (project_id,),
    ).fetchall()
    return [_to_health_check(row) for row in rows]


def get_latest_health_check(conn: sqlite3.Connection, project_id: str) -> HealthCheckRow | None:
    row = conn.execute(
        "SELECT * FROM health_checks WHERE project_id = ? "
        "ORDER BY created_at DESC, rowid DESC LIMIT 1",
        (project_id,),
    ).fetchone()
    return _to_health_check(row) if row else None


def mark_health_check_published(
    conn: sqlite3.Connection,
    check_id: str,
    *,
    file_path: str,
    published_at: str | None = None,
) -> HealthCheckRow | None:
    """Stamp an exported health check with its publish time and file path."""
    cur = conn.execute(
        "UPDATE health_checks SET published_at = ?, file_path = ? WHERE id = ?",
        (published_at or utcnow(), file_path, check_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get_health_check(conn, check_id)
