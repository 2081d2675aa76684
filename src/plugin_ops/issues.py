"""Issues filed against a project, manually or from a health scan."""

from __future__ import annotations

import sqlite3
from collections import Counter
from collections.abc import Mapping
from typing import Any, TypedDict, cast

from plugin_ops.db import build_update, new_id, utcnow

ISSUE_MUTABLE_FIELDS = frozenset(
    {"title", "description", "status", "priority", "category", "resolution"}
)


class IssueRow(TypedDict):
    id: str
    project_id: str
    health_check_id: str | None
    title: str
    description: str
    status: str
    priority: str
    category: str
    source: str
    resolution: str | None
    created_at: str
    updated_at: str


class IssueStats(TypedDict):
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_category: dict[str, int]
    total: int


def create_issue(
    conn: sqlite3.Connection,
    *,
    project_id: str,
    title: str,
    description: str = "",
    priority: str = "medium",
    category: str = "bug",
    source: str = "manual",
    health_check_id: str | None = None,
) -> IssueRow:
    issue_id = new_id()
    now = utcnow()
    conn.execute(
        "INSERT INTO issues (id, project_id, health_check_id, title, description, priority, "
        "category, source, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            issue_id,
            project_id,
            health_check_id,
            title,
            description,
            priority,
            category,
            source,
            now,
            now,
        ),
    )
    conn.commit()
    return cast(IssueRow, get_issue(conn, issue_id))


def get_issue(conn: sqlite3.Connection, issue_id: str) -> IssueRow | None:
    row = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
    return cast(IssueRow, dict(row)) if row else None


def list_issues(
    conn: sqlite3.Connection,
    *,
    project_id: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    category: str | None = None,
) -> list[IssueRow]:
    query = "SELECT * FROM issues"
    conditions: list[str] = []
    params: list[str] = []
    for column, value in (
        ("project_id", project_id),
        ("status", status),
        ("priority", priority),
        ("category", category),
    ):
        if value:
            conditions.append(f"{column} = ?")
            params.append(value)
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY created_at DESC, rowid DESC"
    rows = conn.execute(query, params).fetchall()
    return [cast(IssueRow, dict(row)) for row in rows]


def update_issue(
    conn: sqlite3.Connection, issue_id: str, updates: Mapping[str, Any]
) -> IssueRow | None:
    """Apply a sparse update. ``updated_at`` is always bumped; other keys must be mutable."""
    if get_issue(conn, issue_id) is None:
        return None
    values = {key: value for key, value in updates.items() if key != "updated_at"}
    sql, params = build_update(
        "issues", ISSUE_MUTABLE_FIELDS, values, always={"updated_at": utcnow()}
    )
    conn.execute(sql, [*params, issue_id])
    conn.commit()
    return get_issue(conn, issue_id)


def close_issue(conn: sqlite3.Connection, issue_id: str, resolution: str) -> IssueRow | None:
    return update_issue(conn, issue_id, {"status": "closed", "resolution": resolution})


def delete_issue(conn: sqlite3.Connection, issue_id: str) -> bool:
    cur = conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
    conn.commit()
    return cur.rowcount > 0


def get_issue_stats(conn: sqlite3.Connection, project_id: str | None = None) -> IssueStats:
    """Count issues by status, priority and category in one pass."""
    query = "SELECT status, priority, category FROM issues"
    params: tuple[str, ...] = ()
    if project_id:
        query += " WHERE project_id = ?"
        params = (project_id,)
    by_status: Counter[str] = Counter()
    by_priority: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    total = 0
    for row in conn.execute(query, params):
        by_status[row["status"]] += 1
        by_priority[row["priority"]] += 1
        by_category[row["category"]] += 1
        total += 1
    return IssueStats(
        by_status=dict(by_status),
        by_priority=dict(by_priority),
        by_category=dict(by_category),
        total=total,
    )
