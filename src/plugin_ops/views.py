"""Read-only aggregate views served as MCP resources and API methods."""

from __future__ import annotations

import sqlite3

from plugin_ops.health import get_latest_health_check
from plugin_ops.issues import IssueRow, list_issues
from plugin_ops.projects import ProjectRow, list_projects


def projects_view(conn: sqlite3.Connection) -> list[ProjectRow]:
    return list_projects(conn)


def health_view(conn: sqlite3.Connection) -> list[dict]:
    """Latest health check of every project that has one, tagged with the project name."""
    latest = []
    for project in list_projects(conn):
        check = get_latest_health_check(conn, project["id"])
        if check is not None:
            latest.append({**check, "project_name": project["name"]})
    return latest


def open_issues_view(conn: sqlite3.Connection) -> list[IssueRow]:
    return list_issues(conn, status="open")
