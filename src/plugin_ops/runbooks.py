"""Tracked executions of multi-step maintenance runbooks."""

from __future__ import annotations

import sqlite3
from typing import NotRequired, TypedDict, cast

from plugin_ops.db import RUNBOOK_TERMINAL_STATUSES, decode_json, encode_json, new_id, utcnow


class RunbookStep(TypedDict):
    name: str
    status: str
    message: str
    duration_ms: NotRequired[int]
    timestamp: str


class RunbookExecutionRow(TypedDict):
    id: str
    project_id: str
    runbook_name: str
    status: str
    steps_completed: int
    total_steps: int
    log: list[RunbookStep]
    error: str | None
    started_at: str
    completed_at: str | None


def _to_execution(row: sqlite3.Row) -> RunbookExecutionRow:
    data = dict(row)
    data["log"] = decode_json(data.get("log"), [])
    return cast(RunbookExecutionRow, data)


def start_runbook(
    conn: sqlite3.Connection, *, project_id: str, runbook_name: str, total_steps: int
) -> RunbookExecutionRow:
    if int(total_steps) < 0:
        raise ValueError(f"total_steps must be >= 0, got {total_steps}")
    execution_id = new_id()
    conn.execute(
        "INSERT INTO runbook_executions "
        "(id, project_id, runbook_name, status, steps_completed, total_steps, log, started_at) "
        "VALUES (?, ?, ?, 'running', 0, ?, '[]', ?)",
        (execution_id, project_id, runbook_name, int(total_steps), utcnow()),
    )
    conn.commit()
    return cast(RunbookExecutionRow, get_runbook_execution(conn, execution_id))


def get_runbook_execution(
    conn: sqlite3.Connection, execution_id: str
) -> RunbookExecutionRow | None:
    row = conn.execute(
        "SELECT * FROM runbook_executions WHERE id = ?", (execution_id,)
    ).fetchone()
    return _to_execution(row) if row else None


def list_runbook_executions(
    conn: sqlite3.Connection,
    *,
    project_id: str | None = None,
    status: str | None = None,
    runbook_name: str | None = None,
) -> list[RunbookExecutionRow]:
    query = "SELECT * FROM runbook_executions"
    conditions: list[str] = []
    params: list[str] = []
    for column, value in (
        ("project_id", project_id),
        ("status", status),
        ("runbook_name", runbook_name),
    ):
        if value:
            conditions.append(f"{column} = ?")
            params.append(value)
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY started_at DESC, rowid DESC"
    rows = conn.execute(query, params).fetchall()
    return [_to_execution(row) for row in rows]


def log_runbook_step(
    conn: sqlite3.Connection,
    execution_id: str,
    *,
    name: str,
    status: str,
    message: str,
    duration_ms: int | None = None,
) -> RunbookExecutionRow | None:
    """Append one step to the execution log and count it as completed.

    The append and the counter bump happen in a single UPDATE, so the log
    length and ``steps_completed`` never drift apart.
    """
    step = RunbookStep(name=name, status=status, message=message, timestamp=utcnow())
    if duration_ms is not None:
        step["duration_ms"] = int(duration_ms)
    cur = conn.execute(
        "UPDATE runbook_executions "
        "SET steps_completed = steps_completed + 1, log = json_insert(log, '$[#]', json(?)) "
        "WHERE id = ?",
        (encode_json(step), execution_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get_runbook_execution(conn, execution_id)


def complete_runbook(
    conn: sqlite3.Connection, execution_id: str, status: str, error: str | None = None
) -> RunbookExecutionRow | None:
    if status not in RUNBOOK_TERMINAL_STATUSES:
        raise ValueError(
            f"Invalid terminal status '{status}'. "
            f"Must be one of: {sorted(RUNBOOK_TERMINAL_STATUSES)}"
        )
    cur = conn.execute(
        "UPDATE runbook_executions SET status = ?, completed_at = ?, error = ? WHERE id = ?",
        (status, utcnow(), error, execution_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get_runbook_execution(conn, execution_id)
