"""Release history per project."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Sequence
from typing import TypedDict, cast

from plugin_ops.db import decode_json, encode_json, new_id, utcnow


class ReleaseRow(TypedDict):
    id: str
    project_id: str
    version: str
    type: str
    changelog: str
    files_bumped: list[str]
    git_tag: str | None
    commit_sha: str | None
    published_at: str | None
    file_path: str | None
    created_at: str


def _to_release(row: sqlite3.Row) -> ReleaseRow:
    data = dict(row)
    data["files_bumped"] = decode_json(data.get("files_bumped"), [])
    return cast(ReleaseRow, data)


def create_release(
    conn: sqlite3.Connection,
    *,
    project_id: str,
    version: str,
    type: str = "patch",
    changelog: str = "",
    files_bumped: Sequence[str] | None = None,
    git_tag: str | None = None,
    commit_sha: str | None = None,
) -> ReleaseRow:
    release_id = new_id()
    conn.execute(
        "INSERT INTO releases (id, project_id, version, type, changelog, files_bumped, "
        "git_tag, commit_sha, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            release_id,
            project_id,
            version,
            type,
            changelog,
            encode_json([str(f) for f in files_bumped or []]),
            git_tag,
            commit_sha,
            utcnow(),
        ),
    )
    conn.commit()
    return cast(ReleaseRow, get_release(conn, release_id))


def get_release(conn: sqlite3.Connection, release_id: str) -> ReleaseRow | None:
    row = conn.execute("SELECT * FROM releases WHERE id = ?", (release_id,)).fetchone()
    return _to_release(row) if row else None


def list_releases(conn: sqlite3.Connection, project_id: str) -> list[ReleaseRow]:
    rows = conn.execute(
        "SELECT * FROM releases WHERE project_id = ? ORDER BY created_at DESC, rowid DESC",
        (project_id,),
    ).fetchall()
    return [_to_release(row) for row in rows]


def get_latest_release(conn: sqlite3.Connection, project_id: str) -> ReleaseRow | None:
    row = conn.execute(
        "SELECT * FROM releases WHERE project_id = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
        (project_id,),
    ).fetchone()
    return _to_release(row) if row else None


def update_release(
    conn: sqlite3.Connection,
    release_id: str,
    *,
    git_tag: str | None = None,
    commit_sha: str | None = None,
) -> ReleaseRow | None:
    """Record the tag/commit once cut. Passing neither returns the release unchanged."""
    existing = get_release(conn, release_id)
    if existing is None:
        return None
    assignments: list[str] = []
    params: list[str] = []
    if git_tag is not None:
        assignments.append("git_tag = ?")
        params.append(git_tag)
    if commit_sha is not None:
        assignments.append("commit_sha = ?")
        params.append(commit_sha)
    if not assignments:
        return existing
    conn.execute(
        f"UPDATE releases SET {', '.join(assignments)} WHERE id = ?", [*params, release_id]
    )
    conn.commit()
    return get_release(conn, release_id)


def mark_releases_published(
    conn: sqlite3.Connection,
    release_ids: Iterable[str],
    *,
    file_path: str,
    published_at: str | None = None,
) -> int:
    """Stamp exported releases in a single transaction. Returns rows stamped."""
    stamp = published_at or utcnow()
    with conn:
        cur = conn.executemany(
            "UPDATE releases SET published_at = ?, file_path = ? WHERE id = ?",
            [(stamp, file_path, release_id) for release_id in release_ids],
        )
    return cur.rowcount
