"""Render release history and health checks to Markdown files in a project.

Both exporters refuse to clobber an existing file unless ``overwrite`` is
set, create missing parent directories, and stamp the exported rows with
``published_at``/``file_path`` once the file is written.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import TypedDict

from plugin_ops.db import utcnow
from plugin_ops.health import HealthCheckRow, get_health_check, mark_health_check_published
from plugin_ops.paths import get_project_dir
from plugin_ops.projects import ProjectRow, get_project
from plugin_ops.releases import ReleaseRow, list_releases, mark_releases_published

log = logging.getLogger(__name__)

DEFAULT_CHANGELOG_PATH = "CHANGELOG.md"
DEFAULT_HEALTH_REPORT_PATH = "HEALTH.md"
SHORT_SHA_LENGTH = 7


class ExportConflictError(FileExistsError):
    """The export target already exists and overwrite was not requested."""

    def __init__(self, path: str):
        super().__init__(
            f"File already exists: {path}. "
            "Use overwrite=true or provide a different target_path."
        )
        self.path = path


class ProjectNotFoundError(LookupError):
    pass


class NoReleasesError(LookupError):
    pass


class HealthCheckNotFoundError(LookupError):
    pass


class ChangelogExportResult(TypedDict):
    file_path: str
    releases_exported: int


class HealthReportExportResult(TypedDict):
    file_path: str
    health_check_id: str


def _date_part(timestamp: str) -> str:
    return timestamp.split("T", 1)[0]


def render_release_entry(release: ReleaseRow) -> str:
    lines = [f"## [{release['version']}] - {_date_part(release['created_at'])}", ""]
    if release["changelog"]:
        lines += [release["changelog"], ""]
    if release["files_bumped"]:
        lines += ["**Files bumped:**", ""]
        lines += [f"- {path}" for path in release["files_bumped"]]
        lines.append("")
    if release["git_tag"]:
        lines.append(f"**Tag:** {release['git_tag']}")
        if release["commit_sha"]:
            lines.append(f"**Commit:** {release['commit_sha'][:SHORT_SHA_LENGTH]}")
        lines.append("")
    return "\n".join(lines) + "\n"


def render_changelog(project: ProjectRow, releases: list[ReleaseRow]) -> str:
    header = (
        "# Changelog\n\n"
        f"All notable changes to **{project['name']}** will be documented in this file.\n\n"
    )
    return header + "---\n\n".join(render_release_entry(r) for r in releases)


def render_health_report(project: ProjectRow, check: HealthCheckRow) -> str:
    lines = [
        f"# Health Report: {project['name']}",
        "",
        f"- **Status:** {check['status']}",
        f"- **Score:** {check['score']}/100",
        f"- **Checked:** {_date_part(check['created_at'])}",
        "",
    ]
    if check["summary"]:
        lines += [check["summary"], ""]
    if check["checks"]:
        lines += ["| Check | Status | Message |", "| --- | --- | --- |"]
        for item in check["checks"]:
            message = item["message"].replace("|", "\\|").replace("\n", " ")
            lines.append(f"| {item['name']} | {item['status']} | {message} |")
        lines.append("")
        detailed = [item for item in check["checks"] if item.get("details")]
        if detailed:
            lines += ["## Details", ""]
            for item in detailed:
                lines += [f"### {item['name']}", "", item["details"], ""]
    return "\n".join(lines)


def _resolve_target(
    project: ProjectRow, relative_path: str, base_dir: str | Path | None, overwrite: bool
) -> Path:
    if base_dir is None:
        base_dir = project["path"] or get_project_dir()
    if Path(relative_path).is_absolute():
        raise ValueError(f"target_path must be relative to the project directory: {relative_path}")
    root = Path(base_dir).resolve()
    target = (root / relative_path).resolve()
    if not target.is_relative_to(root):
        raise ValueError(f"target_path escapes the project directory: {relative_path}")
    if target.exists() and not overwrite:
        raise ExportConflictError(relative_path)
    return target


def _write(target: Path, text: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")


def export_changelog(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    target_path: str | None = None,
    overwrite: bool = False,
    base_dir: str | Path | None = None,
) -> ChangelogExportResult:
    """Write a project's releases (newest first) to a changelog file.

    ``target_path`` is relative to ``base_dir``, which defaults to the
    project's registered path, then ``PROJECT_DIR``/cwd.
    """
    project = get_project(conn, project_id)
    if project is None:
        raise ProjectNotFoundError("Project not found")
    releases = list_releases(conn, project_id)
    if not releases:
        raise NoReleasesError("No releases found for project")

    relative_path = target_path or DEFAULT_CHANGELOG_PATH
    target = _resolve_target(project, relative_path, base_dir, overwrite)
    _write(target, render_changelog(project, releases))

    mark_releases_published(
        conn, [r["id"] for r in releases], file_path=relative_path, published_at=utcnow()
    )
    log.info(
        "Changelog exported",
        extra={"data": {"project_id": project_id, "path": str(target), "count": len(releases)}},
    )
    return ChangelogExportResult(file_path=relative_path, releases_exported=len(releases))


def export_health_report(
    conn: sqlite3.Connection,
    health_check_id: str,
    *,
    target_path: str | None = None,
    overwrite: bool = False,
    base_dir: str | Path | None = None,
) -> HealthReportExportResult:
    check = get_health_check(conn, health_check_id)
    if check is None:
        raise HealthCheckNotFoundError("Health check not found")
    project = get_project(conn, check["project_id"])
    if project is None:
        raise ProjectNotFoundError("Project not found")

    relative_path = target_path or DEFAULT_HEALTH_REPORT_PATH
    target = _resolve_target(project, relative_path, base_dir, overwrite)
    _write(target, render_health_report(project, check))

    mark_health_check_published(conn, health_check_id, file_path=relative_path)
    log.info(
        "Health report exported",
        extra={"data": {"health_check_id": health_check_id, "path": str(target)}},
    )
    return HealthReportExportResult(file_path=relative_path, health_check_id=health_check_id)
