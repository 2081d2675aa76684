from __future__ import annotations

import difflib
import json
import logging
import sqlite3
from typing import Any

import click

from plugin_ops import __version__
from plugin_ops.api import dispatch
from plugin_ops.db import (
    VALID_ISSUE_CATEGORIES,
    VALID_ISSUE_PRIORITIES,
    VALID_ISSUE_STATUSES,
    VALID_PROJECT_TYPES,
    VALID_RUNBOOK_STATUSES,
    close_db,
    get_db,
)
from plugin_ops.logs import configure_logging
from plugin_ops.paths import get_data_dir, get_db_path, get_log_path, get_project_dir

log = logging.getLogger(__name__)

USAGE = "USAGE"


class OpsCommandError(click.ClickException):
    """A failed ``dispatch`` call, carrying the API error code."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


class _JsonAwareGroup(click.Group):
    """Writes every error to stdout as ``{"ok": false, "error", "code"}``.

    Misspelled subcommands get a close-match suggestion.
    """

    def resolve_command(self, ctx, args):  # type: ignore[override]
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if not args:
                raise
            matches = difflib.get_close_matches(args[0], self.list_commands(ctx), n=2, cutoff=0.5)
            hint = f" Did you mean: {', '.join(matches)}?" if matches else ""
            raise click.UsageError(f"No such command '{args[0]}'.{hint}") from None

    def main(self, args=None, standalone_mode=True, **kwargs):  # type: ignore[override]
        try:
            rv = super().main(args=args, standalone_mode=False, **kwargs)
        except click.ClickException as e:
            code = e.code if isinstance(e, OpsCommandError) else USAGE
            click.echo(json.dumps({"ok": False, "error": e.format_message(), "code": code}))
            rv = e.exit_code
        except click.Abort:
            click.echo("Aborted!", err=True)
            rv = 1
        if standalone_mode:
            raise SystemExit(rv or 0)
        return rv


def _conn() -> sqlite3.Connection:
    """Shared handle for this invocation, closed when the root context tears down."""
    ctx = click.get_current_context().find_root()
    if not ctx.meta.get("ops.close_registered"):
        ctx.call_on_close(close_db)
        ctx.meta["ops.close_registered"] = True
    return get_db()


def _call(method: str, **params: Any) -> Any:
    response = dispatch(
        {"method": method, "params": {k: v for k, v in params.items() if v is not None}},
        conn=_conn(),
    )
    if not response["ok"]:
        raise OpsCommandError(response["error"], response["code"])
    return response["data"]


def _emit(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _choice(values: set[str]) -> click.Choice:
    return click.Choice(sorted(values))


@click.group(cls=_JsonAwareGroup)
@click.version_option(version=__version__)
def main():
    """Track plugin project maintenance: health checks, issues, releases, runbooks.

    \b
    Quick start:
      ops project detect                  Inspect the current directory
      ops project add my-plugin --path .  Register a project
      ops issue list -p PROJECT_ID        Show a project's issues
      ops release export PROJECT_ID       Write CHANGELOG.md
      ops serve                           Run the MCP server on stdio
    """
    configure_logging()


@main.command()
def paths():
    """Show the data directory, database and log file locations."""
    _emit(
        {
            "data_dir": str(get_data_dir()),
            "db_path": str(get_db_path()),
            "log_path": str(get_log_path()),
            "project_dir": str(get_project_dir()),
        }
    )


@main.command()
def serve():
    """Run the MCP server over stdio."""
    from plugin_ops.server import run

    run()


# -- project --


@main.group()
def project():
    """Register, inspect and scan plugin projects."""


@project.command("list")
def project_list():
    """List registered projects."""
    _emit(_call("project.list"))


@project.command("show")
@click.argument("project_id")
def project_show(project_id: str):
    """Show one project."""
    _emit(_call("project.get", id=project_id))


@project.command("add")
@click.argument("name")
@click.option("--type", "project_type", type=_choice(VALID_PROJECT_TYPES), default=None)
@click.option("--path", default=None, help="Project root directory.")
@click.option("--version", "version", default=None, help="Current semver version.")
@click.option("--description", default=None)
@click.option(
    "--detect/--no-detect",
    default=False,
    help="Fill type and component flags by scanning --path.",
)
def project_add(
    name: str,
    project_type: str | None,
    path: str | None,
    version: str | None,
    description: str | None,
    detect: bool,
):
    """Register a project."""
    if detect:
        _emit(_call("project.register", path=path, name=name))
        return
    _emit(
        _call(
            "project.create",
            name=name,
            type=project_type,
            path=path,
            version=version,
            description=description,
        )
    )


@project.command("update")
@click.argument("project_id")
@click.option("--name", default=None)
@click.option("--type", "project_type", type=_choice(VALID_PROJECT_TYPES), default=None)
@click.option("--path", default=None)
@click.option("--version", "version", default=None)
@click.option("--description", default=None)
@click.option("--metadata", default=None, help="Metadata as a JSON object.")
def project_update(
    project_id: str,
    name: str | None,
    project_type: str | None,
    path: str | None,
    version: str | None,
    description: str | None,
    metadata: str | None,
):
    """Update project fields."""
    _emit(
        _call(
            "project.update",
            id=project_id,
            name=name,
            type=project_type,
            path=path,
            version=version,
            description=description,
            metadata=metadata,
        )
    )


@project.command("remove")
@click.argument("project_id")
def project_remove(project_id: str):
    """Delete a project with its health checks, issues, releases and runbooks."""
    _emit(_call("project.delete", id=project_id))


@project.command("detect")
@click.argument("path", required=False)
def project_detect(path: str | None):
    """Scan PATH (default PROJECT_DIR or cwd) for plugin components."""
    _emit(_call("project.detect", path=path))


# -- health --


@main.group()
def health():
    """Inspect and export health checks."""


@health.command("list")
@click.argument("project_id")
def health_list(project_id: str):
    """Health check history, newest first."""
    _emit(_call("health.list", project_id=project_id))


@health.command("latest")
@click.argument("project_id")
def health_latest(project_id: str):
    _emit(_call("health.latest", project_id=project_id))


@health.command("export")
@click.argument("health_check_id")
@click.option("--target", "target_path", default=None, help="Relative path (default HEALTH.md).")
@click.option("--overwrite", is_flag=True, help="Replace an existing file.")
def health_export(health_check_id: str, target_path: str | None, overwrite: bool):
    """Write a health check report into the project."""
    _emit(_call("health.export", id=health_check_id, target_path=target_path, overwrite=overwrite))


# -- issue --


@main.group()
def issue():
    """File, filter and close issues."""


@issue.command("list")
@click.option("--project", "-p", "project_id", default=None)
@click.option("--status", type=_choice(VALID_ISSUE_STATUSES), default=None)
@click.option("--priority", type=_choice(VALID_ISSUE_PRIORITIES), default=None)
@click.option("--category", type=_choice(VALID_ISSUE_CATEGORIES), default=None)
def issue_list(
    project_id: str | None, status: str | None, priority: str | None, category: str | None
):
    """List issues, newest first."""
    _emit(
        _call(
            "issue.list",
            project_id=project_id,
            status=status,
            priority=priority,
            category=category,
        )
    )


@issue.command("add")
@click.argument("project_id")
@click.argument("title")
@click.option("--description", "-d", default=None)
@click.option("--priority", type=_choice(VALID_ISSUE_PRIORITIES), default=None)
@click.option("--category", type=_choice(VALID_ISSUE_CATEGORIES), default=None)
def issue_add(
    project_id: str,
    title: str,
    description: str | None,
    priority: str | None,
    category: str | None,
):
    """File a manual issue."""
    _emit(
        _call(
            "issue.create",
            project_id=project_id,
            title=title,
            description=description,
            priority=priority,
            category=category,
        )
    )


@issue.command("close")
@click.argument("issue_id")
@click.argument("resolution")
def issue_close(issue_id: str, resolution: str):
    """Close an issue with a resolution."""
    _emit(_call("issue.close", id=issue_id, resolution=resolution))


@issue.command("stats")
@click.option("--project", "-p", "project_id", default=None)
def issue_stats(project_id: str | None):
    """Issue counts by status, priority and category."""
    _emit(_call("issue.stats", project_id=project_id))


# -- release --


@main.group()
def release():
    """Inspect, tag and export releases."""


@release.command("list")
@click.argument("project_id")
def release_list(project_id: str):
    _emit(_call("release.list", project_id=project_id))


@release.command("latest")
@click.argument("project_id")
def release_latest(project_id: str):
    _emit(_call("release.latest", project_id=project_id))


@release.command("tag")
@click.argument("release_id")
@click.option("--tag", "git_tag", default=None, help="Git tag name.")
@click.option("--sha", "commit_sha", default=None, help="Commit SHA.")
def release_tag(release_id: str, git_tag: str | None, commit_sha: str | None):
    """Record the git tag and commit of a release."""
    _emit(_call("release.update", id=release_id, git_tag=git_tag, commit_sha=commit_sha))


@release.command("export")
@click.argument("project_id")
@click.option("--target", "target_path", default=None, help="Relative path (default CHANGELOG.md).")
@click.option("--overwrite", is_flag=True, help="Replace an existing file.")
def release_export(project_id: str, target_path: str | None, overwrite: bool):
    """Write the project's release history to a changelog."""
    _emit(
        _call(
            "release.export",
            project_id=project_id,
            target_path=target_path,
            overwrite=overwrite,
        )
    )


# -- runbook --


@main.group()
def runbook():
    """Inspect runbook executions."""


@runbook.command("list")
@click.option("--project", "-p", "project_id", default=None)
@click.option("--status", type=_choice(VALID_RUNBOOK_STATUSES), default=None)
@click.option("--name", "runbook_name", default=None)
def runbook_list(project_id: str | None, status: str | None, runbook_name: str | None):
    _emit(
        _call(
            "runbook.list",
            project_id=project_id,
            status=status,
            runbook_name=runbook_name,
        )
    )


@runbook.command("show")
@click.argument("execution_id")
def runbook_show(execution_id: str):
    """Show an execution with its step log."""
    _emit(_call("runbook.get", id=execution_id))


if __name__ == "__main__":
    main()
