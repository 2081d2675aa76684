"""JSON dispatch layer shared by the MCP server, the CLI and ``ops-api``.

Protocol:
    stdin:  {"method": "issue.get", "params": {"id": "..."}}
    stdout: {"ok": true, "data": {...}}
    stdout: {"ok": false, "error": "Issue not found", "code": "NOT_FOUND"}

``ops-api`` always exits 0 and always writes JSON on stdout.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import sys
from collections.abc import Callable, Collection
from typing import Any

from plugin_ops.db import (
    RUNBOOK_TERMINAL_STATUSES,
    VALID_HEALTH_STATUSES,
    VALID_ISSUE_CATEGORIES,
    VALID_ISSUE_PRIORITIES,
    VALID_ISSUE_SOURCES,
    VALID_ISSUE_STATUSES,
    VALID_PROJECT_TYPES,
    VALID_RELEASE_TYPES,
    VALID_RUNBOOK_STATUSES,
    close_db,
    get_db,
)
from plugin_ops.detect import detect_project
from plugin_ops.exports import (
    ExportConflictError,
    HealthCheckNotFoundError,
    NoReleasesError,
    ProjectNotFoundError,
    export_changelog,
    export_health_report,
)
from plugin_ops.health import (
    create_health_check,
    get_health_check,
    get_latest_health_check,
    list_health_checks,
)
from plugin_ops.issues import (
    close_issue,
    create_issue,
    delete_issue,
    get_issue,
    get_issue_stats,
    list_issues,
    update_issue,
)
from plugin_ops.logs import configure_logging
from plugin_ops.paths import get_project_dir
from plugin_ops.projects import (
    create_project,
    delete_project,
    get_project,
    list_projects,
    register_detected_project,
    update_project,
)
from plugin_ops.releases import (
    create_release,
    get_latest_release,
    get_release,
    list_releases,
    update_release,
)
from plugin_ops.runbooks import (
    complete_runbook,
    get_runbook_execution,
    list_runbook_executions,
    log_runbook_step,
    start_runbook,
)
from plugin_ops.views import health_view, open_issues_view, projects_view

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

NOT_FOUND = "NOT_FOUND"
INVALID_PARAMS = "INVALID_PARAMS"
INVALID_METHOD = "INVALID_METHOD"
CONFLICT = "CONFLICT"
INTERNAL = "INTERNAL"


class ApiError(Exception):
    """Raised by handlers to produce a structured error response."""

    def __init__(self, message: str, code: str = INTERNAL):
        super().__init__(message)
        self.code = code


def _require(params: dict, key: str) -> str:
    """Extract a required string param, raising ApiError if missing."""
    val = params.get(key)
    if val is None or val == "":
        raise ApiError(f"Missing required param: {key}", INVALID_PARAMS)
    return str(val)


def _optional(params: dict, key: str) -> str | None:
    val = params.get(key)
    return str(val) if val is not None else None


def _optional_bool(params: dict, key: str, default: bool = False) -> bool:
    val = params.get(key)
    if val is None:
        return default
    if isinstance(val, bool) or val in (0, 1):
        return bool(val)
    raise ApiError(f"Param '{key}' must be a boolean", INVALID_PARAMS)


def _int_param(params: dict, key: str, *, required: bool = False, minimum: int = 0) -> int | None:
    val = params.get(key)
    if val is None:
        if required:
            raise ApiError(f"Missing required param: {key}", INVALID_PARAMS)
        return None
    if isinstance(val, bool):
        raise ApiError(f"Param '{key}' must be an integer", INVALID_PARAMS)
    try:
        parsed = int(val)
    except (TypeError, ValueError) as exc:
        raise ApiError(f"Param '{key}' must be an integer", INVALID_PARAMS) from exc
    if parsed < minimum:
        raise ApiError(f"Param '{key}' must be >= {minimum}", INVALID_PARAMS)
    return parsed


def _choice(params: dict, key: str, choices: Collection[str], *, required: bool = False):
    val = _require(params, key) if required else _optional(params, key)
    if val is not None and val not in choices:
        raise ApiError(
            f"Invalid {key} '{val}'. Must be one of: {sorted(choices)}", INVALID_PARAMS
        )
    return val


def _found(record, entity: str, identifier: str):
    if record is None:
        raise ApiError(f"{entity} '{identifier}' not found", NOT_FOUND)
    return record


def _updates(params: dict, choices: dict[str, Collection[str]]) -> dict[str, Any]:
    updates = {k: v for k, v in params.items() if k != "id" and v is not None}
    for key, allowed in choices.items():
        _choice(updates, key, allowed)
    return updates


# ---------------------------------------------------------------------------
# Handlers - each takes (conn, params) and returns JSON-serializable data
# ---------------------------------------------------------------------------

# -- projects --


def _handle_project_create(conn, params):
    kwargs: dict[str, Any] = {"name": _require(params, "name")}
    project_type = _choice(params, "type", VALID_PROJECT_TYPES)
    if project_type:
        kwargs["type"] = project_type
    for key in ("path", "version", "description"):
        if params.get(key) is not None:
            kwargs[key] = str(params[key])
    for key in ("has_skills", "has_mcp", "has_hooks", "has_agents"):
        if params.get(key) is not None:
            kwargs[key] = params[key]
    if params.get("metadata") is not None:
        kwargs["metadata"] = params["metadata"]
    return create_project(conn, **kwargs)


def _handle_project_get(conn, params):
    project_id = _require(params, "id")
    return _found(get_project(conn, project_id), "Project", project_id)


def _handle_project_list(conn, _params):
    return list_projects(conn)


def _handle_project_update(conn, params):
    project_id = _require(params, "id")
    updates = _updates(params, {"type": VALID_PROJECT_TYPES})
    return _found(update_project(conn, project_id, updates), "Project", project_id)


def _handle_project_delete(conn, params):
    project_id = _require(params, "id")
    if not delete_project(conn, project_id):
        raise ApiError(f"Project '{project_id}' not found", NOT_FOUND)
    return {"id": project_id, "deleted": True}


def _handle_project_detect(_conn, params):
    path = _optional(params, "path") or str(get_project_dir())
    return detect_project(path)


def _handle_project_register(conn, params):
    path = _optional(params, "path") or str(get_project_dir())
    return register_detected_project(conn, path, name=_optional(params, "name"))


# -- health checks --


def _handle_health_create(conn, params):
    checks = params.get("checks")
    if checks is None:
        checks = []
    if not isinstance(checks, list):
        raise ApiError("Param 'checks' must be an array", INVALID_PARAMS)
    return create_health_check(
        conn,
        project_id=_require(params, "project_id"),
        status=_choice(params, "status", VALID_HEALTH_STATUSES, required=True),
        score=_int_param(params, "score", required=True),
        checks=checks,
        summary=_optional(params, "summary") or "",
    )


def _handle_health_get(conn, params):
    check_id = _require(params, "id")
    return _found(get_health_check(conn, check_id), "Health check", check_id)


def _handle_health_list(conn, params):
    return list_health_checks(conn, _require(params, "project_id"))


def _handle_health_latest(conn, params):
    project_id = _require(params, "project_id")
    check = get_latest_health_check(conn, project_id)
    if check is None:
        raise ApiError(f"No health checks found for project '{project_id}'", NOT_FOUND)
    return check


def _handle_health_export(conn, params):
    return export_health_report(
        conn,
        _require(params, "id"),
        target_path=_optional(params, "target_path"),
        overwrite=_optional_bool(params, "overwrite"),
    )


# -- issues --


def _handle_issue_create(conn, params):
    kwargs: dict[str, Any] = {
        "project_id": _require(params, "project_id"),
        "title": _require(params, "title"),
    }
    for key, choices in (
        ("priority", VALID_ISSUE_PRIORITIES),
        ("category", VALID_ISSUE_CATEGORIES),
        ("source", VALID_ISSUE_SOURCES),
    ):
        value = _choice(params, key, choices)
        if value:
            kwargs[key] = value
    if params.get("description") is not None:
        kwargs["description"] = str(params["description"])
    if params.get("health_check_id"):
        kwargs["health_check_id"] = str(params["health_check_id"])
    return create_issue(conn, **kwargs)


def _handle_issue_get(conn, params):
    issue_id = _require(params, "id")
    return _found(get_issue(conn, issue_id), "Issue", issue_id)


def _handle_issue_list(conn, params):
    return list_issues(
        conn,
        project_id=_optional(params, "project_id"),
        status=_choice(params, "status", VALID_ISSUE_STATUSES),
        priority=_choice(params, "priority", VALID_ISSUE_PRIORITIES),
        category=_choice(params, "category", VALID_ISSUE_CATEGORIES),
    )


def _handle_issue_update(conn, params):
    issue_id = _require(params, "id")
    updates = _updates(
        params,
        {
            "status": VALID_ISSUE_STATUSES,
            "priority": VALID_ISSUE_PRIORITIES,
            "category": VALID_ISSUE_CATEGORIES,
        },
    )
    return _found(update_issue(conn, issue_id, updates), "Issue", issue_id)


def _handle_issue_close(conn, params):
    issue_id = _require(params, "id")
    resolution = _require(params, "resolution")
    return _found(close_issue(conn, issue_id, resolution), "Issue", issue_id)


def _handle_issue_delete(conn, params):
    issue_id = _require(params, "id")
    if not delete_issue(conn, issue_id):
        raise ApiError(f"Issue '{issue_id}' not found", NOT_FOUND)
    return {"id": issue_id, "deleted": True}


def _handle_issue_stats(conn, params):
    return get_issue_stats(conn, _optional(params, "project_id"))


# -- releases --


def _handle_release_create(conn, params):
    files_bumped = params.get("files_bumped") or []
    if not isinstance(files_bumped, list):
        raise ApiError("Param 'files_bumped' must be an array", INVALID_PARAMS)
    return create_release(
        conn,
        project_id=_require(params, "project_id"),
        version=_require(params, "version"),
        type=_choice(params, "type", VALID_RELEASE_TYPES, required=True),
        changelog=_optional(params, "changelog") or "",
        files_bumped=files_bumped,
        git_tag=_optional(params, "git_tag"),
        commit_sha=_optional(params, "commit_sha"),
    )


def _handle_release_get(conn, params):
    release_id = _require(params, "id")
    return _found(get_release(conn, release_id), "Release", release_id)


def _handle_release_list(conn, params):
    return list_releases(conn, _require(params, "project_id"))


def _handle_release_latest(conn, params):
    project_id = _require(params, "project_id")
    release = get_latest_release(conn, project_id)
    if release is None:
        raise ApiError(f"No releases found for project '{project_id}'", NOT_FOUND)
    return release


def _handle_release_update(conn, params):
    release_id = _require(params, "id")
    release = update_release(
        conn,
        release_id,
        git_tag=_optional(params, "git_tag"),
        commit_sha=_optional(params, "commit_sha"),
    )
    return _found(release, "Release", release_id)


def _handle_release_export(conn, params):
    return export_changelog(
        conn,
        _require(params, "project_id"),
        target_path=_optional(params, "target_path"),
        overwrite=_optional_bool(params, "overwrite"),
    )


# -- runbooks --


def _handle_runbook_start(conn, params):
    return start_runbook(
        conn,
        project_id=_require(params, "project_id"),
        runbook_name=_require(params, "runbook_name"),
        total_steps=_int_param(params, "total_steps", required=True),
    )


def _handle_runbook_get(conn, params):
    execution_id = _require(params, "id")
    return _found(get_runbook_execution(conn, execution_id), "Execution", execution_id)


def _handle_runbook_list(conn, params):
    return list_runbook_executions(
        conn,
        project_id=_optional(params, "project_id"),
        status=_choice(params, "status", VALID_RUNBOOK_STATUSES),
        runbook_name=_optional(params, "runbook_name"),
    )


def _handle_runbook_step(conn, params):
    execution_id = _require(params, "id")
    execution = log_runbook_step(
        conn,
        execution_id,
        name=_require(params, "name"),
        status=_require(params, "status"),
        message=_optional(params, "message") or "",
        duration_ms=_int_param(params, "duration_ms"),
    )
    return _found(execution, "Execution", execution_id)


def _handle_runbook_complete(conn, params):
    execution_id = _require(params, "id")
    execution = complete_runbook(
        conn,
        execution_id,
        _choice(params, "status", RUNBOOK_TERMINAL_STATUSES, required=True),
        _optional(params, "error"),
    )
    return _found(execution, "Execution", execution_id)


# -- views --


def _handle_view_projects(conn, _params):
    return projects_view(conn)


def _handle_view_health(conn, _params):
    return health_view(conn)


def _handle_view_issues(conn, _params):
    return open_issues_view(conn)


METHODS: dict[str, Callable[[sqlite3.Connection, dict], Any]] = {
    # projects
    "project.create": _handle_project_create,
    "project.get": _handle_project_get,
    "project.list": _handle_project_list,
    "project.update": _handle_project_update,
    "project.delete": _handle_project_delete,
    "project.detect": _handle_project_detect,
    "project.register": _handle_project_register,
    # health checks
    "health.create": _handle_health_create,
    "health.get": _handle_health_get,
    "health.list": _handle_health_list,
    "health.latest": _handle_health_latest,
    "health.export": _handle_health_export,
    # issues
    "issue.create": _handle_issue_create,
    "issue.get": _handle_issue_get,
    "issue.list": _handle_issue_list,
    "issue.update": _handle_issue_update,
    "issue.close": _handle_issue_close,
    "issue.delete": _handle_issue_delete,
    "issue.stats": _handle_issue_stats,
    # releases
    "release.create": _handle_release_create,
    "release.get": _handle_release_get,
    "release.list": _handle_release_list,
    "release.latest": _handle_release_latest,
    "release.update": _handle_release_update,
    "release.export": _handle_release_export,
    # runbooks
    "runbook.start": _handle_runbook_start,
    "runbook.get": _handle_runbook_get,
    "runbook.list": _handle_runbook_list,
    "runbook.step": _handle_runbook_step,
    "runbook.complete": _handle_runbook_complete,
    # aggregate views
    "view.projects": _handle_view_projects,
    "view.health": _handle_view_health,
    "view.issues": _handle_view_issues,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def dispatch(request: dict, *, conn: sqlite3.Connection | None = None) -> dict:
    """Process a single API request and return the response dict.

    Args:
        request: ``{"method": "...", "params": {...}}``
        conn: Use this connection instead of the shared handle from ``get_db()``.
    """
    method = request.get("method")
    if not method or not isinstance(method, str):
        return {"ok": False, "error": "Missing or invalid 'method'", "code": INVALID_METHOD}

    handler = METHODS.get(method)
    if not handler:
        return {"ok": False, "error": f"Unknown method: {method}", "code": INVALID_METHOD}

    params = request.get("params") or {}
    if not isinstance(params, dict):
        return {"ok": False, "error": "'params' must be an object", "code": INVALID_PARAMS}

    try:
        data = handler(conn if conn is not None else get_db(), params)
        return {"ok": True, "data": data}
    except ApiError as exc:
        return {"ok": False, "error": str(exc), "code": exc.code}
    except ExportConflictError as exc:
        return {"ok": False, "error": str(exc), "code": CONFLICT}
    except (ProjectNotFoundError, NoReleasesError, HealthCheckNotFoundError) as exc:
        return {"ok": False, "error": str(exc), "code": NOT_FOUND}
    except ValueError as exc:
        return {"ok": False, "error": str(exc), "code": INVALID_PARAMS}
    except Exception as exc:
        log.exception("%s failed", method, extra={"data": {"params": params}})
        return {"ok": False, "error": str(exc), "code": INTERNAL}


def main() -> None:
    """Read JSON request from stdin, dispatch, write JSON response to stdout."""
    configure_logging()
    try:
        raw = sys.stdin.read()
        if not raw.strip():
            response = {"ok": False, "error": "Empty request", "code": INVALID_PARAMS}
        else:
            request = json.loads(raw)
            if not isinstance(request, dict):
                response = {
                    "ok": False,
                    "error": "Request must be an object",
                    "code": INVALID_PARAMS,
                }
            else:
                response = dispatch(request)
    except json.JSONDecodeError as exc:
        response = {"ok": False, "error": f"Invalid JSON: {exc}", "code": INVALID_PARAMS}
    except Exception as exc:
        response = {"ok": False, "error": str(exc), "code": INTERNAL}
    finally:
        close_db()

    sys.stdout.write(json.dumps(response, default=str))
    sys.stdout.write("\n")
    sys.stdout.flush()


if __name__ == "__main__":
    main()
