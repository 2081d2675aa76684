"""MCP tool definitions for plugin-ops.

Each tool maps one-to-one onto an ``api`` dispatch method (see
``TOOL_METHODS``), so the MCP server and ``ops-api`` expose identical
behaviour.
"""

from __future__ import annotations

from typing import Any

from mcp.types import Tool

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
)


def _string(description: str | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "string"}
    if description:
        prop["description"] = description
    return prop


def _integer(description: str | None = None, **bounds: int) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "integer", **bounds}
    if description:
        prop["description"] = description
    return prop


def _enum(values: set[str], description: str | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "string", "enum": sorted(values)}
    if description:
        prop["description"] = description
    return prop


def _flag(description: str) -> dict[str, Any]:
    return {"type": "integer", "enum": [0, 1], "description": description}


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_ID = {"id": _string("Record ID")}
_PROJECT_ID = {"project_id": _string("Project ID")}

_PROJECT_FIELDS = {
    "type": _enum(VALID_PROJECT_TYPES, "Plugin architecture type"),
    "path": _string("Absolute path to project root"),
    "version": _string("Current semver version"),
    "description": _string("What the plugin does"),
    "has_skills": _flag("1 if the project has skills"),
    "has_mcp": _flag("1 if the project has an MCP server"),
    "has_hooks": _flag("1 if the project has hooks"),
    "has_agents": _flag("1 if the project has agents"),
}

_CHECK_ITEM = {
    "type": "object",
    "properties": {
        "name": _string(),
        "status": _string(),
        "message": _string(),
        "details": _string(),
    },
    "required": ["name", "status", "message"],
}

# (tool name, api method, description, input schema)
_TOOL_SPECS: list[tuple[str, str, str, dict[str, Any]]] = [
    # -- projects --
    (
        "ops_project_create",
        "project.create",
        "Register a plugin project for maintenance tracking",
        _schema(
            {
                "name": _string("Plugin name"),
                **_PROJECT_FIELDS,
                "metadata": {"type": "object", "description": "Extra metadata (repo URL, etc.)"},
            },
            ["name"],
        ),
    ),
    ("ops_project_get", "project.get", "Get a registered project by ID", _schema(_ID, ["id"])),
    ("ops_project_list", "project.list", "List all registered plugin projects", _schema({})),
    (
        "ops_project_update",
        "project.update",
        "Update project details",
        _schema(
            {
                **_ID,
                "name": _string(),
                **_PROJECT_FIELDS,
                "metadata": {
                    "type": ["object", "string"],
                    "description": "Metadata object (or its JSON text)",
                },
            },
            ["id"],
        ),
    ),
    (
        "ops_project_delete",
        "project.delete",
        "Delete a project and all cascading data (health checks, issues, releases, runbooks)",
        _schema(_ID, ["id"]),
    ),
    (
        "ops_project_detect",
        "project.detect",
        "Scan a project path to detect components (skills, MCP, hooks, agents)",
        _schema({"path": _string("Path to scan (defaults to PROJECT_DIR)")}),
    ),
    (
        "ops_project_register",
        "project.register",
        "Scan a project path and register it with the detected components",
        _schema(
            {
                "path": _string("Path to scan (defaults to PROJECT_DIR)"),
                "name": _string("Project name (defaults to manifest name, then directory)"),
            }
        ),
    ),
    # -- health checks --
    (
        "ops_health_create",
        "health.create",
        "Record a health check snapshot for a project",
        _schema(
            {
                **_PROJECT_ID,
                "status": _enum(VALID_HEALTH_STATUSES, "Overall health status"),
                "score": _integer("Health score 0-100", minimum=0, maximum=100),
                "checks": {
                    "type": "array",
                    "items": _CHECK_ITEM,
                    "description": "Individual check results",
                },
                "summary": _string("Human-readable summary"),
            },
            ["project_id", "status", "score", "checks", "summary"],
        ),
    ),
    ("ops_health_get", "health.get", "Get a health check by ID", _schema(_ID, ["id"])),
    (
        "ops_health_list",
        "health.list",
        "List health check history for a project",
        _schema(_PROJECT_ID, ["project_id"]),
    ),
    (
        "ops_health_latest",
        "health.latest",
        "Get the most recent health check for a project",
        _schema(_PROJECT_ID, ["project_id"]),
    ),
    (
        "ops_health_export",
        "health.export",
        "Write a health check report to a Markdown file in the project",
        _schema(
            {
                **_ID,
                "target_path": _string("Relative path of the report (default HEALTH.md)"),
                "overwrite": {"type": "boolean", "description": "Replace an existing file"},
            },
            ["id"],
        ),
    ),
    # -- issues --
    (
        "ops_issue_create",
        "issue.create",
        "File a new issue for a project",
        _schema(
            {
                **_PROJECT_ID,
                "title": _string("Issue title"),
                "description": _string("Issue description"),
                "priority": _enum(VALID_ISSUE_PRIORITIES),
                "category": _enum(VALID_ISSUE_CATEGORIES),
                "source": _enum(VALID_ISSUE_SOURCES),
                "health_check_id": _string("Health check that generated this issue"),
            },
            ["project_id", "title"],
        ),
    ),
    ("ops_issue_get", "issue.get", "Get an issue by ID", _schema(_ID, ["id"])),
    (
        "ops_issue_list",
        "issue.list",
        "List issues with optional filters",
        _schema(
            {
                **_PROJECT_ID,
                "status": _enum(VALID_ISSUE_STATUSES),
                "priority": _enum(VALID_ISSUE_PRIORITIES),
                "category": _enum(VALID_ISSUE_CATEGORIES),
            }
        ),
    ),
    (
        "ops_issue_update",
        "issue.update",
        "Update issue fields",
        _schema(
            {
                **_ID,
                "title": _string(),
                "description": _string(),
                "status": _enum(VALID_ISSUE_STATUSES),
                "priority": _enum(VALID_ISSUE_PRIORITIES),
                "category": _enum(VALID_ISSUE_CATEGORIES),
                "resolution": _string(),
            },
            ["id"],
        ),
    ),
    (
        "ops_issue_close",
        "issue.close",
        "Close an issue with a resolution",
        _schema({**_ID, "resolution": _string("How the issue was resolved")}, ["id", "resolution"]),
    ),
    ("ops_issue_delete", "issue.delete", "Delete an issue", _schema(_ID, ["id"])),
    (
        "ops_issue_stats",
        "issue.stats",
        "Get issue counts by status, priority, and category",
        _schema({"project_id": _string("Filter by project ID")}),
    ),
    # -- releases --
    (
        "ops_release_create",
        "release.create",
        "Record a new release for a project",
        _schema(
            {
                **_PROJECT_ID,
                "version": _string("Semver version string"),
                "type": _enum(VALID_RELEASE_TYPES, "Release type"),
                "changelog": _string("Markdown changelog entry"),
                "files_bumped": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "File paths that were version-bumped",
                },
                "git_tag": _string("Git tag name"),
                "commit_sha": _string("Git commit SHA"),
            },
            ["project_id", "version", "type"],
        ),
    ),
    ("ops_release_get", "release.get", "Get a release by ID", _schema(_ID, ["id"])),
    (
        "ops_release_list",
        "release.list",
        "List releases for a project",
        _schema(_PROJECT_ID, ["project_id"]),
    ),
    (
        "ops_release_latest",
        "release.latest",
        "Get the most recent release for a project",
        _schema(_PROJECT_ID, ["project_id"]),
    ),
    (
        "ops_release_update",
        "release.update",
        "Update release git_tag and commit_sha after tagging",
        _schema(
            {**_ID, "git_tag": _string("Git tag name"), "commit_sha": _string("Git commit SHA")},
            ["id"],
        ),
    ),
    (
        "ops_release_export",
        "release.export",
        "Export a project's release history to a CHANGELOG file",
        _schema(
            {
                **_PROJECT_ID,
                "target_path": _string("Relative path of the changelog (default CHANGELOG.md)"),
                "overwrite": {"type": "boolean", "description": "Replace an existing file"},
            },
            ["project_id"],
        ),
    ),
    # -- runbooks --
    (
        "ops_runbook_start",
        "runbook.start",
        "Start a runbook execution for a project",
        _schema(
            {
                **_PROJECT_ID,
                "runbook_name": _string("Name of the runbook to execute"),
                "total_steps": _integer("Total number of steps in the runbook", minimum=0),
            },
            ["project_id", "runbook_name", "total_steps"],
        ),
    ),
    ("ops_runbook_get", "runbook.get", "Get a runbook execution by ID", _schema(_ID, ["id"])),
    (
        "ops_runbook_list",
        "runbook.list",
        "List runbook executions with optional filters",
        _schema(
            {
                **_PROJECT_ID,
                "status": _enum(VALID_RUNBOOK_STATUSES),
                "runbook_name": _string(),
            }
        ),
    ),
    (
        "ops_runbook_step",
        "runbook.step",
        "Log a completed step in a runbook execution",
        _schema(
            {
                **_ID,
                "name": _string("Step name"),
                "status": _string("Step status (pass/fail/skip)"),
                "message": _string("Step result message"),
                "duration_ms": _integer("Step duration in milliseconds", minimum=0),
            },
            ["id", "name", "status", "message"],
        ),
    ),
    (
        "ops_runbook_complete",
        "runbook.complete",
        "Mark a runbook execution as completed or failed",
        _schema(
            {
                **_ID,
                "status": _enum(RUNBOOK_TERMINAL_STATUSES, "Final status"),
                "error": _string("Error message if failed"),
            },
            ["id", "status"],
        ),
    ),
]

TOOL_METHODS: dict[str, str] = {name: method for name, method, _, _ in _TOOL_SPECS}


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools for plugin maintenance tracking."""
    return [
        Tool(name=name, description=description, inputSchema=schema)
        for name, _, description, schema in _TOOL_SPECS
    ]
