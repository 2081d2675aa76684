"""Tests for the CLI commands."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from plugin_ops.cli import main


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, *args: str):
    result = runner.invoke(main, list(args))
    return result, json.loads(result.output)


def _add_project(runner, tmp_path, name="demo") -> dict:
    root = tmp_path / name
    root.mkdir()
    result, data = _invoke(runner, "project", "add", name, "--path", str(root))
    assert result.exit_code == 0, result.output
    return data


def test_paths(runner, tmp_path):
    result, data = _invoke(runner, "paths")
    assert result.exit_code == 0
    assert data["db_path"] == str(tmp_path / "data" / "ops.db")
    assert data["log_path"] == str(tmp_path / "data" / "ops.log")


def test_project_add_list_show(runner, tmp_path):
    project = _add_project(runner, tmp_path)
    _, listed = _invoke(runner, "project", "list")
    assert [p["id"] for p in listed] == [project["id"]]
    _, shown = _invoke(runner, "project", "show", project["id"])
    assert shown["name"] == "demo"


def test_project_add_with_detection(runner, tmp_path):
    root = tmp_path / "scanned"
    (root / "skills").mkdir(parents=True)
    (root / ".mcp.json").write_text("{}")
    result, data = _invoke(runner, "project", "add", "scanned", "--path", str(root), "--detect")
    assert result.exit_code == 0
    assert data["type"] == "full"


def test_project_update_and_remove(runner, tmp_path):
    project = _add_project(runner, tmp_path)
    _, updated = _invoke(
        runner, "project", "update", project["id"], "--version", "2.0.0", "--metadata", '{"k": 1}'
    )
    assert updated["version"] == "2.0.0"
    assert updated["metadata"] == {"k": 1}
    _, removed = _invoke(runner, "project", "remove", project["id"])
    assert removed == {"id": project["id"], "deleted": True}


def test_project_detect_argument(runner, tmp_path):
    (tmp_path / "agents").mkdir()
    _, data = _invoke(runner, "project", "detect", str(tmp_path))
    assert data["has_agents"] == 1


def test_not_found_is_json_error(runner):
    result, data = _invoke(runner, "project", "show", "nope")
    assert result.exit_code == 1
    assert data["ok"] is False
    assert data["code"] == "NOT_FOUND"
    assert "nope" in data["error"]


def test_unknown_command_suggests(runner):
    result, data = _invoke(runner, "projct")
    assert result.exit_code != 0
    assert "Did you mean: project" in data["error"]
    assert data["code"] == "USAGE"


def test_invalid_choice_is_json_error(runner):
    result, data = _invoke(runner, "issue", "list", "--priority", "urgent")
    assert result.exit_code == 2
    assert data == {"ok": False, "error": data["error"], "code": "USAGE"}


def test_issue_commands(runner, tmp_path):
    project = _add_project(runner, tmp_path)
    _, issue = _invoke(
        runner, "issue", "add", project["id"], "Broken hook", "--priority", "high"
    )
    assert issue["priority"] == "high"
    _, listed = _invoke(runner, "issue", "list", "-p", project["id"], "--status", "open")
    assert [i["id"] for i in listed] == [issue["id"]]
    _, closed = _invoke(runner, "issue", "close", issue["id"], "Fixed in 1.0.1")
    assert closed["status"] == "closed"
    _, stats = _invoke(runner, "issue", "stats")
    assert stats["total"] == 1


def test_release_commands(runner, tmp_path):
    from plugin_ops.db import get_db
    from plugin_ops.releases import create_release

    project = _add_project(runner, tmp_path)
    release = create_release(get_db(), project_id=project["id"], version="1.0.1")

    _, tagged = _invoke(runner, "release", "tag", release["id"], "--tag", "v1.0.1")
    assert tagged["git_tag"] == "v1.0.1"
    _, latest = _invoke(runner, "release", "latest", project["id"])
    assert latest["id"] == release["id"]
    _, listed = _invoke(runner, "release", "list", project["id"])
    assert len(listed) == 1

    result, exported = _invoke(runner, "release", "export", project["id"])
    assert result.exit_code == 0
    assert exported["releases_exported"] == 1
    assert (tmp_path / "demo" / "CHANGELOG.md").exists()

    result, conflict = _invoke(runner, "release", "export", project["id"])
    assert result.exit_code == 1
    assert conflict["code"] == "CONFLICT"
    assert "CHANGELOG.md" in conflict["error"]
    result, _ = _invoke(runner, "release", "export", project["id"], "--overwrite")
    assert result.exit_code == 0


def test_health_and_runbook_commands(runner, tmp_path):
    from plugin_ops.db import get_db
    from plugin_ops.health import create_health_check
    from plugin_ops.runbooks import log_runbook_step, start_runbook

    project = _add_project(runner, tmp_path)
    conn = get_db()
    check = create_health_check(
        conn, project_id=project["id"], status="pass", score=99, checks=[], summary="ok"
    )
    execution = start_runbook(conn, project_id=project["id"], runbook_name="audit", total_steps=1)
    log_runbook_step(conn, execution["id"], name="scan", status="pass", message="clean")

    _, latest = _invoke(runner, "health", "latest", project["id"])
    assert latest["id"] == check["id"]
    _, history = _invoke(runner, "health", "list", project["id"])
    assert len(history) == 1
    _, exported = _invoke(runner, "health", "export", check["id"], "--target", "docs/HEALTH.md")
    assert exported["file_path"] == "docs/HEALTH.md"

    _, runs = _invoke(runner, "runbook", "list", "--name", "audit")
    assert [r["id"] for r in runs] == [execution["id"]]
    _, shown = _invoke(runner, "runbook", "show", execution["id"])
    assert shown["steps_completed"] == 1


def test_export_target_outside_project_is_rejected(runner, tmp_path):
    from plugin_ops.db import get_db
    from plugin_ops.releases import create_release

    project = _add_project(runner, tmp_path)
    create_release(get_db(), project_id=project["id"], version="1.0.1")
    result, data = _invoke(
        runner, "release", "export", project["id"], "--target", "../CHANGELOG.md"
    )
    assert result.exit_code == 1
    assert data["code"] == "INVALID_PARAMS"
    assert not (tmp_path / "CHANGELOG.md").exists()
