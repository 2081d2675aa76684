"""Tests for plugin_ops.api - JSON dispatch layer."""

import io
import json

import pytest

from plugin_ops.api import METHODS, dispatch, main
from plugin_ops.projects import create_project

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ok(conn, method, **params):
    result = dispatch({"method": method, "params": params}, conn=conn)
    assert result["ok"], result
    return result["data"]


def _err(conn, method, **params):
    result = dispatch({"method": method, "params": params}, conn=conn)
    assert not result["ok"], result
    return result["code"], result["error"]


def _run_main(monkeypatch, capsys, raw: str) -> dict:
    monkeypatch.setattr("sys.stdin", io.StringIO(raw))
    main()
    return json.loads(capsys.readouterr().out)


# ---------------------------------------------------------------------------
# Dispatch protocol
# ---------------------------------------------------------------------------


def test_missing_method(db_conn):
    result = dispatch({}, conn=db_conn)
    assert result == {"ok": False, "error": "Missing or invalid 'method'", "code": "INVALID_METHOD"}


def test_unknown_method(db_conn):
    result = dispatch({"method": "project.explode"}, conn=db_conn)
    assert result["code"] == "INVALID_METHOD"


def test_params_must_be_object(db_conn):
    result = dispatch({"method": "project.list", "params": [1]}, conn=db_conn)
    assert result["code"] == "INVALID_PARAMS"


def test_params_optional(db_conn):
    assert dispatch({"method": "project.list"}, conn=db_conn) == {"ok": True, "data": []}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def test_project_lifecycle(db_conn):
    created = _ok(db_conn, "project.create", name="demo", type="mcp", metadata={"a": 1})
    assert created["type"] == "mcp"
    assert created["metadata"] == {"a": 1}
    assert _ok(db_conn, "project.get", id=created["id"])["name"] == "demo"

    updated = _ok(db_conn, "project.update", id=created["id"], version="0.2.0")
    assert updated["version"] == "0.2.0"

    assert _ok(db_conn, "project.delete", id=created["id"]) == {
        "id": created["id"],
        "deleted": True,
    }
    assert _err(db_conn, "project.get", id=created["id"])[0] == "NOT_FOUND"
    assert _err(db_conn, "project.delete", id=created["id"])[0] == "NOT_FOUND"


def test_project_create_requires_name(db_conn):
    code, error = _err(db_conn, "project.create")
    assert code == "INVALID_PARAMS"
    assert "name" in error


def test_project_invalid_type(db_conn):
    assert _err(db_conn, "project.create", name="x", type="plugin")[0] == "INVALID_PARAMS"


def test_project_update_unknown_field(db_conn, project):
    code, error = _err(db_conn, "project.update", id=project["id"], created_at="x")
    assert code == "INVALID_PARAMS"
    assert "Unknown field" in error


@pytest.mark.parametrize("flag", ["0", "false", 2, []])
def test_project_flags_must_be_boolean(db_conn, project, flag):
    assert _err(db_conn, "project.create", name="x", has_mcp=flag)[0] == "INVALID_PARAMS"
    assert _err(db_conn, "project.update", id=project["id"], has_skills=flag)[0] == (
        "INVALID_PARAMS"
    )


def test_project_update_missing(db_conn):
    assert _err(db_conn, "project.update", id="nope", name="x")[0] == "NOT_FOUND"


def test_project_detect_defaults_to_project_dir(db_conn, tmp_path, monkeypatch):
    (tmp_path / "skills").mkdir()
    monkeypatch.setenv("PROJECT_DIR", str(tmp_path))
    detected = _ok(db_conn, "project.detect")
    assert detected["has_skills"] == 1
    assert detected["type"] == "skill-only"


def test_project_register(db_conn, project_dir):
    (project_dir / "server.py").write_text("")
    registered = _ok(db_conn, "project.register", path=str(project_dir))
    assert registered["type"] == "mcp"
    assert registered["name"] == "demo-plugin"


# ---------------------------------------------------------------------------
# Health / issues / releases / runbooks
# ---------------------------------------------------------------------------


def test_health_flow(db_conn, project, project_dir):
    check = _ok(
        db_conn,
        "health.create",
        project_id=project["id"],
        status="warning",
        score=70,
        checks=[{"name": "deps", "status": "warning", "message": "stale"}],
        summary="Needs work",
    )
    assert _ok(db_conn, "health.latest", project_id=project["id"])["id"] == check["id"]
    assert len(_ok(db_conn, "health.list", project_id=project["id"])) == 1
    exported = _ok(db_conn, "health.export", id=check["id"])
    assert exported["file_path"] == "HEALTH.md"
    assert (project_dir / "HEALTH.md").exists()


@pytest.mark.parametrize(
    "params",
    [
        {"status": "pass", "score": 101, "checks": [], "summary": ""},
        {"status": "pass", "score": -5, "checks": [], "summary": ""},
        {"status": "pass", "score": True, "checks": [], "summary": ""},
        {"status": "pass", "score": "high", "checks": [], "summary": ""},
        {"status": "great", "score": 50, "checks": [], "summary": ""},
        {"status": "pass", "score": 50, "checks": "none", "summary": ""},
        {"status": "pass", "score": 50, "checks": [{"name": "x"}], "summary": ""},
    ],
)
def test_health_create_validation(db_conn, project, params):
    assert _err(db_conn, "health.create", project_id=project["id"], **params)[0] == (
        "INVALID_PARAMS"
    )


def test_health_latest_none(db_conn, project):
    assert _err(db_conn, "health.latest", project_id=project["id"])[0] == "NOT_FOUND"


def test_issue_flow(db_conn, project):
    issue = _ok(
        db_conn, "issue.create", project_id=project["id"], title="Bug", priority="critical"
    )
    assert issue["priority"] == "critical"
    assert len(_ok(db_conn, "issue.list", status="open")) == 1
    closed = _ok(db_conn, "issue.close", id=issue["id"], resolution="Fixed")
    assert closed["status"] == "closed"
    stats = _ok(db_conn, "issue.stats", project_id=project["id"])
    assert stats["by_status"] == {"closed": 1}
    assert _ok(db_conn, "issue.delete", id=issue["id"])["deleted"] is True


def test_issue_invalid_filter(db_conn):
    assert _err(db_conn, "issue.list", priority="urgent")[0] == "INVALID_PARAMS"


def test_issue_close_requires_resolution(db_conn, project):
    issue = _ok(db_conn, "issue.create", project_id=project["id"], title="Bug")
    assert _err(db_conn, "issue.close", id=issue["id"])[0] == "INVALID_PARAMS"


def test_release_flow(db_conn, project, project_dir):
    release = _ok(
        db_conn,
        "release.create",
        project_id=project["id"],
        version="1.0.1",
        type="patch",
        files_bumped=["package.json"],
    )
    tagged = _ok(db_conn, "release.update", id=release["id"], git_tag="v1.0.1")
    assert tagged["git_tag"] == "v1.0.1"
    assert _ok(db_conn, "release.latest", project_id=project["id"])["id"] == release["id"]

    exported = _ok(db_conn, "release.export", project_id=project["id"])
    assert exported == {"file_path": "CHANGELOG.md", "releases_exported": 1}
    code, error = _err(db_conn, "release.export", project_id=project["id"])
    assert code == "CONFLICT"
    assert "CHANGELOG.md" in error
    assert _ok(db_conn, "release.export", project_id=project["id"], overwrite=True)


@pytest.mark.parametrize("overwrite", ["false", "0", "yes", 2])
def test_release_export_rejects_non_boolean_overwrite(db_conn, project, project_dir, overwrite):
    _ok(db_conn, "release.create", project_id=project["id"], version="1.0.1", type="patch")
    (project_dir / "CHANGELOG.md").write_text("keep me")
    code, _ = _err(db_conn, "release.export", project_id=project["id"], overwrite=overwrite)
    assert code == "INVALID_PARAMS"
    assert (project_dir / "CHANGELOG.md").read_text() == "keep me"


def test_release_export_target_must_stay_in_project(db_conn, project, tmp_path):
    _ok(db_conn, "release.create", project_id=project["id"], version="1.0.1", type="patch")
    target = str(tmp_path / "elsewhere" / "CHANGELOG.md")
    code, _ = _err(db_conn, "release.export", project_id=project["id"], target_path=target)
    assert code == "INVALID_PARAMS"


def test_release_export_not_found(db_conn, project):
    assert _err(db_conn, "release.export", project_id="nope")[0] == "NOT_FOUND"
    assert _err(db_conn, "release.export", project_id=project["id"])[0] == "NOT_FOUND"


def test_release_requires_type(db_conn, project):
    assert _err(db_conn, "release.create", project_id=project["id"], version="1")[0] == (
        "INVALID_PARAMS"
    )


def test_runbook_flow(db_conn, project):
    execution = _ok(
        db_conn, "runbook.start", project_id=project["id"], runbook_name="release", total_steps=2
    )
    _ok(db_conn, "runbook.step", id=execution["id"], name="bump", status="pass", message="ok")
    stepped = _ok(
        db_conn,
        "runbook.step",
        id=execution["id"],
        name="tag",
        status="pass",
        message="ok",
        duration_ms=12,
    )
    assert stepped["steps_completed"] == 2
    done = _ok(db_conn, "runbook.complete", id=execution["id"], status="completed")
    assert done["status"] == "completed"
    assert len(_ok(db_conn, "runbook.list", runbook_name="release")) == 1


def test_runbook_complete_rejects_running(db_conn, project):
    execution = _ok(
        db_conn, "runbook.start", project_id=project["id"], runbook_name="x", total_steps=1
    )
    assert _err(db_conn, "runbook.complete", id=execution["id"], status="running")[0] == (
        "INVALID_PARAMS"
    )


def test_runbook_step_missing_execution(db_conn):
    assert _err(db_conn, "runbook.step", id="nope", name="a", status="pass")[0] == "NOT_FOUND"


def test_views(db_conn, project):
    create_project(db_conn, name="second")
    assert len(_ok(db_conn, "view.projects")) == 2
    assert _ok(db_conn, "view.health") == []
    assert _ok(db_conn, "view.issues") == []


def test_store_constraint_maps_to_internal(db_conn):
    code, _ = _err(db_conn, "issue.create", project_id="missing-project", title="x")
    assert code == "INTERNAL"


def test_every_method_is_callable():
    assert all(callable(handler) for handler in METHODS.values())


# ---------------------------------------------------------------------------
# ops-api entry point
# ---------------------------------------------------------------------------


def test_main_round_trip(monkeypatch, capsys):
    response = _run_main(
        monkeypatch, capsys, json.dumps({"method": "project.create", "params": {"name": "cli"}})
    )
    assert response["ok"] is True
    assert response["data"]["name"] == "cli"


def test_main_empty_input(monkeypatch, capsys):
    assert _run_main(monkeypatch, capsys, "  ")["code"] == "INVALID_PARAMS"


def test_main_bad_json(monkeypatch, capsys):
    response = _run_main(monkeypatch, capsys, "{nope")
    assert response["code"] == "INVALID_PARAMS"
    assert response["error"].startswith("Invalid JSON")


def test_main_non_object(monkeypatch, capsys):
    assert _run_main(monkeypatch, capsys, "[1, 2]")["code"] == "INVALID_PARAMS"
