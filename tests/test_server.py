"""Tests for the MCP server handlers."""

import json

import pytest

from plugin_ops import server
from plugin_ops.server import ToolCallError, handle_tool_call, read_resource_text


def _json(result):
    (content,) = result
    assert content.type == "text"
    return json.loads(content.text)


def test_create_and_get_project():
    created = _json(handle_tool_call("ops_project_create", {"name": "demo"}))
    fetched = _json(handle_tool_call("ops_project_get", {"id": created["id"]}))
    assert fetched == created


def test_delete_returns_plain_text():
    created = _json(handle_tool_call("ops_project_create", {"name": "demo"}))
    (content,) = handle_tool_call("ops_project_delete", {"id": created["id"]})
    assert content.text == "Deleted"


def test_not_found_raises():
    with pytest.raises(ToolCallError) as excinfo:
        handle_tool_call("ops_issue_get", {"id": "nope"})
    assert excinfo.value.code == "NOT_FOUND"
    assert "not found" in str(excinfo.value)


def test_unknown_tool():
    with pytest.raises(ToolCallError, match="Unknown tool"):
        handle_tool_call("ops_project_explode", {})


def test_missing_arguments_treated_as_empty():
    assert _json(handle_tool_call("ops_project_list", None)) == []


def test_resources_serve_views():
    created = _json(handle_tool_call("ops_project_create", {"name": "demo"}))
    _json(
        handle_tool_call(
            "ops_issue_create", {"project_id": created["id"], "title": "Open thing"}
        )
    )
    projects = json.loads(read_resource_text("ops://projects"))
    issues = json.loads(read_resource_text("ops://issues"))
    assert [p["name"] for p in projects] == ["demo"]
    assert [i["title"] for i in issues] == ["Open thing"]
    assert json.loads(read_resource_text("ops://health")) == []


def test_unknown_resource():
    with pytest.raises(ValueError, match="Unknown resource"):
        read_resource_text("ops://nothing")


@pytest.mark.asyncio
async def test_list_tools_and_resources():
    tools = await server.list_tools()
    assert any(tool.name == "ops_runbook_complete" for tool in tools)
    resources = await server.list_resources()
    assert {str(r.uri).rstrip("/") for r in resources} == set(server.RESOURCES)


@pytest.mark.asyncio
async def test_read_resource_contents():
    from pydantic import AnyUrl

    (contents,) = await server.read_resource(AnyUrl("ops://projects"))
    assert contents.mime_type == "application/json"
    assert json.loads(contents.content) == []
