"""plugin-ops MCP server - expose maintenance tracking to AI assistants over stdio."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from plugin_ops import tools
from plugin_ops.api import dispatch
from plugin_ops.db import close_db
from plugin_ops.logs import configure_logging

log = logging.getLogger(__name__)

app = Server("ops")

RESOURCES: dict[str, tuple[str, str, str]] = {
    # uri: (name, description, api method)
    "ops://projects": ("projects", "All registered plugin projects", "view.projects"),
    "ops://health": ("health", "Latest health check for each project", "view.health"),
    "ops://issues": ("issues", "All open issues across projects", "view.issues"),
}


class ToolCallError(Exception):
    """A tool call failed; the SDK reports the message as an error result."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def handle_tool_call(name: str, arguments: dict | None) -> list[TextContent]:
    method = tools.TOOL_METHODS.get(name)
    if method is None:
        raise ToolCallError(f"Unknown tool: {name}", "INVALID_METHOD")

    response = dispatch({"method": method, "params": arguments or {}})
    if not response["ok"]:
        log.warning(
            "Tool call failed",
            extra={"data": {"tool": name, "code": response["code"], "error": response["error"]}},
        )
        raise ToolCallError(response["error"], response["code"])

    data = response["data"]
    if method.endswith(".delete"):
        return [TextContent(type="text", text="Deleted")]
    return [TextContent(type="text", text=_to_json(data))]


@app.list_tools()
async def list_tools() -> list[Tool]:
    return tools.get_tools()


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    log.debug("Tool call", extra={"data": {"tool": name}})
    return handle_tool_call(name, arguments)


@app.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(
            uri=AnyUrl(uri),
            name=name,
            description=description,
            mimeType="application/json",
        )
        for uri, (name, description, _) in RESOURCES.items()
    ]


def read_resource_text(uri: str) -> str:
    entry = RESOURCES.get(uri)
    if entry is None:
        raise ValueError(f"Unknown resource: {uri}")
    response = dispatch({"method": entry[2]})
    if not response["ok"]:
        raise ToolCallError(response["error"], response["code"])
    return _to_json(response["data"])


@app.read_resource()
async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
    text = read_resource_text(str(uri).rstrip("/"))
    return [ReadResourceContents(content=text, mime_type="application/json")]


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run() -> None:
    # stdout carries the MCP protocol; diagnostics go to stderr and the log file.
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    configure_logging()
    log.info("MCP server starting")
    try:
        asyncio.run(main())
    finally:
        close_db()


if __name__ == "__main__":
    run()
