"""Classify a plugin project from the files present in its directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypedDict

log = logging.getLogger(__name__)

MCP_MARKERS = (
    (".mcp.json",),
    ("src", "index.ts"),
    ("server.py",),
    ("src", "server.py"),
)
SETTINGS_FILE = (".claude", "settings.json")
PACKAGE_MANIFEST = ("package.json",)
PLUGIN_MANIFEST = (".claude-plugin", "plugin.json")
MANIFEST_FIELDS = ("version", "name", "description")


class DetectionResult(TypedDict):
    has_skills: int
    has_mcp: int
    has_hooks: int
    has_agents: int
    type: str
    version: str | None
    name: str | None
    description: str | None


def _read_json_object(path: Path) -> dict[str, Any] | None:
    """Best-effort JSON object read; missing or malformed files yield None."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _has_hooks(root: Path) -> bool:
    settings = _read_json_object(root.joinpath(*SETTINGS_FILE))
    if settings is None:
        return False
    hooks = settings.get("hooks")
    return isinstance(hooks, dict) and len(hooks) > 0


def _manifest_value(manifest: dict[str, Any] | None, key: str) -> str | None:
    if not manifest:
        return None
    value = manifest.get(key)
    return value if isinstance(value, str) and value else None


def classify(has_skills: bool, has_mcp: bool) -> str:
    if has_mcp and has_skills:
        return "full"
    if has_mcp:
        return "mcp"
    return "skill-only"


def detect_project(path: str | Path) -> DetectionResult:
    root = Path(path)
    has_skills = root.joinpath("skills").is_dir()
    has_mcp = any(root.joinpath(*parts).exists() for parts in MCP_MARKERS)
    has_hooks = _has_hooks(root)
    has_agents = root.joinpath("agents").is_dir()

    package = _read_json_object(root.joinpath(*PACKAGE_MANIFEST))
    plugin = _read_json_object(root.joinpath(*PLUGIN_MANIFEST))
    fields: dict[str, str | None] = {}
    for key in MANIFEST_FIELDS:
        # plugin.json only fills what package.json left unset
        fields[key] = _manifest_value(package, key) or _manifest_value(plugin, key)

    result = DetectionResult(
        has_skills=int(has_skills),
        has_mcp=int(has_mcp),
        has_hooks=int(has_hooks),
        has_agents=int(has_agents),
        type=classify(has_skills, has_mcp),
        version=fields["version"],
        name=fields["name"],
        description=fields["description"],
    )
    log.debug("Project detected", extra={"data": {"path": str(root), **result}})
    return result
