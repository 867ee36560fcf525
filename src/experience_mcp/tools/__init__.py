"""Tool registration helpers.

This module registers the experience tools:
- experience_create: preview / execute a playbook run
- connections_detect: detect connectable items in a builder app
- connections_execute: preview / execute connection decisions
- work_item_get: read a work item
"""

from __future__ import annotations

from experience_mcp.logging_utils import get_logger
from experience_mcp.mcp_runtime import MCPServer, ToolSpec
from experience_mcp.tools._handlers import (
    create_experience,
    detect_app_connections,
    execute_connections,
    get_work_item,
)
from experience_mcp.tools._schemas import make_tool_specs

__all__ = ["get_tool_registry", "get_tool_specs", "register_tools"]

_TOOL_SPECS = make_tool_specs(
    create_experience,
    detect_app_connections,
    execute_connections,
    get_work_item,
)


def get_tool_specs() -> list[ToolSpec]:
    return list(_TOOL_SPECS)


def get_tool_registry() -> dict[str, ToolSpec]:
    return {tool.name: tool for tool in get_tool_specs()}


def register_tools(server: MCPServer) -> None:
    """Register the experience tools with the MCP server."""
    logger = get_logger(__name__)
    for tool in get_tool_specs():
        server.add_tool(tool)
    logger.info("Registered %d tools: %s", len(_TOOL_SPECS), ", ".join(server.tool_names))
