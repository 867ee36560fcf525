"""Entrypoint for the experience MCP server."""

from __future__ import annotations

import logging
import threading

from experience_mcp import __version__
from experience_mcp.app import get_app_context
from experience_mcp.config import load_settings
from experience_mcp.logging_utils import configure_logging
from experience_mcp.mcp_runtime import MCPServer
from experience_mcp.tools import register_tools


def build_server() -> MCPServer:
    """Create and configure the stdio MCP server instance."""

    settings = load_settings()

    server = MCPServer(
        name="experience-mcp",
        version=__version__,
        instructions=settings.server.instructions,
    )

    # FastMCP installs its own handlers; configure ours afterwards so they persist.
    configure_logging()

    ctx = get_app_context()
    logging.info("Initializing experience MCP server v%s", __version__)
    logging.info(
        "Contract %s loaded from %s (playbooks: %s)",
        ctx.contract.version,
        settings.contract.path,
        ", ".join(ctx.contract.playbook_ids),
    )
    if not (settings.auth.default_organization_id and settings.auth.default_user_id):
        logging.warning(
            "DEFAULT_ORGANIZATION_ID / DEFAULT_USER_ID are not set; tool calls will be rejected"
        )
    register_tools(server)
    return server


def run_entrypoint() -> None:
    """Run the server based on transport settings."""
    settings = load_settings()
    if settings.server.transport_mode == "http":
        _run_http()
        return
    get_server().run()


def _run_http() -> None:
    settings = load_settings()
    configure_logging()
    from experience_mcp.transport.http_server import create_http_app

    import uvicorn

    app = create_http_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


_server: MCPServer | None = None
_server_lock = threading.Lock()


def get_server() -> MCPServer:
    """Lazily initialise and return the module-level server instance."""
    global _server
    if _server is not None:
        return _server
    with _server_lock:
        if _server is None:
            _server = build_server()
        return _server


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
