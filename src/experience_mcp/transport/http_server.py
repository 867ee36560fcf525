"""Starlette HTTP server assembly with API key authentication."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from experience_mcp.app import get_app_context
from experience_mcp.auth.api_keys import ApiKeyAuthMiddleware
from experience_mcp.middleware import RequestLogMiddleware
from experience_mcp.transport.mcp_handler import handle_mcp_request

logger = logging.getLogger(__name__)


def create_http_app() -> Starlette:
    """Create the HTTP MCP server application."""
    ctx = get_app_context()
    settings = ctx.settings
    if ctx.verifier is None:
        raise RuntimeError("AUTH_API_KEYS_PATH is required for TRANSPORT_MODE=http")
    if len(ctx.verifier) == 0:
        logger.warning(
            "API key file %s has no keys; every request will be rejected",
            settings.auth.api_keys_path,
        )

    # Outermost first: CORS, RequestLog, ApiKeyAuth. Preflights never reach auth.
    middleware: list[Middleware] = [
        Middleware(RequestLogMiddleware),
        Middleware(ApiKeyAuthMiddleware, verifier=ctx.verifier),
    ]

    if settings.server.http_enable_cors and settings.server.http_allowed_origins:
        from starlette.middleware.cors import CORSMiddleware

        middleware.insert(
            0,
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.server.http_allowed_origins),
                allow_methods=["POST", "GET", "OPTIONS"],
                allow_headers=[
                    "Authorization",
                    "X-API-Key",
                    "Content-Type",
                    "Accept",
                    "MCP-Protocol-Version",
                ],
            ),
        )

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy"})

    async def ready_handler(request: Request) -> Response:
        try:
            await asyncio.to_thread(ctx.store.fetch_one, "SELECT 1", ())
        except Exception:
            logger.exception("Readiness check failed")
            return JSONResponse({"status": "unavailable"}, status_code=503)
        return JSONResponse(
            {"status": "ready", "contractVersion": ctx.contract.version}
        )

    routes = [
        Route("/mcp", endpoint=handle_mcp_request, methods=["POST", "OPTIONS"]),
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/ready", endpoint=ready_handler, methods=["GET"]),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(
            "Starting HTTP server (contract %s, %d API keys)",
            ctx.contract.version,
            len(ctx.verifier),
        )
        try:
            yield
        finally:
            logger.info("Stopping HTTP server...")
            ctx.store.close()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.http_allowed_origins = tuple(settings.server.http_allowed_origins)
    app.state.http_allow_missing_origin = settings.server.http_allow_missing_origin
    return app
