"""JSON-RPC endpoint serving the experience tools over HTTP.

Requests are either a single JSON-RPC object or a batch. Notifications
(no ``id``) are accepted with 202 and never answered. Tool failures that the
tool layer reports as data come back as a normal result with ``isError``
set; only protocol problems become JSON-RPC errors.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from experience_mcp import __version__
from experience_mcp.config import load_settings
from experience_mcp.mcp_runtime import ToolResult
from experience_mcp.tools import get_tool_registry
from experience_mcp.utils.masking import redact_sensitive_fields
from experience_mcp.utils.serialization import json_default

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2025-06-18", "2025-11-25")
DEFAULT_PROTOCOL_VERSION = "2025-03-26"
MAX_BATCH_REQUESTS = 50

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

JsonObject = dict[str, object]
MethodHandler = Callable[[JsonObject], Awaitable[JsonObject]]


class RpcError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


# ---------------------------------------------------------------------------
# Methods
# ---------------------------------------------------------------------------

async def _initialize(params: JsonObject) -> JsonObject:
    requested = params.get("protocolVersion")
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        negotiated = requested
    else:
        negotiated = SUPPORTED_PROTOCOL_VERSIONS[-1]
    return {
        "protocolVersion": negotiated,
        "serverInfo": {"name": "experience-mcp", "version": __version__},
        "instructions": load_settings().server.instructions,
        "capabilities": {"tools": {"listChanged": False}},
    }


async def _ping(params: JsonObject) -> JsonObject:
    return {}


async def _list_tools(params: JsonObject) -> JsonObject:
    return {
        "tools": [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.input_schema,
            }
            for tool in get_tool_registry().values()
        ]
    }


async def _call_tool(params: JsonObject) -> JsonObject:
    name = params.get("name")
    if not isinstance(name, str):
        raise RpcError(INVALID_PARAMS, "Invalid tool name")
    arguments = params.get("arguments", {})
    if not isinstance(arguments, dict):
        raise RpcError(INVALID_PARAMS, "Invalid tool arguments")
    tool = get_tool_registry().get(name)
    if tool is None:
        raise RpcError(INVALID_PARAMS, f"Unknown tool: {name[:128]}")

    logger.debug("tools/call %s arguments=%s", name, redact_sensitive_fields(arguments))
    try:
        result = tool.handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, ToolResult):
            raise TypeError("Tool handler did not return ToolResult")
    except (KeyboardInterrupt, SystemExit):
        raise
    except Exception:
        logger.exception("Tool handler error: %s", name)
        raise RpcError(SERVER_ERROR, "Internal tool error") from None

    structured = result.structured_content
    return {
        "content": result.content,
        "structuredContent": structured,
        "isError": isinstance(structured, dict) and "error" in structured,
    }


_METHODS: dict[str, MethodHandler] = {
    "initialize": _initialize,
    "ping": _ping,
    "tools/list": _list_tools,
    "tools/call": _call_tool,
}


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

async def handle_mcp_request(request: Request) -> Response:
    version = _protocol_version(request)
    headers = {"MCP-Protocol-Version": version}

    rejected = _check_origin(request)
    if rejected is not None:
        return _error_response(None, rejected, status_code=403, code=SERVER_ERROR, headers=headers)

    if request.method == "OPTIONS":
        return Response(status_code=204)

    try:
        payload = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response(None, "Invalid JSON", code=PARSE_ERROR, headers=headers)

    if isinstance(payload, dict):
        reply = await _dispatch(payload)
        if reply is None:
            return Response(status_code=202, headers=headers)
        return _json_response(reply, headers=headers)

    if not isinstance(payload, list):
        return _error_response(None, "Invalid JSON-RPC request", code=INVALID_REQUEST, headers=headers)
    if not payload:
        return _error_response(
            None, "Invalid JSON-RPC batch request", code=INVALID_REQUEST, headers=headers
        )
    if len(payload) > MAX_BATCH_REQUESTS:
        return _error_response(
            None,
            f"Batch request too large (max {MAX_BATCH_REQUESTS})",
            code=INVALID_REQUEST,
            headers=headers,
        )

    replies = []
    for entry in payload:
        if not isinstance(entry, dict):
            replies.append(_error_body(None, "Invalid JSON-RPC batch entry", INVALID_REQUEST))
            continue
        reply = await _dispatch(entry)
        if reply is not None:
            replies.append(reply)
    if not replies:
        return Response(status_code=202, headers=headers)
    return _json_response(replies, headers=headers)


async def _dispatch(message: JsonObject) -> JsonObject | None:
    """Answer one JSON-RPC message; None for notifications and client responses."""
    request_id = message.get("id")
    method = message.get("method")
    if request_id is None:
        return None
    if method is None and ("result" in message or "error" in message):
        return None
    if not isinstance(method, str):
        return _error_body(request_id, "Invalid JSON-RPC method", INVALID_REQUEST)

    handler = _METHODS.get(method)
    if handler is None:
        return _error_body(request_id, f"Unsupported method: {method[:256]}", METHOD_NOT_FOUND)

    params = message.get("params")
    try:
        result = await handler(params if isinstance(params, dict) else {})
    except RpcError as exc:
        return _error_body(request_id, exc.message, exc.code)
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error_body(request_id: object, message: str, code: int = SERVER_ERROR) -> JsonObject:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _error_response(
    request_id: object,
    message: str,
    status_code: int = 400,
    code: int = SERVER_ERROR,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        _error_body(request_id, message, code),
        status_code=status_code,
        headers=headers or {"MCP-Protocol-Version": DEFAULT_PROTOCOL_VERSION},
    )


def _json_response(payload: object, headers: dict[str, str] | None = None) -> Response:
    body = json.dumps(payload, default=json_default, ensure_ascii=False)
    return Response(content=body, media_type="application/json", headers=headers)


def _protocol_version(request: Request) -> str:
    version = request.headers.get("MCP-Protocol-Version")
    if version in SUPPORTED_PROTOCOL_VERSIONS:
        return version
    return DEFAULT_PROTOCOL_VERSION


def _check_origin(request: Request) -> str | None:
    """Return a rejection message when the Origin header is not acceptable."""
    allowed = tuple(getattr(request.app.state, "http_allowed_origins", ()))
    allow_missing = bool(getattr(request.app.state, "http_allow_missing_origin", True))
    origin = request.headers.get("origin")
    if not origin:
        if allowed and not allow_missing:
            return "Missing Origin header"
        return None
    if not allowed or "*" in allowed or origin in allowed:
        return None
    return "Origin not allowed"
