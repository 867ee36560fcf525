import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from starlette.datastructures import State
from starlette.requests import Request

from experience_mcp.transport.mcp_handler import MAX_BATCH_REQUESTS, handle_mcp_request


@pytest.fixture
def mock_app():
    app = MagicMock()
    app.state = State()
    app.state.http_allowed_origins = []
    app.state.http_allow_missing_origin = True
    return app


def make_request(app, method="POST", path="/mcp", headers=None, json_body=None, raw_body=None):
    scope = {"type": "http", "method": method, "path": path, "headers": [], "app": app}
    if headers:
        scope["headers"] = [(k.lower().encode(), v.encode()) for k, v in headers.items()]

    request = Request(scope)

    if json_body is not None or raw_body is not None:
        body = raw_body if raw_body is not None else json.dumps(json_body).encode()

        async def receive():
            return {"type": "http.request", "body": body, "more_body": False}

        request._receive = receive

    return request


def rpc(method, request_id=1, params=None):
    body = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    return body


@pytest.mark.asyncio
async def test_options_request(mock_app):
    response = await handle_mcp_request(make_request(mock_app, method="OPTIONS"))
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_invalid_json(mock_app):
    response = await handle_mcp_request(make_request(mock_app, raw_body=b"{invalid"))

    assert response.status_code == 400
    body = json.loads(response.body)
    assert body["error"] == {"code": -32700, "message": "Invalid JSON"}


@pytest.mark.asyncio
async def test_non_object_root_returns_invalid_request(mock_app):
    response = await handle_mcp_request(make_request(mock_app, json_body="hello"))

    assert response.status_code == 400
    assert json.loads(response.body)["error"]["code"] == -32600


@pytest.mark.asyncio
async def test_initialize_negotiates_version(mock_app):
    settings = SimpleNamespace(server=SimpleNamespace(instructions="Build experiences."))
    with patch("experience_mcp.transport.mcp_handler.load_settings", return_value=settings):
        response = await handle_mcp_request(
            make_request(
                mock_app, json_body=rpc("initialize", params={"protocolVersion": "2025-06-18"})
            )
        )

    body = json.loads(response.body)
    assert body["result"]["protocolVersion"] == "2025-06-18"
    assert body["result"]["serverInfo"]["name"] == "experience-mcp"
    assert body["result"]["instructions"] == "Build experiences."
    assert body["result"]["capabilities"] == {"tools": {"listChanged": False}}


@pytest.mark.asyncio
async def test_initialize_unknown_version_falls_back(mock_app):
    settings = SimpleNamespace(server=SimpleNamespace(instructions=""))
    with patch("experience_mcp.transport.mcp_handler.load_settings", return_value=settings):
        response = await handle_mcp_request(
            make_request(mock_app, json_body=rpc("initialize", params={"protocolVersion": "1999"}))
        )
    assert json.loads(response.body)["result"]["protocolVersion"] == "2025-11-25"


@pytest.mark.asyncio
async def test_ping(mock_app):
    response = await handle_mcp_request(make_request(mock_app, json_body=rpc("ping")))
    assert json.loads(response.body) == {"jsonrpc": "2.0", "id": 1, "result": {}}


@pytest.mark.asyncio
async def test_tools_list(mock_app):
    response = await handle_mcp_request(make_request(mock_app, json_body=rpc("tools/list")))

    tools = json.loads(response.body)["result"]["tools"]
    assert [tool["name"] for tool in tools] == [
        "experience_create",
        "connections_detect",
        "connections_execute",
        "work_item_get",
    ]
    assert tools[0]["inputSchema"]["required"] == ["mode"]


@pytest.mark.asyncio
async def test_tools_call_reports_tool_errors(mock_app, app_context):
    with patch("experience_mcp.tools._handlers.get_app_context", return_value=app_context):
        response = await handle_mcp_request(
            make_request(
                mock_app,
                json_body=rpc(
                    "tools/call",
                    params={"name": "work_item_get", "arguments": {"workItemId": "missing"}},
                ),
            )
        )

    result = json.loads(response.body)["result"]
    assert result["isError"] is True
    assert result["structuredContent"]["error"]["type"] == "NotFound"


@pytest.mark.asyncio
async def test_tools_call_success(mock_app, app_context):
    with patch("experience_mcp.tools._handlers.get_app_context", return_value=app_context):
        response = await handle_mcp_request(
            make_request(
                mock_app,
                json_body=rpc(
                    "tools/call",
                    params={
                        "name": "experience_create",
                        "arguments": {"mode": "preview", "conversationPayload": "Team offsite"},
                    },
                ),
            )
        )

    result = json.loads(response.body)["result"]
    assert result["isError"] is False
    assert result["structuredContent"]["mode"] == "preview"
    assert json.loads(result["content"][0]["text"])["workItemId"]


@pytest.mark.asyncio
async def test_tools_call_unknown_tool(mock_app):
    response = await handle_mcp_request(
        make_request(mock_app, json_body=rpc("tools/call", params={"name": "delete_everything"}))
    )
    error = json.loads(response.body)["error"]
    assert error["code"] == -32602
    assert "Unknown tool" in error["message"]


@pytest.mark.asyncio
async def test_tools_call_invalid_arguments(mock_app):
    response = await handle_mcp_request(
        make_request(
            mock_app,
            json_body=rpc("tools/call", params={"name": "work_item_get", "arguments": [1]}),
        )
    )
    assert json.loads(response.body)["error"]["code"] == -32602


@pytest.mark.asyncio
async def test_tool_handler_exception_is_internal_error(mock_app):
    with patch(
        "experience_mcp.tools._handlers.get_app_context", side_effect=RuntimeError("boom")
    ):
        response = await handle_mcp_request(
            make_request(
                mock_app,
                json_body=rpc(
                    "tools/call",
                    params={"name": "work_item_get", "arguments": {"workItemId": "x"}},
                ),
            )
        )
    error = json.loads(response.body)["error"]
    assert error == {"code": -32000, "message": "Internal tool error"}


@pytest.mark.asyncio
async def test_unknown_method(mock_app):
    response = await handle_mcp_request(make_request(mock_app, json_body=rpc("resources/list")))
    assert json.loads(response.body)["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_notification_is_accepted_without_body(mock_app):
    response = await handle_mcp_request(
        make_request(
            mock_app, json_body={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )
    )
    assert response.status_code == 202


@pytest.mark.asyncio
async def test_batch(mock_app):
    response = await handle_mcp_request(
        make_request(
            mock_app,
            json_body=[rpc("ping", 1), "junk", {"jsonrpc": "2.0", "method": "notifications/x"}],
        )
    )

    body = json.loads(response.body)
    assert body[0] == {"jsonrpc": "2.0", "id": 1, "result": {}}
    assert body[1]["error"]["code"] == -32600
    assert len(body) == 2


@pytest.mark.asyncio
async def test_batch_too_large(mock_app):
    payload = [rpc("ping", i) for i in range(MAX_BATCH_REQUESTS + 1)]
    response = await handle_mcp_request(make_request(mock_app, json_body=payload))

    assert response.status_code == 400
    assert "too large" in json.loads(response.body)["error"]["message"]


@pytest.mark.asyncio
async def test_empty_batch(mock_app):
    response = await handle_mcp_request(make_request(mock_app, json_body=[]))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_origin_not_allowed(mock_app):
    mock_app.state.http_allowed_origins = ["https://app.example.com"]
    response = await handle_mcp_request(
        make_request(mock_app, headers={"Origin": "https://evil.example.com"}, json_body=rpc("ping"))
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_origin_can_be_required(mock_app):
    mock_app.state.http_allowed_origins = ["https://app.example.com"]
    mock_app.state.http_allow_missing_origin = False
    response = await handle_mcp_request(make_request(mock_app, json_body=rpc("ping")))
    assert response.status_code == 403

    allowed = await handle_mcp_request(
        make_request(mock_app, headers={"Origin": "https://app.example.com"}, json_body=rpc("ping"))
    )
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_protocol_version_header_is_echoed(mock_app):
    response = await handle_mcp_request(
        make_request(
            mock_app, headers={"MCP-Protocol-Version": "2025-06-18"}, json_body=rpc("ping")
        )
    )
    assert response.headers["MCP-Protocol-Version"] == "2025-06-18"
