from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from starlette.testclient import TestClient

from experience_mcp.auth.api_keys import ApiKeyEntry, ApiKeyVerifier
from experience_mcp.transport.http_server import create_http_app

# sha256("test-key-123")
TEST_KEY = "test-key-123"
TEST_KEY_SHA256 = "625faa3fbbc3d2bd9d6ee7678d04cc5339cb33dc68d9b58451853d60046e226a"


@pytest.fixture
def http_context(app_context):
    app_context.verifier = ApiKeyVerifier(
        [
            ApiKeyEntry(
                key_id="test",
                key_sha256=TEST_KEY_SHA256,
                organization_id="org_http",
                user_id="user_http",
            )
        ]
    )
    app_context.settings.auth.api_keys_path = "api_keys.yaml"
    app_context.settings.server = SimpleNamespace(
        http_enable_cors=False,
        http_allowed_origins=(),
        http_allow_missing_origin=True,
    )
    with (
        patch("experience_mcp.transport.http_server.get_app_context", return_value=app_context),
        patch("experience_mcp.tools._handlers.get_app_context", return_value=app_context),
    ):
        yield app_context


@pytest.fixture
def client(http_context):
    with TestClient(create_http_app()) as test_client:
        yield test_client


def _rpc(method, params=None):
    return {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or {}}


def test_health_and_ready_skip_auth(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/ready").json() == {"status": "ready", "contractVersion": "2025-01"}


def test_ready_reports_unavailable_store(client, http_context):
    http_context.store = MagicMock()
    http_context.store.fetch_one.side_effect = RuntimeError("disk gone")

    response = client.get("/ready")
    assert response.status_code == 503


def test_missing_api_key(client):
    response = client.post("/mcp", json=_rpc("ping"))

    assert response.status_code == 401
    assert response.json()["error_code"] == "missing_api_key"
    assert "WWW-Authenticate" in response.headers


def test_invalid_api_key(client):
    response = client.post(
        "/mcp", json=_rpc("ping"), headers={"Authorization": "Bearer wrong-key"}
    )
    assert response.status_code == 401
    assert response.json()["error_code"] == "invalid_api_key"


def test_bearer_key_reaches_handler(client):
    response = client.post(
        "/mcp", json=_rpc("ping"), headers={"Authorization": f"Bearer {TEST_KEY}"}
    )
    assert response.status_code == 200
    assert response.json()["result"] == {}


def test_x_api_key_header(client):
    response = client.post("/mcp", json=_rpc("tools/list"), headers={"X-API-Key": TEST_KEY})
    assert len(response.json()["result"]["tools"]) == 4


def test_tool_calls_run_as_key_principal(client, http_context):
    response = client.post(
        "/mcp",
        json=_rpc(
            "tools/call",
            {
                "name": "experience_create",
                "arguments": {"mode": "preview", "conversationPayload": "Team offsite"},
            },
        ),
        headers={"Authorization": f"Bearer {TEST_KEY}"},
    )

    work_item_id = response.json()["result"]["structuredContent"]["workItemId"]
    item = http_context.store.get_work_item(work_item_id)
    assert item.organization_id == "org_http"
    assert item.user_id == "user_http"


def test_requires_api_key_file(app_context):
    app_context.verifier = None
    with patch("experience_mcp.transport.http_server.get_app_context", return_value=app_context):
        with pytest.raises(RuntimeError, match="AUTH_API_KEYS_PATH"):
            create_http_app()
