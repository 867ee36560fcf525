from __future__ import annotations

from pathlib import Path

import pytest

from experience_mcp.auth.api_keys import ApiKeyVerifier, is_exempt_path
from experience_mcp.auth.context import (
    RequestContext,
    current_principal,
    principal_scope,
    resolve_principal,
)
from experience_mcp.errors import AuthorizationError

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def test_principal_scope_is_restored_on_exit() -> None:
    ctx = RequestContext(organization_id="org_1", user_id="u1")
    assert current_principal() is None

    with principal_scope(ctx) as active:
        assert active is ctx
        assert current_principal().user_id == "u1"
        assert ctx.label == "u1@org_1"

    assert current_principal() is None


def test_principal_scope_resets_after_error() -> None:
    with pytest.raises(ValueError):
        with principal_scope(RequestContext(organization_id="org_1", user_id="u1")):
            raise ValueError("boom")
    assert current_principal() is None


def test_request_ids_are_unique() -> None:
    first = RequestContext(organization_id="org_1", user_id="u1")
    second = RequestContext(organization_id="org_1", user_id="u1")
    assert first.request_id != second.request_id


def test_resolve_principal_prefers_request_context() -> None:
    with principal_scope(RequestContext(organization_id="org_http", user_id="u_http")):
        principal = resolve_principal("org_default", "u_default")
    assert principal.organization_id == "org_http"


def test_resolve_principal_falls_back_to_defaults() -> None:
    principal = resolve_principal("org_default", "u_default")
    assert (principal.organization_id, principal.user_id) == ("org_default", "u_default")

    with pytest.raises(AuthorizationError):
        resolve_principal("org_default", None)


def test_verifier_loads_example_file() -> None:
    verifier = ApiKeyVerifier.from_file(str(PROJECT_ROOT / "api_keys.example.yaml"))

    assert len(verifier) == 1
    principal = verifier.verify("demo-secret-key")
    assert principal is not None
    assert principal.key_id == "demo-key"
    assert principal.organization_id == "org_demo"
    assert verifier.verify("wrong") is None
    assert verifier.verify("") is None


def test_verifier_file_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ApiKeyVerifier.from_file(str(tmp_path / "missing.yaml"))

    broken = tmp_path / "keys.yaml"
    broken.write_text("keys:\n  - key_id: k\n    key_sha256: short\n", encoding="utf-8")
    with pytest.raises(RuntimeError, match="Invalid API key file"):
        ApiKeyVerifier.from_file(str(broken))


def test_empty_key_file(tmp_path: Path) -> None:
    empty = tmp_path / "keys.yaml"
    empty.write_text("", encoding="utf-8")
    assert len(ApiKeyVerifier.from_file(str(empty))) == 0


def test_exempt_paths() -> None:
    assert is_exempt_path("/health")
    assert is_exempt_path("/ready")
    assert not is_exempt_path("/mcp")
