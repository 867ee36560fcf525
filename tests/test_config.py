from __future__ import annotations

import pytest

from experience_mcp import config


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    for key in (
        *config.ENV_KEYS.values(),
        "HTTP_ALLOWED_ORIGINS",
        "HTTP_ALLOW_MISSING_ORIGIN",
        "HTTP_ENABLE_CORS",
    ):
        monkeypatch.delenv(key, raising=False)
    config._load_settings_cached.cache_clear()
    yield monkeypatch
    config._load_settings_cached.cache_clear()


def test_split_csv_preserve_case() -> None:
    values = config._split_csv_preserve_case(" A, B ,,C ")
    assert values == ["A", "B", "C"]


def test_resolve_path_absolute_inside_project() -> None:
    root = str(config._project_root().resolve())
    absolute = f"{root}/data/test_file"
    assert config._resolve_path(absolute) == absolute


def test_resolve_path_outside_project_rejected() -> None:
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("/tmp/example")
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("../outside.sqlite")


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_INVALID", "not_a_number")
    assert config._env_int("TEST_INT_INVALID", 42) == 42
    monkeypatch.setenv("TEST_INT_INVALID", "")
    assert config._env_int("TEST_INT_INVALID", 7) == 7


def test_env_float_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_INVALID", "not_a_float")
    assert config._env_float("TEST_FLOAT_INVALID", 2.5) == 2.5


def test_env_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_BOOL", "Yes")
    assert config._env_bool("TEST_BOOL", False) is True
    monkeypatch.setenv("TEST_BOOL", "off")
    assert config._env_bool("TEST_BOOL", True) is False
    monkeypatch.delenv("TEST_BOOL")
    assert config._env_bool("TEST_BOOL", True) is True


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = config.load_settings()

    assert settings.server.transport_mode == "stdio"
    assert settings.matching.min_similarity == 0.3
    assert settings.matching.max_matches == 5
    assert settings.work_items.preview_ttl_seconds == 3600
    assert settings.auth.default_organization_id is None
    assert settings.contract.path == str(config._project_root() / "contract.yaml")
    assert settings.storage.sqlite_path.endswith("data/experience.sqlite")


def test_settings_are_cached(clean_env: pytest.MonkeyPatch) -> None:
    assert config.load_settings() is config.load_settings()


def test_environment_overrides(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("DEFAULT_ORGANIZATION_ID", " org_1 ")
    clean_env.setenv("DEFAULT_USER_ID", "user_1")
    clean_env.setenv("MATCH_MIN_SIMILARITY", "0.5")
    clean_env.setenv("WORK_ITEM_PREVIEW_TTL_SECONDS", "600")
    clean_env.setenv("HTTP_ALLOWED_ORIGINS", "https://App.example.com, https://b.example.com")
    clean_env.setenv("TRANSPORT_MODE", " STDIO ")

    settings = config.load_settings()

    assert settings.auth.default_organization_id == "org_1"
    assert settings.matching.min_similarity == 0.5
    assert settings.work_items.preview_ttl_seconds == 600
    assert settings.server.http_allowed_origins == (
        "https://App.example.com",
        "https://b.example.com",
    )
    assert settings.server.transport_mode == "stdio"


def test_out_of_range_value_is_a_configuration_error(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MATCH_MIN_SIMILARITY", "1.5")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_unknown_transport_is_a_configuration_error(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("TRANSPORT_MODE", "remote")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_http_requires_api_keys(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("TRANSPORT_MODE", "http")

    with pytest.raises(RuntimeError, match="AUTH_API_KEYS_PATH is required"):
        config.load_settings()

    config._load_settings_cached.cache_clear()
    clean_env.setenv("AUTH_API_KEYS_PATH", "./api_keys.example.yaml")
    settings = config.load_settings()
    assert settings.auth.api_keys_path == str(config._project_root() / "api_keys.example.yaml")
