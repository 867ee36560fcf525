"""Configuration management for the experience MCP server."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/experience.sqlite")
    sqlite_wal: bool = Field(default=True)


class ContractSettings(BaseModel):
    path: str = Field(default="./contract.yaml")


class AuthSettings(BaseModel):
    """Authentication settings.

    HTTP requests authenticate with API keys listed (as SHA-256 digests) in
    the file at api_keys_path. stdio sessions run as the default principal.
    """

    api_keys_path: str | None = Field(
        default=None,
        description="Path to the API key file used by the HTTP transport",
    )
    default_organization_id: str | None = Field(default=None)
    default_user_id: str | None = Field(default=None)


class MatchingSettings(BaseModel):
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    max_matches: int = Field(default=5, ge=1, le=50)


class WorkItemSettings(BaseModel):
    preview_ttl_seconds: int = Field(default=3600, ge=60, le=7 * 86400)


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    instructions: str = Field(
        default=(
            "Use these tools to create event experiences and to connect generated "
            "builder apps to organization records. Every write is two-phase: call "
            "with mode='preview', show the preview to the user, then call again with "
            "mode='execute' and the returned workItemId once the user approves."
        )
    )
    transport_mode: Literal["stdio", "http"] = Field(default="stdio")
    http_allowed_origins: tuple[str, ...] = Field(default=())
    http_allow_missing_origin: bool = Field(default=True)
    http_enable_cors: bool = Field(default=False)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    contract: ContractSettings = Field(default_factory=ContractSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    work_items: WorkItemSettings = Field(default_factory=WorkItemSettings)


ENV_KEYS = {
    "host": "MCP_HOST",
    "port": "MCP_PORT",
    "instructions": "MCP_INSTRUCTIONS",
    "transport_mode": "TRANSPORT_MODE",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "contract_path": "CONTRACT_PATH",
    "api_keys_path": "AUTH_API_KEYS_PATH",
    "default_organization_id": "DEFAULT_ORGANIZATION_ID",
    "default_user_id": "DEFAULT_USER_ID",
    "min_similarity": "MATCH_MIN_SIMILARITY",
    "max_matches": "MATCH_MAX_MATCHES",
    "preview_ttl_seconds": "WORK_ITEM_PREVIEW_TTL_SECONDS",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_optional(key: str) -> str | None:
    value = os.getenv(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = _env_optional(ENV_KEYS["log_file"])
    api_keys_env = _env_optional(ENV_KEYS["api_keys_path"])

    try:
        settings_data: dict[str, object] = {
            "server": {
                "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
                "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
                "instructions": os.getenv(
                    ENV_KEYS["instructions"], ServerSettings().instructions
                ),
                "transport_mode": os.getenv(
                    ENV_KEYS["transport_mode"], ServerSettings().transport_mode
                )
                .strip()
                .lower(),
                "http_allowed_origins": tuple(
                    _split_csv_preserve_case(os.getenv("HTTP_ALLOWED_ORIGINS"))
                ),
                "http_allow_missing_origin": _env_bool(
                    "HTTP_ALLOW_MISSING_ORIGIN",
                    ServerSettings().http_allow_missing_origin,
                ),
                "http_enable_cors": _env_bool(
                    "HTTP_ENABLE_CORS",
                    ServerSettings().http_enable_cors,
                ),
            },
            "logging": {
                "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
                "file": _resolve_path(log_file_env) if log_file_env else None,
            },
            "storage": {
                "sqlite_path": _resolve_path(
                    os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
                ),
                "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
            },
            "contract": {
                "path": _resolve_path(
                    os.getenv(ENV_KEYS["contract_path"], ContractSettings().path)
                ),
            },
            "auth": {
                "api_keys_path": _resolve_path(api_keys_env) if api_keys_env else None,
                "default_organization_id": _env_optional(ENV_KEYS["default_organization_id"]),
                "default_user_id": _env_optional(ENV_KEYS["default_user_id"]),
            },
            "matching": {
                "min_similarity": _env_float(
                    ENV_KEYS["min_similarity"], MatchingSettings().min_similarity
                ),
                "max_matches": _env_int(ENV_KEYS["max_matches"], MatchingSettings().max_matches),
            },
            "work_items": {
                "preview_ttl_seconds": _env_int(
                    ENV_KEYS["preview_ttl_seconds"], WorkItemSettings().preview_ttl_seconds
                ),
            },
        }
        settings = Settings.model_validate(settings_data)
    except (ValidationError, ValueError) as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.server.transport_mode == "http" and not settings.auth.api_keys_path:
        raise RuntimeError(
            "Invalid configuration: AUTH_API_KEYS_PATH is required for TRANSPORT_MODE=http"
        )

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
