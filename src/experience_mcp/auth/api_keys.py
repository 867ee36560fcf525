"""API key verification and the HTTP authentication middleware."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from experience_mcp.auth.context import RequestContext, principal_scope
from experience_mcp.utils.hashing import sha256_text

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/ready"})


def is_exempt_path(path: str) -> bool:
    """Return True if the request path should bypass auth."""
    return path in EXEMPT_PATHS


class ApiKeyEntry(BaseModel):
    key_id: str
    key_sha256: str = Field(min_length=64, max_length=64)
    organization_id: str
    user_id: str

    @field_validator("key_sha256", mode="before")
    @classmethod
    def _lower_digest(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class ApiKeyFile(BaseModel):
    keys: list[ApiKeyEntry] = Field(default_factory=list)


@dataclass(frozen=True)
class Principal:
    organization_id: str
    user_id: str
    key_id: str


class ApiKeyVerifier:
    """Resolves raw API keys to principals.

    Only SHA-256 digests of keys are stored. Every entry is compared so the
    lookup time does not depend on which entry matched.
    """

    def __init__(self, entries: list[ApiKeyEntry]) -> None:
        self._entries = list(entries)

    @classmethod
    def from_file(cls, path: str) -> "ApiKeyVerifier":
        key_path = Path(path)
        if not key_path.exists():
            raise FileNotFoundError(f"API key file not found: {key_path}")
        with key_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        try:
            parsed = ApiKeyFile.model_validate(data)
        except ValidationError as exc:
            raise RuntimeError(f"Invalid API key file {key_path}: {exc}") from exc
        return cls(parsed.keys)

    def __len__(self) -> int:
        return len(self._entries)

    def verify(self, api_key: str) -> Principal | None:
        if not api_key:
            return None
        digest = sha256_text(api_key)
        found: ApiKeyEntry | None = None
        for entry in self._entries:
            if hmac.compare_digest(digest, entry.key_sha256):
                found = entry
        if found is None:
            return None
        return Principal(
            organization_id=found.organization_id,
            user_id=found.user_id,
            key_id=found.key_id,
        )


def _extract_api_key(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    header_key = request.headers.get("X-API-Key", "").strip()
    return header_key or None


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """Authenticates requests with an API key and sets the request context."""

    def __init__(self, app, verifier: ApiKeyVerifier) -> None:
        super().__init__(app)
        self._verifier = verifier

    async def dispatch(self, request: Request, call_next):
        if is_exempt_path(request.url.path) or request.method == "OPTIONS":
            return await call_next(request)

        api_key = _extract_api_key(request)
        if api_key is None:
            return self._unauthorized("Missing API key", "missing_api_key")

        principal = self._verifier.verify(api_key)
        if principal is None:
            logger.warning("Rejected request with unknown API key")
            return self._unauthorized("Invalid API key", "invalid_api_key")

        ctx = RequestContext(
            organization_id=principal.organization_id,
            user_id=principal.user_id,
            key_id=principal.key_id,
        )
        request.state.request_id = ctx.request_id
        request.state.user_id = ctx.user_id
        request.state.organization_id = ctx.organization_id

        with principal_scope(ctx):
            return await call_next(request)

    def _unauthorized(self, message: str, code: str = "unauthorized") -> JSONResponse:
        body = {"error": "unauthorized", "error_description": message, "error_code": code}
        return JSONResponse(
            body,
            status_code=401,
            headers={"WWW-Authenticate": f'Bearer error="{code}"'},
        )
