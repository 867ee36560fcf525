"""Authentication: API key verification and the request-scoped principal."""

from experience_mcp.auth.api_keys import ApiKeyAuthMiddleware, ApiKeyVerifier, Principal
from experience_mcp.auth.context import (
    RequestContext,
    current_principal,
    principal_scope,
    resolve_principal,
)

__all__ = [
    "ApiKeyAuthMiddleware",
    "ApiKeyVerifier",
    "Principal",
    "RequestContext",
    "current_principal",
    "principal_scope",
    "resolve_principal",
]
