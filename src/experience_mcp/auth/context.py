"""The principal a request runs as.

Every store read and write made while serving a tool call is scoped to the
principal's organization. HTTP requests get their principal from the API key
middleware; stdio sessions fall back to the configured default principal.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

from experience_mcp.errors import AuthorizationError


def _new_request_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass(frozen=True)
class RequestContext:
    organization_id: str
    user_id: str
    key_id: str | None = None
    request_id: str = field(default_factory=_new_request_id)

    @property
    def label(self) -> str:
        return f"{self.user_id}@{self.organization_id}"


_current: ContextVar[RequestContext | None] = ContextVar("experience_principal", default=None)


@contextmanager
def principal_scope(ctx: RequestContext) -> Iterator[RequestContext]:
    """Make ``ctx`` the active principal for the duration of the block."""
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def current_principal() -> RequestContext | None:
    return _current.get()


def resolve_principal(
    default_organization_id: str | None,
    default_user_id: str | None,
) -> RequestContext:
    """Active principal, else one built from the configured defaults."""
    ctx = _current.get()
    if ctx is not None:
        return ctx
    if not (default_organization_id and default_user_id):
        raise AuthorizationError(
            "No authenticated principal. Configure DEFAULT_ORGANIZATION_ID and "
            "DEFAULT_USER_ID for stdio mode or send an API key over HTTP."
        )
    return RequestContext(organization_id=default_organization_id, user_id=default_user_id)
