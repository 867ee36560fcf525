"""One access-log line per HTTP request, tagged with the calling principal."""

from __future__ import annotations

import logging
import re
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from experience_mcp.utils.masking import redact_text

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/health", "/ready"})

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def clean_log_value(value: object) -> str:
    """Flatten control characters so a client cannot forge extra log lines."""
    return _CONTROL_CHARS.sub("_", str(value))


def format_fields(fields: dict[str, object]) -> str:
    return " ".join(f"{key}={clean_log_value(value)}" for key, value in fields.items())


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration with the principal set by authentication.

    The principal attributes are read from ``request.state`` after the inner
    middleware ran, so rejected requests log as anonymous.
    """

    def __init__(self, app: Callable, enabled: bool = True) -> None:
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        status: int = 500
        failure: str | None = None
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as exc:
            failure = redact_text(str(exc))
            raise
        finally:
            state = request.state
            fields: dict[str, object] = {
                "request_id": getattr(state, "request_id", "-"),
                "org": getattr(state, "organization_id", "-"),
                "user": getattr(state, "user_id", "anonymous"),
                "client": request.client.host if request.client else "unknown",
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": int((time.perf_counter() - started) * 1000),
            }
            if failure is None:
                logger.info("HTTP %s", format_fields(fields))
            else:
                fields["error"] = failure
                logger.error("HTTP %s", format_fields(fields))
