"""Shared helper functions for the experience tools."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable

from experience_mcp.app import AppContext
from experience_mcp.auth.context import RequestContext, resolve_principal
from experience_mcp.errors import ExperienceError, InputValidationError
from experience_mcp.mcp_runtime import ToolResult
from experience_mcp.utils.jsonschema import (
    format_structured_errors,
    validate_payload,
    validate_payload_structured,
)
from experience_mcp.utils.serialization import json_default

logger = logging.getLogger(__name__)

_HINTS = {
    "InputValidationError": "Fix the listed problems and call the tool again.",
    "NotFound": "Check the id; records from other organizations are not visible.",
    "Unauthorized": "Authenticate with a valid API key or configure a default principal.",
    "WorkItemState": "Create a new preview with mode='preview' and execute its workItemId.",
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def result_from_payload(payload: dict[str, object]) -> ToolResult:
    """Wrap a response payload as both structured content and an indented text block."""
    text = json.dumps(payload, ensure_ascii=True, indent=2, default=json_default)
    return ToolResult(content=[{"type": "text", "text": text}], structured_content=payload)


# ---------------------------------------------------------------------------
# Error response
# ---------------------------------------------------------------------------

def _error_response(
    error_type: str,
    message: str,
    hint: str | None = None,
    reasons: list[str] | None = None,
    retryable: bool = False,
) -> ToolResult:
    """Create a standardized error response."""
    error: dict[str, object] = {
        "type": error_type,
        "message": message,
    }
    if hint:
        error["hint"] = hint
    if reasons:
        error["reasons"] = reasons
    error["retryable"] = retryable

    return result_from_payload({"error": error})


def _from_exception(exc: ExperienceError) -> ToolResult:
    return _error_response(
        exc.error_type,
        exc.message,
        hint=_HINTS.get(exc.error_type),
        reasons=exc.reasons,
        retryable=exc.retryable,
    )


def translates_errors(
    handler: Callable[[dict[str, object]], Awaitable[ToolResult]],
) -> Callable[[dict[str, object]], Awaitable[ToolResult]]:
    """Report ExperienceError as a tool error payload; anything else propagates."""

    @functools.wraps(handler)
    async def wrapper(payload: dict[str, object]) -> ToolResult:
        try:
            return await handler(payload)
        except ExperienceError as exc:
            logger.info("%s rejected: %s (%s)", handler.__name__, exc.message, exc.error_type)
            return _from_exception(exc)

    return wrapper


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def require_valid(schema: dict[str, object], payload: dict[str, object]) -> None:
    """Raise InputValidationError listing every schema violation in the payload."""
    problems = validate_payload(schema, payload)
    if problems:
        raise InputValidationError("Input validation failed", reasons=problems)


def _schema_error(schema: dict[str, object], payload: dict[str, object]) -> ToolResult | None:
    """Validate tool arguments; return an error result or None when valid."""
    validation_errors = validate_payload_structured(schema, payload)
    if not validation_errors:
        return None
    details = format_structured_errors(validation_errors)
    return result_from_payload(
        {
            "error": {
                "type": "InputValidationError",
                "message": "Tool arguments failed validation",
                **{key: value for key, value in details.items() if value is not None},
            }
        }
    )


def _optional_str(payload: dict[str, object], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------

def _principal(ctx: AppContext) -> RequestContext:
    return resolve_principal(
        ctx.settings.auth.default_organization_id,
        ctx.settings.auth.default_user_id,
    )
