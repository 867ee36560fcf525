"""Tool handler functions: experience_create, connections_detect,
connections_execute and work_item_get.

Write tools follow a two-phase protocol. mode='preview' computes the outcome
and snapshots it in a work item without writing any record. mode='execute'
claims the work item and replays the snapshot, so what runs is exactly what
the user approved.
"""

from __future__ import annotations

from typing import Any

from experience_mcp.app import AppContext, get_app_context
from experience_mcp.auth.context import RequestContext
from experience_mcp.connections.models import CREATE, LINK, SKIP, PlannedItem
from experience_mcp.detection.service import detect_app_items, detect_connections
from experience_mcp.errors import ExperienceError, InputValidationError
from experience_mcp.mcp_runtime import ToolResult
from experience_mcp.playbooks.drafts import (
    DerivationResult,
    ExperienceDraft,
    UnsupportedPlaybookItem,
)
from experience_mcp.playbooks.runtime import (
    CREATED,
    FAILED,
    REUSED,
    RunOptions,
    payload_digest,
)
from experience_mcp.store.models import COMPLETED
from experience_mcp.store.models import FAILED as WORK_ITEM_FAILED
from experience_mcp.tools._helpers import (
    _error_response,
    _optional_str,
    _principal,
    _schema_error,
    require_valid,
    result_from_payload,
    translates_errors,
)
from experience_mcp.tools._schemas import (
    CONNECTIONS_DETECT_SCHEMA,
    CONNECTIONS_EXECUTE_SCHEMA,
    EXPERIENCE_CREATE_SCHEMA,
    WORK_ITEM_GET_SCHEMA,
)

EXPERIENCE_WORK_ITEM = "experience_create"
CONNECTIONS_WORK_ITEM = "connections_execute"


def _require_work_item_id(payload: dict[str, object]) -> str:
    work_item_id = _optional_str(payload, "workItemId")
    if work_item_id is None:
        raise InputValidationError(
            "workItemId is required for mode='execute'",
            reasons=["Call with mode='preview' first and pass the returned workItemId."],
        )
    return work_item_id


def _snapshot(preview_data: list[dict[str, object]], work_item_id: str) -> dict[str, Any]:
    if not preview_data or not isinstance(preview_data[0], dict):
        raise InputValidationError(f"Work item {work_item_id} has no preview snapshot")
    return dict(preview_data[0])


# ---------------------------------------------------------------------------
# experience_create
# ---------------------------------------------------------------------------

@translates_errors
async def create_experience(payload: dict[str, object]) -> ToolResult:
    """Preview or execute a playbook run."""
    invalid = _schema_error(EXPERIENCE_CREATE_SCHEMA, payload)
    if invalid is not None:
        return invalid
    ctx = get_app_context()
    principal = _principal(ctx)
    if payload["mode"] == "preview":
        return await _preview_experience(ctx, principal, payload)
    return await _execute_experience(ctx, principal, payload)


async def _preview_experience(
    ctx: AppContext,
    principal: RequestContext,
    payload: dict[str, object],
) -> ToolResult:
    playbook = (_optional_str(payload, "playbook") or "event").lower()
    rejection = ctx.runtime.check_playbook(playbook)
    if rejection is not None:
        return result_from_payload(rejection)

    options = RunOptions.from_dict(payload.get("options"))  # type: ignore[arg-type]
    conversation_payload = payload.get("conversationPayload")
    conversation_id = _optional_str(payload, "conversationId")
    derived = ctx.runtime.derive(playbook, conversation_payload)
    digest = payload_digest(conversation_payload)

    snapshot = {
        "playbook": playbook,
        "idempotencyKey": _optional_str(payload, "idempotencyKey"),
        "conversationId": conversation_id,
        "options": options.to_dict(),
        "payloadDigest": digest,
        "draft": derived.draft.to_dict(),
        "unsupportedItems": [item.to_dict() for item in derived.unsupported_items],
        "detectedItemCount": derived.detected_item_count,
    }
    work_item_id = await ctx.tracker.create_work_item(
        principal.organization_id,
        principal.user_id,
        conversation_id,
        EXPERIENCE_WORK_ITEM,
        derived.draft.experience_name,
        [snapshot],
    )
    return result_from_payload(
        {
            "mode": "preview",
            "workItemId": work_item_id,
            "playbook": playbook,
            "contractVersion": ctx.contract.version,
            "preview": snapshot,
            "expiresInSeconds": ctx.settings.work_items.preview_ttl_seconds,
            "nextStep": (
                "Show the draft to the user. When they approve, call experience_create "
                f"with mode='execute' and workItemId='{work_item_id}'."
            ),
        }
    )


async def _execute_experience(
    ctx: AppContext,
    principal: RequestContext,
    payload: dict[str, object],
) -> ToolResult:
    work_item_id = _require_work_item_id(payload)
    item = await ctx.tracker.get_work_item(principal.organization_id, work_item_id)
    snapshot = _snapshot(item.preview_data, work_item_id)

    if "conversationPayload" in payload:
        resent = payload_digest(payload.get("conversationPayload"))
        if resent != snapshot.get("payloadDigest"):
            return _error_response(
                "WorkItemMismatch",
                "conversationPayload differs from the payload that was previewed",
                hint="Create a new preview for the changed payload, or omit conversationPayload.",
            )

    await ctx.tracker.approve(
        work_item_id,
        principal.organization_id,
        principal.user_id,
        expected_type=EXPERIENCE_WORK_ITEM,
    )
    derived = DerivationResult(
        draft=ExperienceDraft.from_dict(snapshot["draft"]),
        unsupported_items=[
            UnsupportedPlaybookItem.from_dict(entry)
            for entry in snapshot.get("unsupportedItems") or []
        ],
        detected_item_count=int(snapshot.get("detectedItemCount") or 0),
    )
    try:
        response = await ctx.runtime.create_experience(
            principal.organization_id,
            principal.user_id,
            snapshot["playbook"],
            conversation_id=snapshot.get("conversationId"),
            idempotency_key=snapshot.get("idempotencyKey"),
            options=snapshot.get("options"),
            derived=derived,
            digest=snapshot.get("payloadDigest"),
        )
    except Exception as exc:
        await ctx.tracker.update_work_item(
            work_item_id,
            WORK_ITEM_FAILED,
            results={"success": False, "error": str(exc)},
        )
        raise

    steps = response.get("stepLog") or []
    progress = {
        "total": len(steps),
        "completed": sum(1 for step in steps if step["status"] in (CREATED, REUSED)),
        "failed": sum(1 for step in steps if step["status"] == FAILED),
    }
    status = COMPLETED if response.get("success") else WORK_ITEM_FAILED
    updated = await ctx.tracker.update_work_item(
        work_item_id, status, results=response, progress=progress
    )
    return result_from_payload(
        {
            "mode": "execute",
            "workItemId": work_item_id,
            "workItemStatus": updated.status,
            **response,
        }
    )


# ---------------------------------------------------------------------------
# connections_detect / connections_execute
# ---------------------------------------------------------------------------

@translates_errors
async def detect_app_connections(payload: dict[str, object]) -> ToolResult:
    """Detect connectable items in a builder app. Never writes."""
    require_valid(CONNECTIONS_DETECT_SCHEMA, payload)
    ctx = get_app_context()
    principal = _principal(ctx)
    detection = await detect_connections(
        ctx.store,
        principal.organization_id,
        str(payload["appId"]),
        ctx.settings.matching.min_similarity,
        ctx.settings.matching.max_matches,
    )
    return result_from_payload(detection)


@translates_errors
async def execute_connections(payload: dict[str, object]) -> ToolResult:
    """Preview or execute a batch of connection decisions."""
    invalid = _schema_error(CONNECTIONS_EXECUTE_SCHEMA, payload)
    if invalid is not None:
        return invalid
    ctx = get_app_context()
    principal = _principal(ctx)
    if payload["mode"] == "preview":
        return await _preview_connections(ctx, principal, payload)
    return await _execute_connections(ctx, principal, payload)


async def _preview_connections(
    ctx: AppContext,
    principal: RequestContext,
    payload: dict[str, object],
) -> ToolResult:
    app_id = _optional_str(payload, "appId")
    if app_id is None:
        raise InputValidationError("appId is required for mode='preview'")
    app, detection = await detect_app_items(
        ctx.store,
        principal.organization_id,
        app_id,
        ctx.settings.matching.min_similarity,
        ctx.settings.matching.max_matches,
    )
    raw_decisions = payload.get("decisions") or []
    planned = await ctx.executor.plan(
        principal.organization_id,
        list(detection.iter_items()),
        raw_decisions,  # type: ignore[arg-type]
    )
    plan = [entry.to_dict() for entry in planned]
    work_item_id = await ctx.tracker.create_work_item(
        principal.organization_id,
        principal.user_id,
        None,
        CONNECTIONS_WORK_ITEM,
        f"Connect {app.name}",
        [{"appId": app.id, "plan": plan}],
    )
    counts = {action: 0 for action in (CREATE, LINK, SKIP)}
    for entry in planned:
        counts[entry.action] += 1
    return result_from_payload(
        {
            "mode": "preview",
            "workItemId": work_item_id,
            "appId": app.id,
            "appName": app.name,
            "plan": plan,
            "counts": counts,
            "expiresInSeconds": ctx.settings.work_items.preview_ttl_seconds,
            "nextStep": (
                "Show the plan to the user. When they approve, call connections_execute "
                f"with mode='execute' and workItemId='{work_item_id}'."
            ),
        }
    )


async def _execute_connections(
    ctx: AppContext,
    principal: RequestContext,
    payload: dict[str, object],
) -> ToolResult:
    work_item_id = _require_work_item_id(payload)
    approved = await ctx.tracker.approve(
        work_item_id,
        principal.organization_id,
        principal.user_id,
        expected_type=CONNECTIONS_WORK_ITEM,
    )
    snapshot = _snapshot(approved.preview_data, work_item_id)
    planned = [PlannedItem.from_dict(entry) for entry in snapshot.get("plan") or []]
    try:
        response = await ctx.executor.apply(
            principal.organization_id,
            principal.user_id,
            snapshot["appId"],
            planned,
        )
    except Exception as exc:
        error_type = exc.error_type if isinstance(exc, ExperienceError) else type(exc).__name__
        await ctx.tracker.update_work_item(
            work_item_id,
            WORK_ITEM_FAILED,
            results={"success": False, "error": {"type": error_type, "message": str(exc)}},
        )
        raise

    errors = response["errors"]
    progress = {
        "total": len(planned),
        "completed": len(response["created"]) + len(response["linked"]),
        "failed": len(errors),
    }
    updated = await ctx.tracker.update_work_item(
        work_item_id,
        COMPLETED if not errors else WORK_ITEM_FAILED,
        results=response,
        progress=progress,
    )
    return result_from_payload(
        {
            "mode": "execute",
            "workItemId": work_item_id,
            "workItemStatus": updated.status,
            **response,
        }
    )


# ---------------------------------------------------------------------------
# work_item_get
# ---------------------------------------------------------------------------

@translates_errors
async def get_work_item(payload: dict[str, object]) -> ToolResult:
    require_valid(WORK_ITEM_GET_SCHEMA, payload)
    ctx = get_app_context()
    principal = _principal(ctx)
    item = await ctx.tracker.get_work_item(principal.organization_id, str(payload["workItemId"]))
    return result_from_payload({"workItem": item.to_dict()})
