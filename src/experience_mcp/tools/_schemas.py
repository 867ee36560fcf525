"""JSON Schema definitions and ToolSpec instances for the experience tools."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from experience_mcp.mcp_runtime import ToolResult, ToolSpec

ToolHandler = Callable[[dict[str, object]], ToolResult | Awaitable[ToolResult]]

_MODE = {
    "type": "string",
    "enum": ["preview", "execute"],
    "description": (
        "'preview': compute what would happen and store it as a work item; no records "
        "are written. 'execute': apply an approved preview identified by workItemId."
    ),
}

_WORK_ITEM_ID = {
    "type": "string",
    "minLength": 1,
    "maxLength": 128,
    "description": "Work item id returned by the preview call. Required for mode='execute'.",
}

EXPERIENCE_CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "mode": _MODE,
        "playbook": {
            "type": "string",
            "minLength": 1,
            "maxLength": 64,
            "default": "event",
            "description": "Playbook id from the experience contract, e.g. 'event'.",
        },
        "conversationPayload": {
            "type": ["object", "string", "null"],
            "description": (
                "What the user described: free text, or an object with experienceName, "
                "event {title, startDate, endDate, location, ...}, products/ticketTypes "
                "[{name, price, currency}], form (false to opt out), checkout, "
                "detectedItems, pageSchema or builderFiles. Missing fields get defaults."
            ),
        },
        "conversationId": {"type": "string", "maxLength": 128},
        "idempotencyKey": {
            "type": "string",
            "maxLength": 256,
            "description": "Reuse the same key to retry a run without creating duplicates.",
        },
        "options": {
            "type": "object",
            "properties": {
                "duplicateStrategy": {
                    "type": "string",
                    "enum": ["reuse_existing", "fail_on_duplicate"],
                },
                "failFast": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "workItemId": _WORK_ITEM_ID,
    },
    "required": ["mode"],
    "additionalProperties": False,
}

CONNECTIONS_DETECT_SCHEMA = {
    "type": "object",
    "properties": {
        "appId": {
            "type": "string",
            "minLength": 1,
            "maxLength": 128,
            "description": "Id of the builder app record to scan.",
        },
    },
    "required": ["appId"],
    "additionalProperties": False,
}

CONNECTIONS_EXECUTE_SCHEMA = {
    "type": "object",
    "properties": {
        "mode": _MODE,
        "appId": {"type": "string", "minLength": 1, "maxLength": 128},
        "decisions": {
            "type": "array",
            "maxItems": 500,
            "items": {
                "type": "object",
                "properties": {
                    "itemId": {"type": "string"},
                    "action": {"type": "string", "enum": ["create", "link", "skip"]},
                    "linkedRecordId": {"type": ["string", "null"]},
                    "overrides": {"type": "object"},
                },
                "required": ["itemId", "action"],
            },
            "description": (
                "One decision per detected item id. Items without a decision are skipped."
            ),
        },
        "workItemId": _WORK_ITEM_ID,
    },
    "required": ["mode"],
    "additionalProperties": False,
}

WORK_ITEM_GET_SCHEMA = {
    "type": "object",
    "properties": {"workItemId": _WORK_ITEM_ID},
    "required": ["workItemId"],
    "additionalProperties": False,
}


def make_tool_specs(
    create_experience_handler: ToolHandler,
    detect_handler: ToolHandler,
    connect_handler: ToolHandler,
    work_item_handler: ToolHandler,
) -> tuple[ToolSpec, ToolSpec, ToolSpec, ToolSpec]:
    """Create the ToolSpec instances with the given handler callables."""
    experience_create_tool = ToolSpec(
        name="experience_create",
        description=(
            "Create a complete event experience (event, ticket products, registration "
            "form, checkout) from a conversation. "
            "Step 1: call(mode='preview', playbook='event', conversationPayload={...}) "
            "and show the returned draft to the user. "
            "Step 2: after the user approves, call(mode='execute', workItemId=<id>). "
            "Retrying with the same idempotencyKey reuses what an earlier run created."
        ),
        input_schema=EXPERIENCE_CREATE_SCHEMA,
        handler=create_experience_handler,
    )

    connections_detect_tool = ToolSpec(
        name="connections_detect",
        description=(
            "Scan a generated builder app for forms, products, events, contacts and other "
            "items, and list existing records each item could be linked to. Read-only. "
            "Example: call(appId='...')"
        ),
        input_schema=CONNECTIONS_DETECT_SCHEMA,
        handler=detect_handler,
    )

    connections_execute_tool = ToolSpec(
        name="connections_execute",
        description=(
            "Connect detected app items to records. "
            "Step 1: call(mode='preview', appId=<id>, decisions=[{itemId, action: "
            "create|link|skip, linkedRecordId?, overrides?}]). "
            "Step 2: after the user approves, call(mode='execute', workItemId=<id>). "
            "A malformed batch is rejected as a whole before anything is written."
        ),
        input_schema=CONNECTIONS_EXECUTE_SCHEMA,
        handler=connect_handler,
    )

    work_item_get_tool = ToolSpec(
        name="work_item_get",
        description="Read the status, preview, progress and results of a work item.",
        input_schema=WORK_ITEM_GET_SCHEMA,
        handler=work_item_handler,
    )

    return (
        experience_create_tool,
        connections_detect_tool,
        connections_execute_tool,
        work_item_get_tool,
    )
