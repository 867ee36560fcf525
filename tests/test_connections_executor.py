from __future__ import annotations

import pytest

from experience_mcp.connections.executor import ConnectionExecutor, parse_decisions
from experience_mcp.connections.models import PlannedItem
from experience_mcp.detection.models import DetectedItem
from experience_mcp.errors import InputValidationError, NotFoundError
from experience_mcp.store.db import SqliteStore
from experience_mcp.store.models import Record

ORG = "org_1"
OTHER_ORG = "org_2"
USER = "user_1"

ITEMS = [
    DetectedItem(id="d1", type="product", placeholder_data={"name": "Basic", "price": "49.99"}),
    DetectedItem(id="d2", type="form", placeholder_data={"name": "Contact Form"}),
    DetectedItem(id="d3", type="ticket", placeholder_data={"name": "VIP Pass"}),
]


def test_parse_decisions_collects_reasons() -> None:
    decisions, reasons = parse_decisions(
        [
            {"itemId": "d1", "action": "create", "overrides": {"name": "Gold"}},
            {"itemId": "d2", "action": "merge"},
            {"action": "skip"},
            "skip",
        ]
    )
    assert [(d.item_id, d.action, d.overrides) for d in decisions] == [
        ("d1", "create", {"name": "Gold"})
    ]
    assert len(reasons) == 3


@pytest.mark.asyncio
async def test_link_without_record_id_rejects_whole_batch(
    executor: ConnectionExecutor, store: SqliteStore, builder_app: Record
) -> None:
    with pytest.raises(InputValidationError) as exc_info:
        await executor.execute(
            ORG,
            USER,
            builder_app.id,
            ITEMS,
            [{"itemId": "d1", "action": "create"}, {"itemId": "d2", "action": "link"}],
        )

    assert "requires linkedRecordId" in exc_info.value.reasons[0]
    assert store.list_records(ORG, "product") == []


@pytest.mark.asyncio
async def test_unknown_items_and_duplicates_are_rejected(executor: ConnectionExecutor) -> None:
    with pytest.raises(InputValidationError) as exc_info:
        await executor.plan(
            ORG,
            ITEMS,
            [
                {"itemId": "d1", "action": "create"},
                {"itemId": "d1", "action": "skip"},
                {"itemId": "nope", "action": "create"},
            ],
        )
    assert exc_info.value.reasons == ["Duplicate decision for item d1", "Unknown item nope"]


@pytest.mark.asyncio
async def test_link_target_must_exist_in_org(
    executor: ConnectionExecutor, store: SqliteStore
) -> None:
    foreign = store.create_record(OTHER_ORG, "form", "Contact Form")
    with pytest.raises(InputValidationError) as exc_info:
        await executor.plan(
            ORG, ITEMS, [{"itemId": "d2", "action": "link", "linkedRecordId": foreign.id}]
        )
    assert exc_info.value.reasons == [
        f"Linked record {foreign.id} for item d2 was not found"
    ]


@pytest.mark.asyncio
async def test_plan_skips_undecided_items(executor: ConnectionExecutor) -> None:
    planned = await executor.plan(
        ORG, ITEMS, [{"itemId": "d1", "action": "create", "overrides": {"name": "Gold"}}]
    )

    assert [(p.item_id, p.action, p.decided) for p in planned] == [
        ("d1", "create", True),
        ("d2", "skip", False),
        ("d3", "skip", False),
    ]
    assert planned[0].placeholder_data == {"name": "Gold", "price": "49.99"}
    assert PlannedItem.from_dict(planned[0].to_dict()) == planned[0]


@pytest.mark.asyncio
async def test_unsupported_type_fails_only_its_item(
    executor: ConnectionExecutor, store: SqliteStore, builder_app: Record
) -> None:
    result = await executor.execute(
        ORG,
        USER,
        builder_app.id,
        ITEMS,
        [{"itemId": item.id, "action": "create"} for item in ITEMS],
    )

    assert [entry["itemId"] for entry in result["created"]] == ["d1", "d2"]
    assert result["errors"] == [
        {
            "itemId": "d3",
            "type": "ticket",
            "errorType": "NotAutoCreatable",
            "error": "Items of type 'ticket' cannot be auto-created yet",
        }
    ]
    product = store.get_record(ORG, result["created"][0]["recordId"])
    assert product.custom_properties["price"] == 4999
    assert product.custom_properties["currency"] == "EUR"


@pytest.mark.asyncio
async def test_links_and_updates_app(
    executor: ConnectionExecutor, store: SqliteStore, builder_app: Record
) -> None:
    existing = store.create_record(ORG, "form", "Contact")

    result = await executor.execute(
        ORG,
        USER,
        builder_app.id,
        ITEMS,
        [
            {"itemId": "d1", "action": "create"},
            {"itemId": "d2", "action": "link", "linkedRecordId": existing.id},
        ],
    )

    assert result["linked"] == [{"itemId": "d2", "type": "form", "recordId": existing.id}]
    assert result["skipped"] == [{"itemId": "d3", "type": "ticket", "reason": "No decision"}]
    assert result["errors"] == []

    app = store.get_record(ORG, builder_app.id)
    linked_objects = app.custom_properties["linkedObjects"]
    assert linked_objects["forms"] == [existing.id]
    assert linked_objects["products"] == [result["created"][0]["recordId"]]
    assert app.custom_properties["connectionStatus"] == "completed"

    uses = {link.to_id for link in store.list_links(ORG, builder_app.id, "uses")}
    assert uses == {existing.id, result["created"][0]["recordId"]}


@pytest.mark.asyncio
async def test_repeated_links_do_not_duplicate_linked_objects(
    executor: ConnectionExecutor, store: SqliteStore, builder_app: Record
) -> None:
    existing = store.create_record(ORG, "form", "Contact")
    decisions = [{"itemId": "d2", "action": "link", "linkedRecordId": existing.id}]

    await executor.execute(ORG, USER, builder_app.id, ITEMS, decisions)
    await executor.execute(ORG, USER, builder_app.id, ITEMS, decisions)

    app = store.get_record(ORG, builder_app.id)
    assert app.custom_properties["linkedObjects"]["forms"] == [existing.id]
    assert len(store.list_links(ORG, builder_app.id, "uses")) == 1


@pytest.mark.asyncio
async def test_apply_requires_builder_app(executor: ConnectionExecutor) -> None:
    with pytest.raises(NotFoundError):
        await executor.apply(ORG, USER, "missing", [])
