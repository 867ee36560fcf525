"""Applies create/link/skip decisions for the items detected in a builder app."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Sequence

from experience_mcp.connections.creators import create_for_item
from experience_mcp.connections.models import ACTIONS, LINK, SKIP, Decision, PlannedItem
from experience_mcp.detection.models import DetectedItem
from experience_mcp.detection.service import load_builder_app
from experience_mcp.errors import ExperienceError, InputValidationError
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import Record
from experience_mcp.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

LINK_TYPE_USES = "uses"

LINKED_OBJECT_BUCKETS = {
    "event": "events",
    "product": "products",
    "ticket": "products",
    "form": "forms",
    "contact": "contacts",
    "invoice": "invoices",
    "booking": "bookings",
    "workflow": "workflows",
    "checkout": "checkouts",
}
BUCKET_NAMES = (
    "events",
    "products",
    "forms",
    "contacts",
    "invoices",
    "bookings",
    "workflows",
    "checkouts",
)


def parse_decisions(raw_decisions: Sequence[object]) -> tuple[list[Decision], list[str]]:
    """Parse raw decision objects; returns the decisions and any rejection reasons."""
    decisions: list[Decision] = []
    reasons: list[str] = []
    for index, raw in enumerate(raw_decisions):
        if not isinstance(raw, Mapping):
            reasons.append(f"decisions[{index}] must be an object")
            continue
        item_id = raw.get("itemId")
        action = raw.get("action")
        if not isinstance(item_id, str) or not item_id:
            reasons.append(f"decisions[{index}] is missing itemId")
            continue
        if action not in ACTIONS:
            reasons.append(f"decisions[{index}] ({item_id}) has unknown action {action!r}")
            continue
        linked = raw.get("linkedRecordId")
        overrides = raw.get("overrides")
        decisions.append(
            Decision(
                item_id=item_id,
                action=action,
                linked_record_id=linked if isinstance(linked, str) and linked else None,
                overrides=dict(overrides) if isinstance(overrides, Mapping) else {},
            )
        )
    return decisions, reasons


class ConnectionExecutor:
    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def plan(
        self,
        organization_id: str,
        items: Sequence[DetectedItem],
        raw_decisions: Sequence[object],
    ) -> list[PlannedItem]:
        """Validate a decision batch against the detected items.

        The whole batch is rejected with InputValidationError if any decision
        is malformed, so a bad batch never produces partial side effects.
        Items without a decision are planned as skipped.
        """
        decisions, reasons = parse_decisions(raw_decisions)
        items_by_id = {item.id: item for item in items}

        by_item: dict[str, Decision] = {}
        for decision in decisions:
            if decision.item_id in by_item:
                reasons.append(f"Duplicate decision for item {decision.item_id}")
                continue
            by_item[decision.item_id] = decision
            if decision.item_id not in items_by_id:
                reasons.append(f"Unknown item {decision.item_id}")
            if decision.action == LINK and decision.linked_record_id is None:
                reasons.append(f"Link decision for item {decision.item_id} requires linkedRecordId")

        link_targets = {
            d.item_id: d.linked_record_id
            for d in by_item.values()
            if d.action == LINK and d.linked_record_id and d.item_id in items_by_id
        }
        reasons.extend(await self._missing_link_targets(organization_id, link_targets))
        if reasons:
            raise InputValidationError("Connection decisions rejected", reasons=reasons)

        planned = []
        for item in items:
            decision = by_item.get(item.id)
            if decision is None:
                planned.append(
                    PlannedItem(
                        item_id=item.id,
                        type=item.type,
                        action=SKIP,
                        placeholder_data=dict(item.placeholder_data),
                        decided=False,
                    )
                )
                continue
            planned.append(
                PlannedItem(
                    item_id=item.id,
                    type=item.type,
                    action=decision.action,
                    placeholder_data={**item.placeholder_data, **decision.overrides},
                    linked_record_id=decision.linked_record_id,
                )
            )
        return planned

    async def execute(
        self,
        organization_id: str,
        user_id: str,
        app_id: str,
        items: Sequence[DetectedItem],
        raw_decisions: Sequence[object],
    ) -> dict[str, Any]:
        planned = await self.plan(organization_id, items, raw_decisions)
        return await self.apply(organization_id, user_id, app_id, planned)

    async def apply(
        self,
        organization_id: str,
        user_id: str,
        app_id: str,
        planned: Sequence[PlannedItem],
    ) -> dict[str, Any]:
        """Apply a validated plan and associate the results with the app."""
        app = await load_builder_app(self._store, organization_id, app_id)
        missing = await self._missing_link_targets(
            organization_id,
            {p.item_id: p.linked_record_id for p in planned if p.action == LINK and p.linked_record_id},
        )
        if missing:
            raise InputValidationError("Connection decisions rejected", reasons=missing)

        created: list[dict[str, Any]] = []
        linked: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []

        to_create = []
        for item in planned:
            if item.action == SKIP:
                skipped.append(
                    {
                        "itemId": item.item_id,
                        "type": item.type,
                        "reason": "Skipped by decision" if item.decided else "No decision",
                    }
                )
            elif item.action == LINK:
                linked.append(
                    {"itemId": item.item_id, "type": item.type, "recordId": item.linked_record_id}
                )
            else:
                to_create.append(item)

        outcomes = await asyncio.gather(
            *(
                asyncio.to_thread(
                    create_for_item,
                    self._store,
                    organization_id,
                    user_id,
                    item.type,
                    item.placeholder_data,
                )
                for item in to_create
            ),
            return_exceptions=True,
        )
        for item, outcome in zip(to_create, outcomes):
            if isinstance(outcome, Record):
                created.append(
                    {
                        "itemId": item.item_id,
                        "type": item.type,
                        "recordId": outcome.id,
                        "name": outcome.name,
                    }
                )
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Creating %s for item %s failed: %s", item.type, item.item_id, outcome)
            errors.append(
                {
                    "itemId": item.item_id,
                    "type": item.type,
                    "errorType": (
                        outcome.error_type
                        if isinstance(outcome, ExperienceError)
                        else type(outcome).__name__
                    ),
                    "error": str(outcome),
                }
            )

        connected = created + linked
        await self._associate(app, user_id, connected)
        logger.info(
            "Connected app %s: created=%d linked=%d skipped=%d errors=%d",
            app.id,
            len(created),
            len(linked),
            len(skipped),
            len(errors),
        )
        return {
            "appId": app.id,
            "created": created,
            "linked": linked,
            "skipped": skipped,
            "errors": errors,
        }

    async def _missing_link_targets(
        self,
        organization_id: str,
        targets: dict[str, str | None],
    ) -> list[str]:
        item_ids = [item_id for item_id, record_id in targets.items() if record_id]
        records = await asyncio.gather(
            *(
                asyncio.to_thread(self._store.get_record, organization_id, targets[item_id])
                for item_id in item_ids
            )
        )
        return [
            f"Linked record {targets[item_id]} for item {item_id} was not found"
            for item_id, record in zip(item_ids, records)
            if record is None
        ]

    async def _associate(
        self,
        app: Record,
        user_id: str,
        connected: list[dict[str, Any]],
    ) -> None:
        record_ids = list(dict.fromkeys(entry["recordId"] for entry in connected))
        if record_ids:
            await asyncio.to_thread(
                self._store.link_records,
                app.organization_id,
                app.id,
                record_ids,
                LINK_TYPE_USES,
                user_id,
            )

        properties = dict(app.custom_properties)
        existing = properties.get("linkedObjects")
        linked_objects = {
            bucket: list((existing or {}).get(bucket) or []) if isinstance(existing, dict) else []
            for bucket in BUCKET_NAMES
        }
        for entry in connected:
            bucket = LINKED_OBJECT_BUCKETS.get(entry["type"])
            if bucket and entry["recordId"] not in linked_objects[bucket]:
                linked_objects[bucket].append(entry["recordId"])
        properties["linkedObjects"] = linked_objects
        properties["connectionStatus"] = "completed"
        properties["connectionCompletedAt"] = utc_now_iso()
        await asyncio.to_thread(
            self._store.update_record,
            app.organization_id,
            app.id,
            custom_properties=properties,
        )
