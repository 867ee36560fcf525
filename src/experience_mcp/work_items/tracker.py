"""Durable tracking of previewed agent mutations.

A work item is created in ``preview`` with a snapshot of the proposed change.
The matching execute call claims it (``preview -> approved``) and finishes it
as ``completed`` or ``failed``. The work item id is the only token that links
the two calls, and execution replays the stored snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from experience_mcp.errors import (
    AuthorizationError,
    InputValidationError,
    NotFoundError,
    WorkItemStateError,
)
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import (
    APPROVED,
    PREVIEW,
    TERMINAL_STATUSES,
    WORK_ITEM_STATUSES,
    WorkItem,
)
from experience_mcp.utils.time import is_older_than, utc_now_iso

logger = logging.getLogger(__name__)


class WorkItemTracker:
    def __init__(self, store: ObjectStore, preview_ttl_seconds: int = 3600) -> None:
        self._store = store
        self._preview_ttl_seconds = preview_ttl_seconds

    async def create_work_item(
        self,
        organization_id: str,
        user_id: str,
        conversation_id: str | None,
        type: str,
        name: str,
        preview_data: list[dict[str, object]],
    ) -> str:
        now = utc_now_iso()
        item = WorkItem(
            id=uuid.uuid4().hex,
            organization_id=organization_id,
            user_id=user_id,
            conversation_id=conversation_id,
            type=type,
            name=name,
            status=PREVIEW,
            preview_data=list(preview_data),
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self._store.create_work_item, item)
        logger.info("Work item %s created (%s) for org %s", item.id, type, organization_id)
        return item.id

    async def get_work_item(self, organization_id: str, work_item_id: str) -> WorkItem:
        item = await asyncio.to_thread(self._store.get_work_item, work_item_id)
        if item is None or item.organization_id != organization_id:
            raise NotFoundError(f"Work item not found: {work_item_id}")
        return item

    async def update_work_item(
        self,
        work_item_id: str,
        status: str,
        results: dict[str, object] | None = None,
        progress: dict[str, int] | None = None,
    ) -> WorkItem:
        """Move a work item forward.

        Updates to an item that is already terminal only replace results and
        progress; the terminal status and completedAt stay as first written.
        """
        if status not in WORK_ITEM_STATUSES:
            raise InputValidationError(
                f"Unknown work item status: {status}",
                reasons=[f"status must be one of {sorted(WORK_ITEM_STATUSES)}"],
            )
        item = await asyncio.to_thread(self._store.get_work_item, work_item_id)
        if item is None:
            raise NotFoundError(f"Work item not found: {work_item_id}")

        if item.is_terminal:
            if status not in TERMINAL_STATUSES:
                raise WorkItemStateError(
                    f"Work item {work_item_id} is {item.status} and cannot move to {status}"
                )
            next_status = item.status
        else:
            if status == PREVIEW and item.status == APPROVED:
                raise WorkItemStateError(
                    f"Work item {work_item_id} is approved and cannot return to preview"
                )
            next_status = status

        completed_at = utc_now_iso() if next_status in TERMINAL_STATUSES else None
        await asyncio.to_thread(
            self._store.update_work_item,
            work_item_id,
            status=next_status,
            results=results,
            progress=progress,
            completed_at=completed_at,
        )
        updated = await asyncio.to_thread(self._store.get_work_item, work_item_id)
        if updated is None:
            raise NotFoundError(f"Work item not found: {work_item_id}")
        logger.info("Work item %s -> %s", work_item_id, updated.status)
        return updated

    async def approve(
        self,
        work_item_id: str,
        organization_id: str,
        user_id: str,
        expected_type: str | None = None,
    ) -> WorkItem:
        """Claim a previewed work item for execution.

        Only the user who created the preview may execute it, only once, and
        only while the preview is younger than the configured TTL.
        """
        item = await self.get_work_item(organization_id, work_item_id)
        if item.user_id != user_id:
            raise AuthorizationError(
                f"Work item {work_item_id} belongs to a different user"
            )
        if expected_type is not None and item.type != expected_type:
            raise WorkItemStateError(
                f"Work item {work_item_id} is a {item.type} item, not {expected_type}"
            )
        if item.status != PREVIEW:
            raise WorkItemStateError(
                f"Work item {work_item_id} is {item.status}; only preview items can be executed"
            )
        if is_older_than(item.created_at, self._preview_ttl_seconds):
            raise WorkItemStateError(
                f"Work item {work_item_id} preview has expired; create a new preview"
            )
        claimed = await asyncio.to_thread(self._store.claim_work_item, work_item_id)
        if not claimed:
            raise WorkItemStateError(
                f"Work item {work_item_id} was already claimed by another execute call"
            )
        item.status = APPROVED
        return item
