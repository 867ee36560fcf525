"""Detection entry point for builder apps."""

from __future__ import annotations

import asyncio
import logging

from experience_mcp.detection.detector import build_detection_summary, detect_all
from experience_mcp.detection.matching import resolve_matches
from experience_mcp.detection.models import DetectionResult
from experience_mcp.errors import NotFoundError
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import BUILDER_APP, Record

logger = logging.getLogger(__name__)


async def load_builder_app(store: ObjectStore, organization_id: str, app_id: str) -> Record:
    app = await asyncio.to_thread(store.get_record, organization_id, app_id)
    if app is None or app.type != BUILDER_APP:
        raise NotFoundError(f"Builder app not found: {app_id}")
    return app


async def detect_app_items(
    store: ObjectStore,
    organization_id: str,
    app_id: str,
    min_similarity: float = 0.3,
    max_matches: int = 5,
) -> tuple[Record, DetectionResult]:
    """Detect connectable items in a builder app and attach candidate matches."""
    app = await load_builder_app(store, organization_id, app_id)
    files = await asyncio.to_thread(store.get_app_files, app.id)
    page_schema = app.custom_properties.get("pageSchema")

    result = detect_all(page_schema if isinstance(page_schema, dict) else None, files)
    items = list(result.iter_items())
    matches = await resolve_matches(store, organization_id, items, min_similarity, max_matches)
    for item in items:
        if item.id in matches:
            item.existing_matches = matches[item.id]

    logger.info(
        "Detected %d items in app %s (%d files)", result.total_items, app.id, len(files)
    )
    return app, result


async def detect_connections(
    store: ObjectStore,
    organization_id: str,
    app_id: str,
    min_similarity: float = 0.3,
    max_matches: int = 5,
) -> dict[str, object]:
    app, result = await detect_app_items(
        store, organization_id, app_id, min_similarity, max_matches
    )
    return {
        "appId": app.id,
        "appName": app.name,
        "sections": [section.to_dict() for section in result.sections],
        "totalItems": result.total_items,
        "summary": build_detection_summary(result),
    }
