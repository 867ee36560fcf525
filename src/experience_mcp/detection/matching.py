"""Ranking of existing records as candidate matches for detected items."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from experience_mcp.detection.models import DetectedItem, ExistingMatch
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import Record, normalize_name

logger = logging.getLogger(__name__)

# Token overlap alone never scores as high as a containment match.
_JACCARD_SCALE = 0.8


def name_similarity(left: str | None, right: str | None) -> float:
    """Score two names in [0, 1].

    1.0 for an exact case-insensitive match, 0.6-1.0 when one name contains
    the other (scaled by the length ratio), otherwise scaled word-token
    Jaccard similarity.
    """
    a = normalize_name(left)
    b = normalize_name(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        shorter, longer = sorted((len(a), len(b)))
        return round(0.6 + 0.4 * shorter / longer, 4)
    tokens_a = set(a.split(" "))
    tokens_b = set(b.split(" "))
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return round(_JACCARD_SCALE * len(tokens_a & tokens_b) / len(union), 4)


def rank_matches(
    name: str | None,
    candidates: Iterable[Record],
    min_similarity: float,
    max_matches: int,
) -> list[ExistingMatch]:
    matches = []
    for record in candidates:
        score = name_similarity(name, record.name)
        if score >= min_similarity and score > 0:
            matches.append(
                ExistingMatch(
                    id=record.id,
                    name=record.name,
                    similarity=score,
                    status=record.status,
                    updated_at=record.updated_at,
                )
            )
    # Highest similarity first; ties go to the most recently updated record.
    matches.sort(key=lambda m: (m.similarity, m.updated_at), reverse=True)
    return matches[:max_matches]


async def resolve_matches(
    store: ObjectStore,
    organization_id: str,
    items: list[DetectedItem],
    min_similarity: float = 0.3,
    max_matches: int = 5,
) -> dict[str, list[ExistingMatch]]:
    """Find same-type, same-organization candidates for each detected item.

    Records are loaded once per distinct type as a parallel batch. An item
    whose type query failed is left out of the result, so "not searched"
    stays distinguishable from "no match" (an empty list).
    """
    types = list(dict.fromkeys(item.type for item in items))
    loaded = await asyncio.gather(
        *(asyncio.to_thread(store.list_records, organization_id, t) for t in types),
        return_exceptions=True,
    )

    records_by_type: dict[str, list[Record]] = {}
    for item_type, outcome in zip(types, loaded):
        if isinstance(outcome, BaseException):
            logger.warning("Match lookup for type %s failed: %s", item_type, outcome)
            continue
        records_by_type[item_type] = outcome

    resolved: dict[str, list[ExistingMatch]] = {}
    for item in items:
        candidates = records_by_type.get(item.type)
        if candidates is None:
            continue
        resolved[item.id] = rank_matches(item.name, candidates, min_similarity, max_matches)
    return resolved
