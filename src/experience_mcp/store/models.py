"""Data models for stored records, links, builder app files and work items."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_WHITESPACE = re.compile(r"\s+")

# Record types
BUILDER_APP = "builder_app"

# Work item statuses
PREVIEW = "preview"
APPROVED = "approved"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})
WORK_ITEM_STATUSES = frozenset({PREVIEW, APPROVED, COMPLETED, FAILED})


def normalize_name(name: str | None) -> str:
    """Natural-key form of a record name: case-folded, whitespace collapsed."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name).strip().casefold()


@dataclass
class Record:
    id: str
    organization_id: str
    type: str
    name: str
    created_at: str
    updated_at: str
    subtype: str | None = None
    description: str = ""
    status: str = "draft"
    custom_properties: dict[str, object] = field(default_factory=dict)
    created_by: str | None = None

    @property
    def name_key(self) -> str:
        return normalize_name(self.name)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "type": self.type,
            "subtype": self.subtype,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "customProperties": self.custom_properties,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class RecordLink:
    id: str
    organization_id: str
    from_id: str
    to_id: str
    link_type: str
    created_at: str
    created_by: str | None = None


@dataclass
class AppFile:
    path: str
    content: str


@dataclass
class WorkItem:
    id: str
    organization_id: str
    user_id: str
    type: str
    name: str
    status: str
    created_at: str
    updated_at: str
    conversation_id: str | None = None
    preview_data: list[dict[str, object]] = field(default_factory=list)
    results: dict[str, object] | None = None
    progress: dict[str, int] | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "userId": self.user_id,
            "conversationId": self.conversation_id,
            "type": self.type,
            "name": self.name,
            "status": self.status,
            "previewData": self.preview_data,
            "results": self.results,
            "progress": self.progress,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "completedAt": self.completed_at,
        }
