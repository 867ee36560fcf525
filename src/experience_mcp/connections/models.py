"""Decisions and per-item plans for connecting builder apps to records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CREATE = "create"
LINK = "link"
SKIP = "skip"
ACTIONS = (CREATE, LINK, SKIP)


@dataclass
class Decision:
    item_id: str
    action: str
    linked_record_id: str | None = None
    overrides: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlannedItem:
    """What will happen to one detected item; stored in the preview snapshot."""

    item_id: str
    type: str
    action: str
    placeholder_data: dict[str, Any] = field(default_factory=dict)
    linked_record_id: str | None = None
    decided: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "type": self.type,
            "action": self.action,
            "placeholderData": self.placeholder_data,
            "linkedRecordId": self.linked_record_id,
            "decided": self.decided,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlannedItem":
        return cls(
            item_id=data["itemId"],
            type=data["type"],
            action=data["action"],
            placeholder_data=dict(data.get("placeholderData") or {}),
            linked_record_id=data.get("linkedRecordId"),
            decided=bool(data.get("decided", True)),
        )
