"""Detected items, candidate matches and detection results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

DETECTED_ITEM_TYPES = (
    "product",
    "event",
    "contact",
    "form",
    "invoice",
    "ticket",
    "booking",
    "workflow",
    "checkout",
    "conversation",
    "agent",
)


@dataclass
class ExistingMatch:
    id: str
    name: str
    similarity: float
    status: str
    updated_at: str

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "similarity": self.similarity,
            "status": self.status,
            "updatedAt": self.updated_at,
        }


@dataclass
class DetectedItem:
    id: str
    type: str
    placeholder_data: dict[str, object]
    # None means the item was never searched; [] means searched, nothing found.
    existing_matches: list[ExistingMatch] | None = None

    @property
    def name(self) -> str | None:
        value = self.placeholder_data.get("name")
        return value if isinstance(value, str) and value.strip() else None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "type": self.type,
            "placeholderData": self.placeholder_data,
        }
        if self.existing_matches is not None:
            data["existingMatches"] = [m.to_dict() for m in self.existing_matches]
        return data


@dataclass
class DetectedSection:
    section_id: str
    section_type: str
    section_label: str
    detected_items: list[DetectedItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "sectionId": self.section_id,
            "sectionType": self.section_type,
            "sectionLabel": self.section_label,
            "detectedItems": [item.to_dict() for item in self.detected_items],
        }


@dataclass
class DetectionResult:
    sections: list[DetectedSection] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return sum(len(section.detected_items) for section in self.sections)

    def iter_items(self) -> Iterator[DetectedItem]:
        for section in self.sections:
            yield from section.detected_items

    def to_dict(self) -> dict[str, object]:
        return {
            "sections": [section.to_dict() for section in self.sections],
            "totalItems": self.total_items,
        }
