"""Playbook contract models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class PlaybookDefinition(BaseModel):
    id: str
    label: str = ""
    implemented: bool = Field(default=False)
    artifact_order: list[str] = Field(default_factory=list)
    supported_item_types: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("artifact_order", "supported_item_types", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    def supports_item_type(self, item_type: str) -> bool:
        return item_type in self.supported_item_types


class ExperienceContract(BaseModel):
    version: str = Field(default="1")
    playbooks: list[PlaybookDefinition] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("playbooks", mode="before")
    @classmethod
    def _validate_playbooks(cls, v: Any) -> list:
        return _ensure_list(v)

    @property
    def playbook_ids(self) -> list[str]:
        return [playbook.id for playbook in self.playbooks]

    def get_playbook(self, playbook_id: str) -> PlaybookDefinition | None:
        key = playbook_id.strip().lower()
        for playbook in self.playbooks:
            if playbook.id == key:
                return playbook
        return None

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> "ExperienceContract":
        return cls.model_validate(data)
