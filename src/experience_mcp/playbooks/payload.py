"""Lenient input models for conversational playbook payloads.

Agents send loosely structured payloads. Each field is validated on its own
and a wrongly typed value is dropped instead of rejecting the payload, so
derivation never fails on user input.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class _LenientModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid(cls, value: Any, handler: Any) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return None

    @classmethod
    def coerce(cls, value: Any):
        """Build the model from a mapping; anything else yields None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            return None
        return cls.model_validate(dict(value))


class EventInput(_LenientModel):
    title: str | None = None
    name: str | None = None
    description: str | None = None
    start_date: Any = None
    end_date: Any = None
    duration_minutes: float | None = None
    location: str | None = None
    timezone: str | None = None
    capacity: int | None = None
    agenda: list[dict[str, Any]] | None = None
    registration_required: bool | None = None
    published: bool | None = None
    event_type: str | None = None
    virtual_event_url: str | None = None


class ProductInput(_LenientModel):
    name: str | None = None
    title: str | None = None
    tier: str | None = None
    price: Any = None
    currency: str | None = None
    subtype: str | None = None
    description: str | None = None
    ticket_tier: str | None = None

    @property
    def display_name(self) -> str | None:
        for candidate in (self.name, self.title, self.tier, self.ticket_tier):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


class FormInput(_LenientModel):
    name: str | None = None
    description: str | None = None


class CheckoutInput(_LenientModel):
    name: str | None = None
    description: str | None = None
    payment_providers: list[str] | None = None
    published: bool | None = None


class DetectedItemInput(_LenientModel):
    type: str | None = None
    name: str | None = None
    placeholder_data: dict[str, Any] | None = None

    @property
    def resolved_name(self) -> str | None:
        if self.name and self.name.strip():
            return self.name.strip()
        value = (self.placeholder_data or {}).get("name")
        return value.strip() if isinstance(value, str) and value.strip() else None


class EventPlaybookPayload(_LenientModel):
    text: str | None = None
    experience_name: str | None = None
    name: str | None = None
    event: EventInput | None = None
    start_date: Any = None
    end_date: Any = None
    duration_minutes: float | None = None
    currency: str | None = None
    products: list[Any] | None = None
    ticket_types: list[Any] | None = None
    include_form: bool | None = None
    form: FormInput | bool | None = None
    checkout: CheckoutInput | None = None
    detected_items: list[Any] | None = None
    page_schema: dict[str, Any] | None = None
    builder_files: list[Any] | None = None

    @classmethod
    def from_raw(cls, payload: Any) -> "EventPlaybookPayload":
        if isinstance(payload, str):
            return cls(text=payload)
        return cls.coerce(payload) or cls()

    @property
    def form_opted_out(self) -> bool:
        return self.include_form is False or self.form is False
