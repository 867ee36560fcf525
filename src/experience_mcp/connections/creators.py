"""Type-specific record creation for detected items."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable

from experience_mcp.errors import NotAutoCreatableError
from experience_mcp.playbooks.normalizer import DEFAULT_CURRENCY, normalize_price
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import Record
from experience_mcp.utils.time import parse_timestamp, utc_now

Creator = Callable[[ObjectStore, str, str, dict[str, Any]], Record]


def _text(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def create_contact(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    full_name = _text(data, "name") or _text(data, "email") or "New Contact"
    first_name, _, last_name = full_name.partition(" ")
    return store.create_record(
        org,
        "contact",
        full_name,
        subtype="lead",
        description=_text(data, "description") or "",
        status="active",
        custom_properties={
            "firstName": _text(data, "firstName") or first_name,
            "lastName": _text(data, "lastName") or last_name.strip(),
            "email": _text(data, "email"),
            "phone": _text(data, "phone"),
            "jobTitle": _text(data, "role", "description"),
            "source": "builder",
        },
        created_by=user,
    )


def create_form(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    return store.create_record(
        org,
        "form",
        _text(data, "name") or "New Form",
        subtype="registration",
        description=_text(data, "description") or "",
        custom_properties={"formSchema": {"fields": []}, "source": "builder"},
        created_by=user,
    )


def create_product(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    return store.create_record(
        org,
        "product",
        _text(data, "name") or "New Product",
        subtype="digital",
        description=_text(data, "description") or "",
        custom_properties={
            "price": normalize_price(data.get("price")),
            "currency": (_text(data, "currency") or DEFAULT_CURRENCY).upper(),
            "source": "builder",
        },
        created_by=user,
    )


def create_event(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    start = parse_timestamp(data.get("startDate")) or parse_timestamp(data.get("date"))
    if start is None:
        start = utc_now() + timedelta(days=7)
    end = parse_timestamp(data.get("endDate"))
    if end is None or end <= start:
        end = start + timedelta(hours=2)
    return store.create_record(
        org,
        "event",
        _text(data, "name") or "New Event",
        subtype="meetup",
        description=_text(data, "description") or "",
        custom_properties={
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "location": _text(data, "location") or "TBD",
            "source": "builder",
        },
        created_by=user,
    )


def create_invoice(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    return store.create_record(
        org,
        "invoice",
        _text(data, "name") or "New Invoice",
        subtype="standard",
        description=_text(data, "description") or "",
        status="draft",
        custom_properties={
            "dueDate": (utc_now() + timedelta(days=30)).isoformat(),
            "lineItems": [],
            "total": normalize_price(data.get("price")),
            "currency": (_text(data, "currency") or DEFAULT_CURRENCY).upper(),
            "source": "builder",
        },
        created_by=user,
    )


def create_booking(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    start = parse_timestamp(data.get("startDate")) or utc_now() + timedelta(days=1)
    return store.create_record(
        org,
        "booking",
        _text(data, "name") or "New Booking",
        subtype="appointment",
        description=_text(data, "description") or "",
        custom_properties={
            "startDate": start.isoformat(),
            "endDate": (start + timedelta(hours=1)).isoformat(),
            "durationMinutes": 60,
            "source": "builder",
        },
        created_by=user,
    )


def create_workflow(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    return store.create_record(
        org,
        "workflow",
        _text(data, "name") or "New Workflow",
        subtype="custom",
        description=_text(data, "description") or "",
        status="draft",
        custom_properties={"trigger": {"type": "manual"}, "steps": [], "source": "builder"},
        created_by=user,
    )


def create_checkout(store: ObjectStore, org: str, user: str, data: dict[str, Any]) -> Record:
    return store.create_record(
        org,
        "checkout",
        _text(data, "name") or "New Checkout",
        subtype="default",
        description=_text(data, "description") or "",
        custom_properties={"template": "default", "productIds": [], "source": "builder"},
        created_by=user,
    )


CREATORS: dict[str, Creator] = {
    "contact": create_contact,
    "form": create_form,
    "product": create_product,
    "event": create_event,
    "invoice": create_invoice,
    "booking": create_booking,
    "workflow": create_workflow,
    "checkout": create_checkout,
}


def create_for_item(
    store: ObjectStore,
    org: str,
    user: str,
    item_type: str,
    data: dict[str, Any],
) -> Record:
    creator = CREATORS.get(item_type)
    if creator is None:
        raise NotAutoCreatableError(item_type)
    return creator(store, org, user, data)
