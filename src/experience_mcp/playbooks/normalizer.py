"""Derivation of a fully defaulted experience draft from a conversational payload."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from experience_mcp.contract.models import PlaybookDefinition
from experience_mcp.detection.detector import detect_all
from experience_mcp.playbooks.drafts import (
    CheckoutDraft,
    DerivationResult,
    EventDraft,
    ExperienceDraft,
    FormDraft,
    ProductDraft,
    UnsupportedPlaybookItem,
)
from experience_mcp.playbooks.payload import (
    CheckoutInput,
    DetectedItemInput,
    EventInput,
    EventPlaybookPayload,
    FormInput,
    ProductInput,
)
from experience_mcp.store.models import AppFile
from experience_mcp.utils.time import parse_timestamp, utc_now

DEFAULT_EXPERIENCE_NAME = "New Event Experience"
DEFAULT_CURRENCY = "EUR"
DEFAULT_PAYMENT_PROVIDERS = ("stripe-connect",)
DEFAULT_LEAD_TIME = timedelta(days=7)
DEFAULT_DURATION = timedelta(hours=2)
MIN_DURATION = timedelta(minutes=15)

# Raw amounts at or above this are taken to be minor units already.
MINOR_UNIT_THRESHOLD = Decimal(10000)
# Anything larger is not a real price and is treated as unparseable.
MAX_MINOR_UNITS = Decimal(10) ** 15

EVENT_ITEM_TYPES = ("event", "product", "ticket", "form", "checkout")

_PRICE_NOISE = re.compile(r"[^\d.,\-]")
_DECIMAL_COMMA = re.compile(r"^-?\d+,\d{1,2}$")


def normalize_price(value: object) -> int:
    """Normalize a price to integer minor currency units.

    49.99 -> 4999, "$1,299" -> 129900, 10000 -> 10000. Non-numeric, zero,
    negative or absurdly large input collapses to 0 (free).
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = _PRICE_NOISE.sub("", value)
        if _DECIMAL_COMMA.match(text):
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        return 0
    try:
        amount = Decimal(text)
        if not amount.is_finite() or amount <= 0:
            return 0
        if amount < MINOR_UNIT_THRESHOLD:
            amount = amount * 100
        if amount > MAX_MINOR_UNITS:
            return 0
        return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0


def derive_event_draft(
    payload: Any,
    playbook: PlaybookDefinition | None = None,
    now: datetime | None = None,
) -> DerivationResult:
    """Derive the event playbook draft. Never raises on user input."""
    data = EventPlaybookPayload.from_raw(payload)
    detected = _collect_detected_items(data)
    event_input = data.event or EventInput()

    experience_name = _first_text(
        data.experience_name,
        data.name,
        event_input.title,
        event_input.name,
        _detected_name(detected),
    ) or DEFAULT_EXPERIENCE_NAME

    event = _derive_event(data, event_input, experience_name, now or utc_now())
    products = _derive_products(data, detected, experience_name)
    form = None if data.form_opted_out else _derive_form(data, detected, experience_name)
    checkout = _derive_checkout(data.checkout or CheckoutInput(), products, experience_name)

    allowed = playbook.supported_item_types if playbook is not None else EVENT_ITEM_TYPES
    playbook_id = playbook.id if playbook is not None else "event"
    unsupported = [
        UnsupportedPlaybookItem(
            type=item_type,
            name=name,
            reason=(
                f"Detected {item_type} items are not automated by the {playbook_id} "
                "playbook. Create or connect them separately."
            ),
        )
        for item_type, name, _ in detected
        if item_type not in allowed
    ]

    return DerivationResult(
        draft=ExperienceDraft(
            experience_name=experience_name,
            event=event,
            products=products,
            form=form,
            checkout=checkout,
        ),
        unsupported_items=unsupported,
        detected_item_count=len(detected),
    )


def _derive_event(
    data: EventPlaybookPayload,
    event_input: EventInput,
    experience_name: str,
    now: datetime,
) -> EventDraft:
    start = parse_timestamp(event_input.start_date) or parse_timestamp(data.start_date)
    # a start too close to datetime.max leaves no room for any end date
    if start is None or _shift(start, DEFAULT_DURATION.total_seconds() / 60) is None:
        start = now + DEFAULT_LEAD_TIME

    end = parse_timestamp(event_input.end_date) or parse_timestamp(data.end_date)
    if end is None or end - start < MIN_DURATION:
        end = _shift(start, event_input.duration_minutes or data.duration_minutes)
    if end is None:
        end = start + DEFAULT_DURATION

    description = event_input.description or data.text or ""
    return EventDraft(
        title=_first_text(event_input.title, experience_name) or experience_name,
        description=description.strip(),
        start_date=start,
        end_date=end,
        location=(event_input.location or "").strip(),
        timezone=event_input.timezone or "UTC",
        capacity=event_input.capacity if event_input.capacity and event_input.capacity > 0 else None,
        agenda=list(event_input.agenda or []),
        registration_required=(
            event_input.registration_required
            if event_input.registration_required is not None
            else True
        ),
        published=bool(event_input.published),
        event_type=event_input.event_type or "meetup",
        virtual_event_url=event_input.virtual_event_url,
    )


def _shift(start: datetime, minutes: float | None) -> datetime | None:
    if minutes is None:
        return None
    try:
        span = timedelta(minutes=minutes)
        if span < MIN_DURATION:
            return None
        return start + span
    except (OverflowError, ValueError):
        return None


def _derive_products(
    data: EventPlaybookPayload,
    detected: list[tuple[str, str | None, dict[str, Any]]],
    experience_name: str,
) -> list[ProductDraft]:
    currency = (data.currency or DEFAULT_CURRENCY).upper()

    explicit = [
        _product_from_input(entry, currency)
        for entry in (ProductInput.coerce(raw) for raw in data.products or [])
        if entry is not None and entry.display_name
    ]
    if explicit:
        return explicit

    from_ticket_types = []
    for raw in data.ticket_types or []:
        if isinstance(raw, str) and raw.strip():
            from_ticket_types.append(
                ProductDraft(name=raw.strip(), currency=currency, ticket_tier=raw.strip())
            )
            continue
        entry = ProductInput.coerce(raw)
        if entry is not None and entry.display_name:
            product = _product_from_input(entry, currency)
            product.ticket_tier = product.ticket_tier or product.name
            from_ticket_types.append(product)
    if from_ticket_types:
        return from_ticket_types

    from_detector = [
        ProductDraft(
            name=name,
            price=normalize_price(placeholder.get("price")),
            currency=currency,
            description=str(placeholder.get("description") or ""),
        )
        for item_type, name, placeholder in detected
        if item_type in ("product", "ticket") and name
    ]
    if from_detector:
        return from_detector

    return [ProductDraft(name=f"{experience_name} Ticket", price=0, currency=currency)]


def _product_from_input(entry: ProductInput, currency: str) -> ProductDraft:
    return ProductDraft(
        name=entry.display_name or "",
        price=normalize_price(entry.price),
        currency=(entry.currency or currency).upper(),
        subtype=entry.subtype or "ticket",
        description=(entry.description or "").strip(),
        ticket_tier=entry.ticket_tier or entry.tier,
    )


def _derive_form(
    data: EventPlaybookPayload,
    detected: list[tuple[str, str | None, dict[str, Any]]],
    experience_name: str,
) -> FormDraft:
    form_input = data.form if isinstance(data.form, FormInput) else FormInput()
    detected_form = next(
        ((name, placeholder) for item_type, name, placeholder in detected if item_type == "form"),
        (None, {}),
    )
    detected_description = detected_form[1].get("description")
    return FormDraft(
        name=_first_text(form_input.name, detected_form[0])
        or f"{experience_name} Registration Form",
        description=_first_text(
            form_input.description,
            detected_description if isinstance(detected_description, str) else None,
        )
        or f"Registration form for {experience_name}",
    )


def _derive_checkout(
    checkout_input: CheckoutInput,
    products: list[ProductDraft],
    experience_name: str,
) -> CheckoutDraft:
    providers = [p for p in checkout_input.payment_providers or [] if p.strip()]
    return CheckoutDraft(
        name=_first_text(checkout_input.name) or f"{experience_name} Checkout",
        description=(checkout_input.description or "").strip(),
        payment_mode="paid" if any(p.price > 0 for p in products) else "free",
        payment_providers=providers or list(DEFAULT_PAYMENT_PROVIDERS),
        published=bool(checkout_input.published),
    )


def _collect_detected_items(
    data: EventPlaybookPayload,
) -> list[tuple[str, str | None, dict[str, Any]]]:
    """Return (type, name, placeholderData) for explicit and detector-found items."""
    items: list[tuple[str, str | None, dict[str, Any]]] = []
    for raw in data.detected_items or []:
        entry = DetectedItemInput.coerce(raw)
        if entry is not None and entry.type:
            items.append((entry.type, entry.resolved_name, dict(entry.placeholder_data or {})))

    files = [
        AppFile(path=raw["path"], content=raw["content"])
        for raw in data.builder_files or []
        if isinstance(raw, dict)
        and isinstance(raw.get("path"), str)
        and isinstance(raw.get("content"), str)
    ]
    if data.page_schema is not None or files:
        result = detect_all(data.page_schema, files)
        for item in result.iter_items():
            items.append((item.type, item.name, dict(item.placeholder_data)))
    return items


def _detected_name(detected: list[tuple[str, str | None, dict[str, Any]]]) -> str | None:
    for item_type, name, _ in detected:
        if item_type == "event" and name:
            return name
    for _, name, _ in detected:
        if name:
            return name
    return None


def _first_text(*candidates: str | None) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None
