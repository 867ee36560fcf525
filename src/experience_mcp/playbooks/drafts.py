"""Experience draft: the normalized plan the orchestration runtime materializes."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from experience_mcp.utils.time import parse_timestamp, utc_now


@dataclass
class EventDraft:
    title: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    location: str = ""
    timezone: str = "UTC"
    capacity: int | None = None
    agenda: list[dict[str, Any]] = field(default_factory=list)
    registration_required: bool = True
    published: bool = False
    event_type: str = "meetup"
    virtual_event_url: str | None = None

    def __post_init__(self) -> None:
        if self.end_date <= self.start_date:
            raise ValueError("Event end date must be after its start date")

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "location": self.location,
            "timezone": self.timezone,
            "capacity": self.capacity,
            "agenda": self.agenda,
            "registrationRequired": self.registration_required,
            "published": self.published,
            "eventType": self.event_type,
            "virtualEventUrl": self.virtual_event_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EventDraft":
        return cls(
            title=data["title"],
            description=data.get("description") or "",
            start_date=parse_timestamp(data["startDate"]) or utc_now(),
            end_date=parse_timestamp(data["endDate"]) or utc_now(),
            location=data.get("location") or "",
            timezone=data.get("timezone") or "UTC",
            capacity=data.get("capacity"),
            agenda=list(data.get("agenda") or []),
            registration_required=bool(data.get("registrationRequired", True)),
            published=bool(data.get("published", False)),
            event_type=data.get("eventType") or "meetup",
            virtual_event_url=data.get("virtualEventUrl"),
        )


@dataclass
class ProductDraft:
    name: str
    price: int = 0
    currency: str = "EUR"
    subtype: str = "ticket"
    description: str = ""
    ticket_tier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "subtype": self.subtype,
            "description": self.description,
            "ticketTier": self.ticket_tier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductDraft":
        return cls(
            name=data["name"],
            price=int(data.get("price") or 0),
            currency=data.get("currency") or "EUR",
            subtype=data.get("subtype") or "ticket",
            description=data.get("description") or "",
            ticket_tier=data.get("ticketTier"),
        )


@dataclass
class FormDraft:
    name: str
    description: str = ""
    subtype: str = "registration"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FormDraft":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            subtype=data.get("subtype") or "registration",
        )


@dataclass
class CheckoutDraft:
    name: str
    description: str = ""
    payment_mode: str = "free"
    payment_providers: list[str] = field(default_factory=lambda: ["stripe-connect"])
    published: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "paymentMode": self.payment_mode,
            "paymentProviders": list(self.payment_providers),
            "published": self.published,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckoutDraft":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            payment_mode=data.get("paymentMode") or "free",
            payment_providers=list(data.get("paymentProviders") or ["stripe-connect"]),
            published=bool(data.get("published", False)),
        )


@dataclass
class UnsupportedPlaybookItem:
    type: str
    reason: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnsupportedPlaybookItem":
        return cls(type=data["type"], name=data.get("name"), reason=data["reason"])


@dataclass
class ExperienceDraft:
    experience_name: str
    event: EventDraft
    products: list[ProductDraft]
    checkout: CheckoutDraft
    form: FormDraft | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "experienceName": self.experience_name,
            "event": self.event.to_dict(),
            "products": [product.to_dict() for product in self.products],
            "form": self.form.to_dict() if self.form else None,
            "checkout": self.checkout.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExperienceDraft":
        form = data.get("form")
        return cls(
            experience_name=data["experienceName"],
            event=EventDraft.from_dict(data["event"]),
            products=[ProductDraft.from_dict(p) for p in data.get("products") or []],
            form=FormDraft.from_dict(form) if form else None,
            checkout=CheckoutDraft.from_dict(data["checkout"]),
        )


@dataclass
class DerivationResult:
    draft: ExperienceDraft
    unsupported_items: list[UnsupportedPlaybookItem] = field(default_factory=list)
    detected_item_count: int = 0
