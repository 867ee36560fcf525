"""Detection of connectable items in builder page schemas and source files.

Every function here is pure and deterministic: identical input produces the
same sections, items and item ids.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from experience_mcp.detection.models import DetectedItem, DetectedSection, DetectionResult
from experience_mcp.store.models import AppFile

_SCHEMA_DATE = re.compile(
    r"\d{1,2}[./]\d{1,2}[./]\d{2,4}|\d{4}-\d{2}-\d{2}|January|February|March|April|May|"
    r"June|July|August|September|October|November|December",
    re.IGNORECASE,
)
_FILE_DATE_OR_TIME = re.compile(
    r"\d{4}-\d{2}-\d{2}|\d{1,2}[:.]\d{2}\s?(?:AM|PM)?|january|february|march|april|may|"
    r"june|july|august|september|october|november|december",
    re.IGNORECASE,
)
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_OBJECT_LITERAL = re.compile(r"\{[^{}]*\}")


def _string_field(*keys: str) -> re.Pattern[str]:
    names = "|".join(keys)
    return re.compile(rf"\b(?:{names})\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE)


_NAME_FIELD = _string_field("name")
_EMAIL_FIELD = _string_field("email")
_ROLE_FIELD = _string_field("role", "title", "position")
_DESCRIPTION_FIELD = _string_field("description")
_PRICE_FIELD = re.compile(r"\bprice\s*:\s*[\"']?([^\"',}]+)[\"']?", re.IGNORECASE)

_FORM_TAG = re.compile(r"<form[\s>]", re.IGNORECASE)
_SUBMIT_HANDLER = re.compile(r"onSubmit|handleSubmit|action=", re.IGNORECASE)
_FORM_COMPONENT = re.compile(
    r"export\s+(?:default\s+)?function\s+"
    r"(\w*(?:Form|Contact|Register|Signup|Subscribe|Newsletter)\w*)",
    re.IGNORECASE,
)
_INPUT_TAG = re.compile(r"<(?:input|textarea|select)[\s>]", re.IGNORECASE)
_TEAM_VAR = re.compile(r"(?:const|let|var)\s+(team|members|staff|contacts|people)\s*=\s*\[", re.I)
_PRICING_VAR = re.compile(
    r"(?:const|let|var)\s+(plans|pricing|tiers|packages|products)\s*=\s*\[", re.IGNORECASE
)
_EVENT_TERMS = re.compile(
    r"event|conference|summit|workshop|meetup|webinar|admission|agenda|speaker", re.IGNORECASE
)
_CALENDAR_UI = re.compile(
    r"calendar|datepicker|date-picker|availability|time.?slot|booking", re.IGNORECASE
)
_SLOT_VAR = re.compile(r"(?:const|let|var)\s+(?:slots|timeSlots|availability|schedule)\s*=", re.I)
_TICKET_UI = re.compile(r"ticket|admission|qr.?code|check.?in|pass|barcode", re.IGNORECASE)
_TICKET_VAR = re.compile(r"(?:const|let|var)\s+(?:tickets|passes|admissions)\s*=", re.I)
_TICKET_NAME = re.compile(r"Ticket|Admission|CheckIn|Pass", re.IGNORECASE)
_INVOICE_UI = re.compile(
    r"invoice|billing|line.?item|subtotal|due.?date|payment.?status", re.IGNORECASE
)
_TABLE_MARKUP = re.compile(r"<table|<thead|<tbody", re.IGNORECASE)
_CHECKOUT_UI = re.compile(
    r"checkout|shopping.?cart|order.?summary|add.?to.?cart|payment.?form", re.IGNORECASE
)
_CART_VAR = re.compile(
    r"(?:const|let|var)\s+(?:cart|cartItems|orderItems|checkoutItems)\s*=", re.IGNORECASE
)
_CHAT_UI = re.compile(
    r"chat|message|conversation|inbox|thread|live.?support|customer.?support", re.IGNORECASE
)
_MESSAGE_VAR = re.compile(
    r"(?:const|let|var)\s+(?:messages|chatMessages|conversationMessages|threads|conversations)\s*=",
    re.IGNORECASE,
)
_CHAT_COMPONENTS = re.compile(
    r"MessageList|ChatWindow|ConversationList|ChatBubble|MessageInput", re.IGNORECASE
)
_SEND_HANDLER = re.compile(r"sendMessage|handleSend|onSendMessage|submitMessage", re.IGNORECASE)
_CHAT_NAME = re.compile(r"Chat|Message|Conversation|Inbox|Support", re.IGNORECASE)
_COMPONENT_FILE = re.compile(r"([^/]+)\.(tsx|jsx)$")
_PAGE_FILE = re.compile(r"([^/]+)/page\.(tsx|jsx)$")
_PATH_PREFIX = re.compile(r"^(app|src|components)/")

_SECTION_TYPES = {
    "product": "pricing",
    "contact": "team",
    "form": "forms",
    "booking": "bookings",
    "ticket": "tickets",
    "invoice": "invoices",
    "checkout": "checkout",
    "event": "events",
    "workflow": "workflows",
    "conversation": "conversations",
}
_SECTION_LABELS = {
    "pricing": "Pricing",
    "team": "Team",
    "forms": "Form",
    "bookings": "Booking",
    "tickets": "Tickets",
    "invoices": "Invoice",
    "checkout": "Checkout",
    "events": "Events",
    "workflows": "Workflow",
    "conversations": "Conversations",
}


@dataclass
class _Detection:
    name: str
    description: str | None = None
    email: str | None = None
    price: str | None = None


def detect_all(
    page_schema: Mapping[str, object] | None,
    files: Sequence[AppFile],
) -> DetectionResult:
    """Run schema and file detection and merge the results.

    File items already covered by schema detection (same type and name) are
    dropped.
    """
    result = DetectionResult()
    if isinstance(page_schema, Mapping) and isinstance(page_schema.get("sections"), list):
        result.sections.extend(detect_from_page_schema(page_schema).sections)

    if files:
        seen = {_dedupe_key(item) for item in result.iter_items()}
        for section in detect_from_files(files).sections:
            fresh = [item for item in section.detected_items if _dedupe_key(item) not in seen]
            if fresh:
                result.sections.append(
                    DetectedSection(
                        section_id=section.section_id,
                        section_type=section.section_type,
                        section_label=section.section_label,
                        detected_items=fresh,
                    )
                )
    return result


def _dedupe_key(item: DetectedItem) -> str:
    return f"{item.type}:{item.placeholder_data.get('name') or ''}"


def detect_from_page_schema(schema: Mapping[str, object]) -> DetectionResult:
    result = DetectionResult()
    counter = 0

    def next_id() -> str:
        nonlocal counter
        counter += 1
        return f"item_{counter}"

    for raw_section in schema.get("sections") or []:
        if not isinstance(raw_section, Mapping):
            continue
        section_type = raw_section.get("type") if isinstance(raw_section.get("type"), str) else ""
        section = DetectedSection(
            section_id=str(raw_section.get("id") or f"section_{counter}"),
            section_type=section_type,
            section_label=section_type[:1].upper() + section_type[1:] if section_type else "Section",
        )
        props = raw_section.get("props")
        props = props if isinstance(props, Mapping) else {}

        if section_type == "pricing":
            for tier in _mappings(props.get("tiers")):
                if tier.get("name"):
                    section.detected_items.append(
                        DetectedItem(
                            id=next_id(),
                            type="product",
                            placeholder_data=_compact(
                                name=tier.get("name"),
                                price=tier.get("price"),
                                description=tier.get("description"),
                            ),
                        )
                    )

        if section_type == "team":
            for member in _mappings(props.get("members")):
                if member.get("name"):
                    section.detected_items.append(
                        DetectedItem(
                            id=next_id(),
                            type="contact",
                            placeholder_data=_compact(
                                name=member.get("name"),
                                description=member.get("role"),
                                email=member.get("email"),
                            ),
                        )
                    )

        if section_type in ("hero", "cta") and props:
            date_match = _SCHEMA_DATE.search(json.dumps(props, default=str))
            if date_match and props.get("title"):
                section.detected_items.append(
                    DetectedItem(
                        id=next_id(),
                        type="event",
                        placeholder_data=_compact(
                            name=props.get("title"),
                            description=props.get("subtitle") or props.get("description"),
                            date=date_match.group(0),
                        ),
                    )
                )

        if section.detected_items:
            result.sections.append(section)
    return result


def detect_from_files(files: Sequence[AppFile]) -> DetectionResult:
    result = DetectionResult()
    counter = 0
    detectors = (
        ("form", _detect_forms),
        ("contact", _detect_contacts),
        ("product", _detect_products),
        ("event", _detect_events),
        ("booking", _detect_bookings),
        ("ticket", _detect_tickets),
        ("invoice", _detect_invoices),
        ("checkout", _detect_checkout),
        ("conversation", _detect_conversations),
    )

    for file in files:
        if not is_component_file(file.path):
            continue
        items: list[DetectedItem] = []
        for item_type, detector in detectors:
            for detection in detector(file):
                counter += 1
                items.append(
                    DetectedItem(
                        id=f"detected_{counter}",
                        type=item_type,
                        placeholder_data=_compact(
                            name=detection.name,
                            email=detection.email,
                            price=detection.price,
                            description=detection.description,
                        ),
                    )
                )
        if items:
            section_type = _SECTION_TYPES.get(items[0].type, "form")
            result.sections.append(
                DetectedSection(
                    section_id=f"file:{file.path}",
                    section_type=section_type,
                    section_label=_section_label(file.path, section_type, items),
                    detected_items=items,
                )
            )
    return result


def build_detection_summary(result: DetectionResult) -> str:
    """Agent-readable one-line summary of a detection result."""
    if result.total_items == 0:
        return "No connectable items detected."

    type_counts: dict[str, int] = {}
    exact_counts: dict[str, int] = {}
    for item in result.iter_items():
        type_counts[item.type] = type_counts.get(item.type, 0) + 1
        if any(match.similarity >= 1.0 for match in item.existing_matches or []):
            exact_counts[item.type] = exact_counts.get(item.type, 0) + 1

    parts = []
    for item_type, count in type_counts.items():
        label = item_type if count == 1 else f"{item_type}s"
        exact = exact_counts.get(item_type)
        suffix = f" ({exact} with exact match)" if exact else ""
        parts.append(f"{count} {label}{suffix}")
    return f"Detected: {', '.join(parts)}."


# Individual file detectors


def _detect_forms(file: AppFile) -> list[_Detection]:
    content = file.content
    component = _FORM_COMPONENT.search(content)
    input_count = len(_INPUT_TAG.findall(content))
    if not (
        _FORM_TAG.search(content)
        or _SUBMIT_HANDLER.search(content)
        or component
        or input_count >= 3
    ):
        return []
    name = (component.group(1) if component else None) or extract_component_name(file.path) or "Form"
    description = f"Detected in {file.path}"
    if input_count > 0:
        description += f" ({input_count} input fields)"
    return [_Detection(name=readable_name(name), description=description)]


def _detect_contacts(file: AppFile) -> list[_Detection]:
    if not _TEAM_VAR.search(file.content):
        return []
    results = []
    for literal in _OBJECT_LITERAL.findall(file.content):
        name = _first_group(_NAME_FIELD, literal)
        if name:
            results.append(
                _Detection(
                    name=name,
                    email=_first_group(_EMAIL_FIELD, literal),
                    description=_first_group(_ROLE_FIELD, literal),
                )
            )
    return results


def _detect_products(file: AppFile) -> list[_Detection]:
    if not _PRICING_VAR.search(file.content):
        return []
    results = []
    for literal in _OBJECT_LITERAL.findall(file.content):
        name = _first_group(_NAME_FIELD, literal)
        if name:
            price = _first_group(_PRICE_FIELD, literal)
            results.append(
                _Detection(
                    name=name,
                    price=price.strip() if price and price.strip() else None,
                    description=_first_group(_DESCRIPTION_FIELD, literal),
                )
            )
    return results


def _detect_events(file: AppFile) -> list[_Detection]:
    content = file.content
    if not (_EVENT_TERMS.search(content) and _FILE_DATE_OR_TIME.search(content)):
        return []
    name = extract_component_name(file.path) or "Event"
    return [
        _Detection(
            name=readable_name(name),
            description=f"Detected event-oriented content in {file.path}",
        )
    ]


def _detect_bookings(file: AppFile) -> list[_Detection]:
    content = file.content
    if not (_CALENDAR_UI.search(content) or _SLOT_VAR.search(content)):
        return []
    name = extract_component_name(file.path) or "Booking"
    return [_Detection(name=readable_name(name), description=f"Detected in {file.path}")]


def _detect_tickets(file: AppFile) -> list[_Detection]:
    content = file.content
    has_ticket_var = bool(_TICKET_VAR.search(content))
    if not (_TICKET_UI.search(content) or has_ticket_var):
        return []
    name = extract_component_name(file.path) or "Ticket"
    if not has_ticket_var and not _TICKET_NAME.search(name):
        return []
    return [_Detection(name=readable_name(name), description=f"Detected in {file.path}")]


def _detect_invoices(file: AppFile) -> list[_Detection]:
    content = file.content
    if not (_INVOICE_UI.search(content) and _TABLE_MARKUP.search(content)):
        return []
    name = extract_component_name(file.path) or "Invoice"
    return [_Detection(name=readable_name(name), description=f"Detected in {file.path}")]


def _detect_checkout(file: AppFile) -> list[_Detection]:
    content = file.content
    if not (_CHECKOUT_UI.search(content) or _CART_VAR.search(content)):
        return []
    name = extract_component_name(file.path) or "Checkout"
    return [_Detection(name=readable_name(name), description=f"Detected in {file.path}")]


def _detect_conversations(file: AppFile) -> list[_Detection]:
    content = file.content
    has_message_var = bool(_MESSAGE_VAR.search(content))
    has_chat_components = bool(_CHAT_COMPONENTS.search(content))
    signals = [
        bool(_CHAT_UI.search(content)),
        has_message_var,
        has_chat_components,
        bool(_SEND_HANDLER.search(content)),
    ]
    if sum(signals) < 2:
        return []
    name = extract_component_name(file.path) or "Chat"
    if not has_message_var and not has_chat_components and not _CHAT_NAME.search(name):
        return []
    return [_Detection(name=readable_name(name), description=f"Detected in {file.path}")]


# Helpers


def is_component_file(path: str) -> bool:
    return path.endswith((".tsx", ".jsx")) and "node_modules" not in path


def extract_component_name(path: str) -> str | None:
    match = _COMPONENT_FILE.search(path)
    if not match:
        return None
    filename = match.group(1)
    if filename == "page":
        dir_match = _PAGE_FILE.search(path)
        if dir_match:
            directory = dir_match.group(1)
            return directory[:1].upper() + directory[1:]
    return filename[:1].upper() + filename[1:]


def readable_name(name: str) -> str:
    """Split camel case: 'SignupForm' -> 'Signup Form'."""
    return _CAMEL_BOUNDARY.sub(r"\1 \2", name)


def _section_label(path: str, section_type: str, items: list[DetectedItem]) -> str:
    short_path = _PATH_PREFIX.sub("", path)
    if len(items) == 1 and items[0].name:
        return f"{items[0].name} ({short_path})"
    return f"{_SECTION_LABELS.get(section_type, 'Section')} ({short_path})"


def _first_group(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1) if match else None


def _mappings(value: object) -> list[Mapping[str, object]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, Mapping)]


def _compact(**fields: object) -> dict[str, object]:
    return {key: value for key, value in fields.items() if value is not None and value != ""}
