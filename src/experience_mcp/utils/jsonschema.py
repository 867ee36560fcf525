"""JSON Schema validation wrapper for tool inputs."""

from __future__ import annotations

from dataclasses import dataclass

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as _SchemaError

_ERROR_TYPES = {
    "required": "missing_required",
    "type": "invalid_type",
    "enum": "enum_violation",
    "const": "const_mismatch",
    "minLength": "min_length_violation",
    "maxLength": "max_length_violation",
    "minimum": "minimum_violation",
    "maximum": "maximum_violation",
    "minItems": "min_items_violation",
    "maxItems": "max_items_violation",
    "additionalProperties": "additional_property",
    "pattern": "pattern_mismatch",
    "anyOf": "any_of_violation",
    "oneOf": "one_of_violation",
}


@dataclass
class FieldError:
    """Machine-readable description of one schema violation."""

    type: str
    message: str
    path: str | None = None
    expected: str | None = None
    got: str | None = None
    allowed_values: list[str] | None = None
    hint: str | None = None


def _validator(schema: dict[str, object]) -> Draft202012Validator:
    return Draft202012Validator(schema)


def validate_payload(schema: dict[str, object], payload: dict[str, object]) -> list[str]:
    """Validate payload against schema and return error messages."""
    return [error.message for error in _validator(schema).iter_errors(payload)]


def validate_payload_structured(
    schema: dict[str, object],
    payload: dict[str, object],
) -> list[FieldError]:
    return [_to_field_error(error) for error in _validator(schema).iter_errors(payload)]


def _to_field_error(error: _SchemaError) -> FieldError:
    path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else None
    field_error = FieldError(
        type=_ERROR_TYPES.get(str(error.validator), "validation_error"),
        message=error.message,
        path=path,
    )

    if error.validator == "required":
        missing = error.validator_value
        name = missing[0] if isinstance(missing, list) and len(missing) == 1 else str(missing)
        field_error.expected = "field to be present"
        field_error.hint = f"Add the required field '{name}' to your request."
    elif error.validator == "type":
        field_error.expected = str(error.validator_value)
        field_error.got = type(error.instance).__name__ if error.instance is not None else "null"
        field_error.hint = f"Change the value to type '{error.validator_value}'."
    elif error.validator == "enum":
        allowed = [str(v) for v in error.validator_value or []]
        field_error.allowed_values = allowed or None
        field_error.got = str(error.instance)
        if allowed:
            field_error.hint = f"Use one of: {', '.join(allowed)}"
    elif error.validator in {"minLength", "maxLength", "minimum", "maximum"}:
        field_error.expected = f"{error.validator} {error.validator_value}"
        field_error.got = str(error.instance)
    elif error.validator == "additionalProperties":
        field_error.hint = "Remove the unexpected property or check for typos."

    return field_error


def format_structured_errors(errors: list[FieldError]) -> dict[str, object]:
    """Group field errors into the tool error payload shape."""
    missing: list[str] = []
    invalid: list[dict[str, object]] = []
    allowed_values: dict[str, list[str]] = {}

    for err in errors:
        if err.type == "missing_required":
            field = err.message.split("'")[1] if "'" in err.message else (err.path or "unknown")
            missing.append(field)
            continue
        invalid.append(
            {
                "path": err.path,
                "type": err.type,
                "expected": err.expected,
                "got": err.got,
                "reason": err.message,
            }
        )
        if err.allowed_values and err.path:
            allowed_values[err.path] = err.allowed_values

    hints = [err.hint for err in errors if err.hint]
    return {
        "missing": missing or None,
        "invalid": invalid or None,
        "allowedValues": allowed_values or None,
        "hint": " ".join(hints[:3]) if hints else None,
        "retryable": True,
    }
