from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from experience_mcp.store.models import AppFile
from experience_mcp.utils.hashing import canonical_json, sha256_text, stable_digest
from experience_mcp.utils.jsonschema import (
    format_structured_errors,
    validate_payload,
    validate_payload_structured,
)
from experience_mcp.utils.masking import is_sensitive_key, redact_sensitive_fields
from experience_mcp.utils.serialization import json_default
from experience_mcp.utils.time import is_older_than, parse_timestamp, utc_now


def test_validate_payload():
    schema = {"type": "object", "properties": {"a": {"type": "integer"}}, "required": ["a"]}

    assert validate_payload(schema, {"a": 1}) == []
    assert len(validate_payload(schema, {"a": "bad"})) > 0


def test_validate_payload_structured():
    schema = {
        "type": "object",
        "properties": {
            "a": {"type": "integer"},
            "b": {"enum": ["x", "y"]},
            "c": {"type": "string", "minLength": 5},
        },
        "required": ["a"],
        "additionalProperties": False,
    }

    assert validate_payload_structured(schema, {"a": 1}) == []

    errors = validate_payload_structured(schema, {})
    assert [e.type for e in errors] == ["missing_required"]
    assert errors[0].hint == "Add the required field 'a' to your request."

    errors = validate_payload_structured(schema, {"a": "bad"})
    assert [e.type for e in errors] == ["invalid_type"]
    assert errors[0].got == "str"

    errors = validate_payload_structured(schema, {"a": 1, "b": "z"})
    assert [e.type for e in errors] == ["enum_violation"]
    assert errors[0].allowed_values == ["x", "y"]

    errors = validate_payload_structured(schema, {"a": 1, "c": "abc"})
    assert [e.type for e in errors] == ["min_length_violation"]

    errors = validate_payload_structured(schema, {"a": 1, "d": True})
    assert [e.type for e in errors] == ["additional_property"]


def test_format_structured_errors():
    schema = {
        "type": "object",
        "properties": {"mode": {"enum": ["preview", "execute"]}, "appId": {"type": "string"}},
        "required": ["appId"],
    }
    details = format_structured_errors(validate_payload_structured(schema, {"mode": "run"}))

    assert details["missing"] == ["appId"]
    assert details["invalid"][0]["path"] == "mode"
    assert details["allowedValues"] == {"mode": ["preview", "execute"]}
    assert details["retryable"] is True
    assert "Use one of: preview, execute" in details["hint"]


def test_json_default():
    assert json_default(datetime(2025, 6, 1, tzinfo=timezone.utc)) == "2025-06-01T00:00:00+00:00"
    assert json_default(Decimal("10")) == 10
    assert json_default(Decimal("49.99")) == 49.99
    assert json_default({"b", "a"}) in (["a", "b"], ["b", "a"])
    assert json_default(b"text") == "text"
    assert json_default(b"\xff") == "/w=="
    assert json_default(AppFile(path="index.html", content="<h1>Hi</h1>")) == {
        "path": "index.html",
        "content": "<h1>Hi</h1>",
    }


def test_stable_digest_ignores_key_order():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert stable_digest({"a": 1, "b": 2}) == stable_digest({"b": 2, "a": 1})
    assert stable_digest({"a": 1}) != stable_digest({"a": 2})
    assert len(stable_digest(None)) == 16
    assert sha256_text("demo-secret-key") == (
        "5f1f9d2aeeb8dc29dd47db2bfc0390b9ada7ded6707b592e9bba01fa7601761a"
    )


def test_redact_sensitive_fields():
    redacted = redact_sensitive_fields(
        {
            "password": "hunter2",
            "nested": {"accessToken": "abc", "name": "Launch Party"},
            "items": [{"apiKey": "x"}, "plain"],
        }
    )
    assert redacted == {
        "password": "***",
        "nested": {"accessToken": "***", "name": "Launch Party"},
        "items": [{"apiKey": "***"}, "plain"],
    }
    assert redact_sensitive_fields({"a": {"b": 1}}, max_depth=1) == {"a": "***"}
    assert is_sensitive_key("IBAN")
    assert not is_sensitive_key("experienceName")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2025-06-01T18:00:00Z", datetime(2025, 6, 1, 18, tzinfo=timezone.utc)),
        ("2025-06-01T18:00:00", datetime(2025, 6, 1, 18, tzinfo=timezone.utc)),
        ("2025-06-01T20:00:00+02:00", datetime(2025, 6, 1, 18, tzinfo=timezone.utc)),
        (1748800800000, datetime(2025, 6, 1, 18, tzinfo=timezone.utc)),
        ("1748800800000", datetime(2025, 6, 1, 18, tzinfo=timezone.utc)),
        ("next friday", None),
        ("", None),
        (True, None),
        (None, None),
    ],
)
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


def test_is_older_than():
    recent = (utc_now() - timedelta(seconds=10)).isoformat()
    old = (utc_now() - timedelta(hours=2)).isoformat()
    assert not is_older_than(recent, 3600)
    assert is_older_than(old, 3600)
    assert is_older_than("garbage", 3600)
