from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from experience_mcp.errors import InputValidationError
from experience_mcp.tools._helpers import require_valid, result_from_payload


def test_require_valid_raises_on_invalid_input() -> None:
    schema = {
        "type": "object",
        "properties": {"name": {"type": "string"}},
        "required": ["name"],
    }
    with pytest.raises(InputValidationError, match="Input validation failed") as exc_info:
        require_valid(schema, {"name": 123})
    assert exc_info.value.reasons == ["123 is not of type 'string'"]

    require_valid(schema, {"name": "ok"})


def test_result_from_payload_builds_tool_result() -> None:
    when = datetime(2025, 6, 1, 18, 0, tzinfo=timezone.utc)
    result = result_from_payload({"ok": True, "at": when})

    assert result.structured_content == {"ok": True, "at": when}
    assert result.content[0]["type"] == "text"
    assert json.loads(result.content[0]["text"]) == {
        "ok": True,
        "at": "2025-06-01T18:00:00+00:00",
    }
