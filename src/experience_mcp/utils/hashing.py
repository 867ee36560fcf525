"""Hashing helpers."""

from __future__ import annotations

import hashlib
import json

from experience_mcp.utils.serialization import json_default


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def canonical_json(value: object) -> str:
    """Serialize with sorted keys and no whitespace so equal payloads hash equally."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=json_default,
    )


def stable_digest(value: object, length: int = 16) -> str:
    return sha256_text(canonical_json(value))[:length]
