"""Sensitive-field masking for logs and persisted previews.

``redact_sensitive_fields`` walks dicts and lists to a bounded depth and
replaces values whose keys contain a sensitive marker. It is shared by the
HTTP request log and by the tool layer before payloads are logged.
``redact_text`` does the same for secrets embedded in exception messages.
"""

from __future__ import annotations

import re

_MAX_REDACT_DEPTH = 20

# Substring match against lower-cased keys.
SENSITIVE_KEY_MARKERS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "authorization",
    "credential",
    "cardnumber",
    "card_number",
    "iban",
)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = "***",
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Return a copy of *value* with sensitive entries replaced by *mask*.

    Sub-trees deeper than ``max_depth`` are replaced wholesale.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, val in value.items():
            if isinstance(key, str) and is_sensitive_key(key):
                redacted[key] = mask
            else:
                redacted[key] = redact_sensitive_fields(
                    val, mask=mask, depth=depth + 1, max_depth=max_depth,
                )
        return redacted
    if isinstance(value, (list, tuple)):
        return [
            redact_sensitive_fields(item, mask=mask, depth=depth + 1, max_depth=max_depth)
            for item in value
        ]
    return value


_SECRET_ASSIGNMENT = re.compile(
    r"""(["']?\w*(?:%s)\w*["']?\s*[:=]\s*)["']?[^"'\s,}]*["']?"""
    % "|".join(re.escape(marker) for marker in SENSITIVE_KEY_MARKERS),
    re.IGNORECASE,
)


def redact_text(text: str, mask: str = "***") -> str:
    """Mask ``key=value`` and ``"key": value`` pairs with sensitive keys inside free text."""
    return _SECRET_ASSIGNMENT.sub(lambda match: match.group(1) + mask, text)
