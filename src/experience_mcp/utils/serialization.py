"""JSON encoding for the types that flow through records, work items and tool results."""

from __future__ import annotations

import base64
import dataclasses
from datetime import date
from decimal import Decimal
from enum import Enum
from functools import singledispatch


@singledispatch
def json_default(obj: object) -> object:
    """``default=`` hook for json.dumps.

    Dataclasses use their ``to_dict`` when they define one, so stored drafts
    keep their camelCase wire names.
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        to_dict = getattr(obj, "to_dict", None)
        return to_dict() if callable(to_dict) else dataclasses.asdict(obj)
    return str(obj)


@json_default.register
def _(obj: date) -> str:
    return obj.isoformat()


@json_default.register
def _(obj: Decimal) -> object:
    if obj == obj.to_integral_value():
        return int(obj)
    as_float = float(obj)
    # keep the exact digits when a float would round them
    return as_float if Decimal(str(as_float)) == obj else str(obj)


@json_default.register
def _(obj: Enum) -> object:
    return obj.value


@json_default.register(set)
@json_default.register(frozenset)
@json_default.register(tuple)
def _(obj: set | frozenset | tuple) -> list[object]:
    return list(obj)


@json_default.register
def _(obj: bytes) -> str:
    try:
        return obj.decode("utf-8")
    except UnicodeDecodeError:
        return base64.b64encode(obj).decode("ascii")
