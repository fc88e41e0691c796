"""Conversion of domain values to JSON-safe wire primitives"""

import base64
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def to_wire(value: Any) -> Any:
    """
    Convert a domain value into something json.dumps accepts.

    Conversion table:
        UUID            -> str
        datetime        -> ISO-8601 (naive values are treated as UTC)
        date / time     -> ISO-8601
        bytes/bytearray -> base64 str
        Decimal         -> float
        Enum            -> its value
        BaseModel       -> dict (recursively converted)
        dict            -> dict with str keys
        list/tuple/set  -> list
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        if isinstance(value, Enum):
            return to_wire(value.value)
        return value
    if isinstance(value, Enum):
        return to_wire(value.value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, BaseModel):
        return to_wire(value.model_dump())
    if isinstance(value, dict):
        return {str(to_wire(k)): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_wire(v) for v in value]
    raise TypeError(f"Cannot convert {type(value).__name__} to a wire value")
