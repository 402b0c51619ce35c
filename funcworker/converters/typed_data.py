"""Conversion between wire TypedData and native Python values."""

from __future__ import annotations

import json
from typing import Any, Optional

from funcworker.protocol.types import TypedData, TypedDataType


def is_bytes_like(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, memoryview))


def to_text(value: Any) -> str:
    """Text form of a value: strings unchanged, bytes decoded as UTF-8, anything else as JSON."""
    if isinstance(value, str):
        return value
    if is_bytes_like(value):
        return bytes(value).decode("utf-8", errors="replace")
    return json.dumps(value, default=str)


def _text_of(typed: TypedData) -> Optional[str]:
    if typed.string_val is not None:
        return typed.string_val
    for scalar in (typed.int_val, typed.double_val, typed.bool_val):
        if scalar is not None:
            return json.dumps(scalar)
    return None


def decode(typed: Optional[TypedData]) -> Any:
    """Convert TypedData to a native value.

    Bytes come back unchanged. Every other tag is read as text and parsed as
    JSON, falling back to the raw text when it is not valid JSON. Never raises.
    """
    if typed is None:
        return None
    if typed.type == TypedDataType.BYTES:
        return typed.bytes_val if typed.bytes_val is not None else b""

    text = _text_of(typed)
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def encode(value: Any) -> TypedData:
    """Convert a native value to TypedData: str as text, bytes as bytes, anything else as JSON text."""
    if isinstance(value, str):
        return TypedData(type=TypedDataType.STRING, string_val=value)
    if is_bytes_like(value):
        return TypedData(type=TypedDataType.BYTES, bytes_val=bytes(value))
    return TypedData(type=TypedDataType.STRING, string_val=json.dumps(value, default=str))
