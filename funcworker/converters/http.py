"""Conversion between the wire HTTP message and request/response dictionaries."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple

from funcworker.converters import typed_data
from funcworker.converters.typed_data import is_bytes_like, to_text
from funcworker.protocol.types import RpcHttp, TypedData, TypedDataType


def _first_wins(pairs: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in pairs:
        flattened.setdefault(key, value)
    return flattened


def _as_bytes(value: Any) -> bytes:
    if is_bytes_like(value):
        return bytes(value)
    return to_text(value).encode("utf-8")


def _string_pairs(value: Any) -> list[Tuple[str, str]]:
    items = value.items() if isinstance(value, Mapping) else dict(value).items()
    return [(str(key), str(item)) for key, item in items if item is not None]


def from_wire(http: RpcHttp) -> Dict[str, Any]:
    """Build the request dictionary handed to user code.

    Header and query pairs flatten to dicts keeping the first occurrence of a
    key. ``body`` is set only when the host sent a structured body and
    ``raw_body`` only when it sent raw bytes.
    """
    request: Dict[str, Any] = {
        "method": http.method,
        "url": http.url,
        "headers": _first_wins(http.headers),
        "query": _first_wins(http.query),
        "params": _first_wins((name, typed_data.decode(data)) for name, data in http.params),
    }
    if http.raw_body is not None:
        request["raw_body"] = http.raw_body
    if http.body is not None:
        request["body"] = typed_data.decode(http.body)
    return request


def _body_to_wire(fields: Mapping[str, Any]) -> TypedData:
    body = fields["body"]
    headers = fields.get("headers")
    wants_bytes = (
        bool(fields.get("is_raw"))
        or (isinstance(headers, Mapping) and bool(headers.get("raw")))
        or is_bytes_like(body)
    )
    if wants_bytes and not fields.get("raw_body"):
        return TypedData(type=TypedDataType.BYTES, bytes_val=_as_bytes(body))
    return TypedData(type=TypedDataType.STRING, string_val=to_text(body))


def to_wire(result: Any) -> RpcHttp:
    """Convert a response value to the wire HTTP message.

    Any HTTP-shaped field on ``result`` makes it a structured message. When
    none is present the whole value goes into ``raw_response`` instead.
    """
    fields: Mapping[str, Any] = result if isinstance(result, Mapping) else {}
    message: Dict[str, Any] = {}
    is_raw_response = True

    if fields.get("method"):
        message["method"] = str(fields["method"])
        is_raw_response = False
    if fields.get("raw_body"):
        message["raw_body"] = _as_bytes(fields["raw_body"])
        is_raw_response = False
    if fields.get("url"):
        message["url"] = str(fields["url"])
        is_raw_response = False
    if fields.get("headers"):
        message["headers"] = _string_pairs(fields["headers"])
        is_raw_response = False
    if fields.get("query"):
        message["query"] = _string_pairs(fields["query"])
        is_raw_response = False
    if fields.get("status_code") is not None:
        message["status_code"] = str(fields["status_code"])
        is_raw_response = False
    # status_code takes precedence over status
    if fields.get("status") is not None and "status_code" not in message:
        message["status_code"] = str(fields["status"])
        is_raw_response = False
    if fields.get("body") is not None:
        is_raw_response = False
        if fields.get("is_raw"):
            message["is_raw"] = True
        message["body"] = _body_to_wire(fields)

    if is_raw_response:
        if is_bytes_like(result):
            message["raw_response"] = TypedData(type=TypedDataType.BYTES, bytes_val=bytes(result))
        else:
            message["raw_response"] = TypedData(type=TypedDataType.STRING, string_val=to_text(result))
    return RpcHttp(**message)
