"""Reply serializers: turn a handler result into reply bytes.

Serializers raise on values they cannot represent; the message processor turns
that into an error reply.
"""
from __future__ import annotations

import json
from typing import Any, Callable

Serializer = Callable[[Any], bytes]


def json_serialize(result: Any) -> bytes:
    if isinstance(result, (bytes, bytearray)):
        return bytes(result)
    if isinstance(result, str):
        return result.encode()
    return json.dumps(result).encode()


def text_serialize(result: Any) -> bytes:
    if isinstance(result, (bytes, bytearray)):
        return bytes(result)
    return str(result).encode()


SERIALIZERS: dict[str, Serializer] = {
    "json": json_serialize,
    "text": text_serialize,
}

DEFAULT_SERIALIZER: Serializer = json_serialize


def resolve_serializer(name: str) -> Serializer:
    key = name.strip().lower()
    try:
        return SERIALIZERS[key]
    except KeyError:
        raise ValueError(f"Unsupported serializer: {name}") from None
