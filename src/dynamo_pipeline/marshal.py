from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_wire_number(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_to_wire_number(v) for v in value]
    if isinstance(value, tuple):
        return [_to_wire_number(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_wire_number(v) for k, v in value.items()}
    if isinstance(value, set):
        return {_to_wire_number(v) for v in value}
    return value


def serialize_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(_to_wire_number(value))


def serialize_map(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: serialize_value(v) for k, v in values.items()}


def deserialize_map(item: Mapping[str, Any]) -> dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in item.items()}
