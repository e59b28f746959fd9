from __future__ import annotations

import base64
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

type SortOrder = Literal["ASC", "DESC"]


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None
    sort: SortOrder | None = None


def _single_entry(value: Any) -> tuple[str, Any]:
    if not isinstance(value, dict) or len(value) != 1:
        raise ValueError("attribute value must be a single-key map")
    ((kind, inner),) = value.items()
    return str(kind), inner


def _b64encode(raw: Any) -> str:
    if not isinstance(raw, (bytes, bytearray)):
        raise ValueError("binary value must be bytes")
    return base64.b64encode(bytes(raw)).decode("ascii")


def _b64decode(raw: Any) -> bytes:
    if not isinstance(raw, str):
        raise ValueError("binary value must be a base64 string")
    return base64.b64decode(raw)


def _convert(av: Any, binary: Callable[[Any], Any]) -> dict[str, Any]:
    """Walk an attribute value, converting binary members with ``binary``.

    Key attributes can only be S, N or B, but nested maps are accepted so that
    cursors produced by other clients of the same table still decode.
    """
    kind, value = _single_entry(av)

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "B":
        return {"B": binary(value)}
    if kind == "BOOL":
        if not isinstance(value, bool):
            raise ValueError("BOOL value must be a boolean")
        return {"BOOL": value}
    if kind == "NULL":
        if value is not True:
            raise ValueError("NULL value must be true")
        return {"NULL": True}
    if kind in {"SS", "NS"}:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"{kind} value must be a list of strings")
        return {kind: list(value)}
    if kind == "BS":
        if not isinstance(value, list):
            raise ValueError("BS value must be a list")
        return {"BS": [binary(v) for v in value]}
    if kind == "L":
        if not isinstance(value, list):
            raise ValueError("L value must be a list")
        return {"L": [_convert(v, binary) for v in value]}
    if kind == "M":
        if not isinstance(value, dict):
            raise ValueError("M value must be a map")
        return {"M": {str(k): _convert(value[k], binary) for k in sorted(value)}}

    raise ValueError(f"unsupported attribute value type: {kind}")


def encode_cursor(last_key: Any, *, index: str | None = None, sort: SortOrder | None = None) -> str:
    """Encode a LastEvaluatedKey as an opaque, URL-safe resume token."""
    if not last_key:
        return ""
    if not isinstance(last_key, dict):
        raise ValueError("last_key must be a map")

    payload: dict[str, Any] = {
        "lastKey": {str(k): _convert(last_key[k], _b64encode) for k in sorted(last_key)},
    }
    if index is not None:
        payload["index"] = index
    if sort is not None:
        payload["sort"] = sort

    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    index = parsed.get("index")
    sort = parsed.get("sort")
    return Cursor(
        last_key={str(k): _convert(last_key_raw[k], _b64decode) for k in sorted(last_key_raw)},
        index=index if isinstance(index, str) else None,
        sort=sort if sort in {"ASC", "DESC"} else None,
    )
