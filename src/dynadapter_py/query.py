from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Page:
    """One wire call's worth of results.

    ``items`` are attribute mappings with wire values deserialized to Python
    (``Decimal`` for numbers); they are not passed through any model undumper.
    ``last_evaluated_key`` stays in wire format so it can be sent back verbatim.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    last_evaluated_key: dict[str, Any] | None = None
    count: int = 0
    scanned_count: int = 0
    index_name: str | None = None

    @property
    def cursor(self) -> str | None:
        if not self.last_evaluated_key:
            return None
        return encode_cursor(self.last_evaluated_key, index=self.index_name)


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None


def _ensure_single_key_map(value: Any) -> tuple[str, Any]:
    if not isinstance(value, dict) or len(value) != 1:
        raise ValueError("attribute value must be a single-key map")
    (key, inner), *_ = value.items()
    return str(key), inner


def _av_to_json(av: Any) -> dict[str, Any]:
    kind, value = _ensure_single_key_map(av)

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError("B value must be bytes")
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}

    # Key attributes are S/N/B; anything else cannot appear in LastEvaluatedKey.
    raise ValueError(f"unsupported key attribute type: {kind}")


def _av_from_json(enc: Any) -> dict[str, Any]:
    kind, value = _ensure_single_key_map(enc)

    if not isinstance(value, str):
        raise ValueError(f"{kind} value must be a string")
    if kind in {"S", "N"}:
        return {kind: value}
    if kind == "B":
        return {"B": base64.b64decode(value)}

    raise ValueError(f"unsupported key attribute type: {kind}")


def encode_cursor(last_key: Mapping[str, Any] | None, *, index: str | None = None) -> str:
    if not last_key:
        return ""
    if not isinstance(last_key, Mapping):
        raise ValueError("last_key must be a map")

    payload: dict[str, Any] = {"lastKey": {str(k): _av_to_json(last_key[k]) for k in sorted(last_key)}}
    if index is not None:
        payload["index"] = index

    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    data = base64.urlsafe_b64decode(raw + padding).decode("utf-8")
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    index = parsed.get("index")
    return Cursor(
        last_key={str(k): _av_from_json(v) for k, v in last_key_raw.items()},
        index=index if isinstance(index, str) else None,
    )
