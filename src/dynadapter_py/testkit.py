from __future__ import annotations

from typing import Any

from .mocks import ANY, FakeDynamoDBClient, client_error


def no_sleep(_: float) -> None:
    return None


class RecordingSleep:
    """Sleep replacement that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def wire_key(**attributes: Any) -> dict[str, Any]:
    """Typed attribute map for string and number scalars, e.g. ``wire_key(id="a", n=1)``."""
    out: dict[str, Any] = {}
    for name, value in attributes.items():
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"unsupported key value for {name}: {value!r}")
        out[name] = {"S": value} if isinstance(value, str) else {"N": str(value)}
    return out


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "RecordingSleep",
    "client_error",
    "no_sleep",
    "wire_key",
]
