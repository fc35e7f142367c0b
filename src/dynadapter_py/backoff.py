from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from .errors import ValidationError

type Backoff = Callable[[], None]
type Sleep = Callable[[float], None]


def constant_backoff(seconds: float = 1.0, *, sleep: Sleep = time.sleep) -> Backoff:
    if seconds < 0:
        raise ValidationError("backoff seconds must be >= 0")

    def backoff() -> None:
        sleep(seconds)

    return backoff


def exponential_backoff(base_backoff: float = 0.5, ceiling: int = 3, *, sleep: Sleep = time.sleep) -> Backoff:
    """Truncated binary exponential backoff.

    The n-th call sleeps ``base_backoff * 2 ** (min(n, ceiling) - 1)``: with the
    defaults that is 0.5s, 1s, 2s, 2s, ... The returned callable keeps its own
    call count, so build a fresh one per paginated request.
    """
    if base_backoff < 0:
        raise ValidationError("base_backoff must be >= 0")
    if ceiling < 1:
        raise ValidationError("ceiling must be >= 1")

    times = 0

    def backoff() -> None:
        nonlocal times
        times += 1
        sleep(base_backoff * 2 ** (min(times, ceiling) - 1))

    return backoff


BACKOFF_STRATEGIES: dict[str, Callable[..., Backoff]] = {
    "constant": constant_backoff,
    "exponential": exponential_backoff,
}


def build_backoff(strategy: Any, *, sleep: Sleep = time.sleep) -> Backoff | None:
    """Build a backoff from ``None``, a strategy name, or a ``(name, options)`` pair.

    ``options`` is the seconds value for ``constant`` and a mapping of keyword
    arguments for ``exponential``.
    """
    if strategy is None:
        return None
    if callable(strategy):
        return strategy

    if isinstance(strategy, str):
        name, options = strategy, None
    elif isinstance(strategy, (tuple, list)) and len(strategy) == 2:
        name, options = strategy
    else:
        raise ValidationError(f"invalid backoff strategy: {strategy!r}")

    factory = BACKOFF_STRATEGIES.get(str(name))
    if factory is None:
        raise ValidationError(f"unknown backoff strategy: {name}")

    if options is None:
        return factory(sleep=sleep)
    if isinstance(options, Mapping):
        return factory(**dict(options), sleep=sleep)
    return factory(options, sleep=sleep)
